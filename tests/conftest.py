import asyncio
import inspect
import os
import sys
from pathlib import Path

# Environment must be in place before any import initializes settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-access-secret-for-testing-only-do-not-use")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-for-testing-only-do-not-use")
# Empty REDIS_URL selects the in-process revocation cache
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("SMTP_HOST", "")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from emovers.config import Settings  # noqa: E402
from emovers.service.auth import CredentialService  # noqa: E402
from emovers.service.runtime import reset_runtime_for_tests  # noqa: E402
from emovers.storage.memory import MemoryStore  # noqa: E402
from emovers.storage.redis_cache import MemoryRevocationCache  # noqa: E402


class RecordingMailer:
    """Mailer double that keeps every message instead of sending it."""

    def __init__(self, *, succeed: bool = True):
        self.sent = []
        self.succeed = succeed

    def send(self, to, template_kind, params=None):
        self.sent.append({"to": to, "kind": template_kind, "params": dict(params or {})})
        return self.succeed

    def kinds(self):
        return [message["kind"] for message in self.sent]

    def last(self, kind):
        return next(m for m in reversed(self.sent) if m["kind"] == kind)


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="Test-Access-Secret_for-Automation-Only-987654321!",
        jwt_refresh_secret="Test-Refresh-Secret_for-Automation-Only-123456789!",
        access_token_ttl_minutes=15,
        refresh_token_ttl_minutes=60 * 24 * 7,
    )


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def revocation_cache():
    return MemoryRevocationCache()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def failing_mailer():
    return RecordingMailer(succeed=False)


@pytest.fixture
def auth_service(memory_store, revocation_cache, settings, mailer):
    return CredentialService(memory_store, revocation_cache, settings, mailer=mailer)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
