import importlib.util
from pathlib import Path

import pytest

from emovers.config import ChallengePurpose
from emovers.service.runtime import get_runtime
from emovers.storage.models import UserRole, UserStatus

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_admin.py"


@pytest.fixture
def bootstrap():
    spec = importlib.util.spec_from_file_location("bootstrap_admin", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.parametrize(
    "password,ok",
    [
        ("SecurePassword123!", True),
        ("securepassword123!", True),
        ("securepassword123", False),
        ("Short1!", False),
        ("alllowercaseletters", False),
    ],
)
def test_validate_password(bootstrap, password, ok):
    assert bootstrap.validate_password(password) is ok


def test_creates_verified_admin(bootstrap):
    result = bootstrap.bootstrap_admin("admin@example.com", "SecurePassword123!")
    assert result["status"] == "created"
    runtime = get_runtime()
    user = runtime.store.get_user(result["user_id"])
    assert user.role == UserRole.ADMIN
    assert user.status == UserStatus.ACTIVE
    assert user.email_verified is True
    assert runtime.auth.hasher.verify("SecurePassword123!", user.password_hash)


def test_promotes_existing_user(bootstrap):
    store = get_runtime().store
    existing = store.create_user("someone@example.com", "hash")
    result = bootstrap.bootstrap_admin("someone@example.com", "SecurePassword123!")
    assert result == {"user_id": existing.id, "email": "someone@example.com", "status": "promoted"}
    promoted = store.get_user(existing.id)
    assert promoted.role == UserRole.ADMIN
    assert promoted.email_verified is True
    assert promoted.password_hash == "hash"

    again = bootstrap.bootstrap_admin("someone@example.com", "SecurePassword123!")
    assert again["status"] == "already_admin"


def test_dry_run_changes_nothing(bootstrap):
    result = bootstrap.bootstrap_admin("admin@example.com", "SecurePassword123!", dry_run=True)
    assert result["status"] == "dry_run"
    assert get_runtime().store.get_user_by_email("admin@example.com") is None


def test_main_requires_credentials(bootstrap, monkeypatch):
    monkeypatch.delenv("ADMIN_EMAIL", raising=False)
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
    monkeypatch.setattr("sys.argv", ["bootstrap_admin.py"])
    with pytest.raises(SystemExit) as exc_info:
        bootstrap.main()
    assert exc_info.value.code == 1


def test_promotion_drops_pending_verification_code(bootstrap):
    runtime = get_runtime()
    pending = runtime.store.create_user("pending@example.com", "hash")
    runtime.auth.challenges.issue(pending, ChallengePurpose.EMAIL_VERIFICATION)

    bootstrap.bootstrap_admin("pending@example.com", "SecurePassword123!")
    assert runtime.store.get_challenge(pending.id, ChallengePurpose.EMAIL_VERIFICATION) is None
    assert runtime.store.get_user(pending.id).status == UserStatus.ACTIVE


def test_list_admins(bootstrap):
    runtime = get_runtime()
    runtime.store.create_user("user@example.com", "hash")
    bootstrap.bootstrap_admin("admin@example.com", "SecurePassword123!")
    admins = bootstrap.list_admins()
    assert [admin["email"] for admin in admins] == ["admin@example.com"]
    assert admins[0]["status"] == "ACTIVE"


def test_main_list_prints_admins(bootstrap, monkeypatch, capsys):
    monkeypatch.setenv("USE_MEMORY_STORE", "true")
    bootstrap.bootstrap_admin("admin@example.com", "SecurePassword123!")
    monkeypatch.setattr("sys.argv", ["bootstrap_admin.py", "--list"])
    bootstrap.main()
    out = capsys.readouterr().out
    assert "admin@example.com" in out
    assert "1 admin account(s)" in out
