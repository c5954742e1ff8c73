#!/usr/bin/env python3
"""Create or promote an administrator account.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=SecurePassword123! python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@example.com --password SecurePassword123!

    python scripts/bootstrap_admin.py --list

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_PASSWORD: Password for the admin user (must meet complexity requirements)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_password(password: str) -> bool:
    """At least 12 characters drawn from three or more character classes."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(not c.isalnum() for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


def bootstrap_admin(email: str, password: str, dry_run: bool = False, runtime=None) -> dict:
    """Create a verified ADMIN account, or promote the existing one.

    Admins created here skip the emailed verification step.
    """
    # Imported late so env defaults set in main() are seen by settings
    from emovers.config import ChallengePurpose
    from emovers.service.runtime import get_runtime
    from emovers.storage.models import UserRole, UserStatus

    runtime = runtime or get_runtime()
    existing = runtime.store.get_user_by_email(email)

    if existing:
        if existing.role == UserRole.ADMIN:
            return {"user_id": existing.id, "email": existing.email, "status": "already_admin"}
        if dry_run:
            return {"user_id": existing.id, "email": existing.email, "status": "dry_run"}
        runtime.store.update_user(
            existing.id,
            role=UserRole.ADMIN,
            email_verified=True,
            status=UserStatus.ACTIVE,
        )
        runtime.store.clear_challenge(existing.id, ChallengePurpose.EMAIL_VERIFICATION)
        return {"user_id": existing.id, "email": existing.email, "status": "promoted"}

    if dry_run:
        return {"user_id": None, "email": email, "status": "dry_run"}

    user = runtime.store.create_user(
        email,
        runtime.auth.hasher.hash(password),
        name="Administrator",
        role=UserRole.ADMIN,
        status=UserStatus.ACTIVE,
        email_verified=True,
    )
    return {"user_id": user.id, "email": user.email, "status": "created"}


def list_admins(runtime=None, limit: int = 1000) -> list[dict]:
    """Return ``{id, email, status}`` for every ADMIN among the newest ``limit`` users."""
    from emovers.service.runtime import get_runtime
    from emovers.storage.models import UserRole

    runtime = runtime or get_runtime()
    return [
        {"id": user.id, "email": user.email, "status": user.status.value}
        for user in runtime.store.list_users(limit=limit)
        if user.role == UserRole.ADMIN
    ]


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for E-movers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List existing admin accounts and exit",
    )
    args = parser.parse_args()

    if args.list:
        if not os.environ.get("DATABASE_URL"):
            os.environ["USE_MEMORY_STORE"] = "true"
        os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
        admins = list_admins()
        for admin in admins:
            print(f"{admin['id']}\t{admin['email']}\t{admin['status']}")
        print(f"{len(admins)} admin account(s)")
        return

    if not args.email or not args.password:
        print("Error: --email/--password or ADMIN_EMAIL/ADMIN_PASSWORD are required")
        sys.exit(1)
    if not validate_password(args.password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")
    # Only the store is touched; no tokens are revoked from here
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = bootstrap_admin(args.email, args.password, args.dry_run)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    messages = {
        "created": "Admin user created",
        "promoted": "Existing user promoted to admin",
        "already_admin": "No changes needed - user is already an admin",
        "dry_run": "[DRY RUN] No changes made",
    }
    print(f"{messages[result['status']]}: {result['email']} (id: {result['user_id']})")


if __name__ == "__main__":
    main()
