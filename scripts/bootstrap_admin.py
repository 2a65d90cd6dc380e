#!/usr/bin/env python3
"""Create the first admin account, or promote an existing one.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=admin@example.com ADMIN_USERNAME=admin ADMIN_PASSWORD='Secure#Pass123' \
        python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --email admin@example.com --username admin \
        --password 'Secure#Pass123'

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_USERNAME: Username for a newly created admin (defaults to the email's local part)
    ADMIN_PASSWORD: Password for the admin user (must meet complexity requirements)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import os
import re
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def password_problem(password: str) -> str | None:
    """Run the API password rule; returns its message when the password fails it."""
    from projectdesk.api.schemas import validate_password_strength

    try:
        validate_password_strength(password)
    except ValueError as exc:
        return str(exc)
    return None


def default_username(email: str) -> str:
    local = email.split("@", 1)[0].lower()
    cleaned = re.sub(r"[^a-z0-9_]", "_", local)
    return cleaned if len(cleaned) >= 3 else f"{cleaned}_admin"


def bootstrap_admin(email: str, username: str, password: str, dry_run: bool = False) -> dict:
    """Create or update an admin user.

    Returns:
        dict with user_id, email, and status ('created', 'promoted', 'updated' or 'dry_run')
    """
    # Import here so the env defaults set in main() are seen by get_settings()
    from projectdesk.service.runtime import get_runtime

    runtime = get_runtime()
    existing_user = runtime.store.get_user_by_email(email)

    if dry_run:
        action = "promote" if existing_user and existing_user.role != "admin" else (
            "update password of" if existing_user else "create"
        )
        print(f"[DRY RUN] Would {action} admin user: {email}")
        return {
            "user_id": existing_user.id if existing_user else None,
            "email": email,
            "status": "dry_run",
        }

    was_admin = bool(existing_user and existing_user.role == "admin")
    user = runtime.auth.ensure_admin(email, username, password)
    if existing_user is None:
        status = "created"
    elif was_admin:
        status = "updated"
    else:
        status = "promoted"
    print(f"Admin user {email} {status} (id: {user.id})")
    return {"user_id": user.id, "email": email, "status": status}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for ProjectDesk",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("ADMIN_USERNAME"),
        help="Admin username for a new account (or set ADMIN_USERNAME env var)",
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
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        return 1

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        return 1

    problem = password_problem(args.password)
    if problem:
        print(f"Error: {problem}")
        return 1

    email = args.email.strip().lower()
    username = (args.username or default_username(email)).strip().lower()

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ.setdefault("USE_MEMORY_STORE", "true")
        os.environ.setdefault("SHARED_FS_ROOT", "/tmp/projectdesk-bootstrap")
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    # Rate limits are not needed for a one-shot script
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = bootstrap_admin(email, username, args.password, args.dry_run)
    except Exception as e:
        print(f"Error: {e}")
        return 1

    if result["status"] == "created":
        print("\nAdmin user created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "promoted":
        print("\nExisting user promoted to admin!")
    elif result["status"] == "updated":
        print("\nUser was already an admin; password updated.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
