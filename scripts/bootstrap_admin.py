#!/usr/bin/env python3
"""Bootstrap a service-caller (and optionally administrative) account.

Usage:
    # Using environment variables:
    ADMIN_LOGIN=portal ADMIN_EMAIL=portal@example.com ADMIN_PASSWORD='Secure-Pass1' \
        python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --login portal --email portal@example.com \
        --password 'Secure-Pass1' --rights service-caller administrative --room Lobby

Environment Variables:
    ADMIN_LOGIN: Login name of the account
    ADMIN_EMAIL: Email of the account
    ADMIN_PASSWORD: Password (must satisfy the strength policy)
    SHARED_FS_ROOT: Where the memory store keeps its state file
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Iterable, List, Optional

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

GRANTABLE_RIGHTS = ("service-caller", "administrative")


def bootstrap_admin(
    login: str,
    email: Optional[str],
    password: str,
    rights: Iterable[str] = ("service-caller",),
    rooms: Iterable[str] = (),
    dry_run: bool = False,
) -> dict:
    """Create the account, or grant the rights to an existing one.

    Returns:
        dict with user_id, login, rights, rooms and status
        ('created', 'granted', 'unchanged' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from roomgate.service.password_policy import StrongPasswordPolicy
    from roomgate.service.runtime import get_runtime
    from roomgate.storage.models import Right, User

    runtime = get_runtime()
    wanted = {Right(r) for r in rights} | {Right.LOGIN}
    room_ids: List[int] = []

    existing = runtime.store.get_user_by_login_or_email(login)
    if existing:
        missing = wanted - existing.rights
        if not missing:
            status = "unchanged"
        elif dry_run:
            print(f"[DRY RUN] Would grant {sorted(r.value for r in missing)} to {login}")
            status = "dry_run"
        else:
            runtime.store.add_user_rights(existing.id, missing)
            print(f"Granted {sorted(r.value for r in missing)} to {login} (id: {existing.id})")
            status = "granted"
        user_id: Optional[int] = existing.id
    else:
        violations = StrongPasswordPolicy(runtime.settings.password_min_length).validate(
            password, User(id=0, login=login, email=email)
        )
        if violations:
            raise ValueError("; ".join(violations))
        if dry_run:
            print(f"[DRY RUN] Would create {login} with {sorted(r.value for r in wanted)}")
            return {"user_id": None, "login": login, "rights": [], "rooms": [], "status": "dry_run"}
        user = runtime.store.create_user(
            login,
            email=email,
            timezone_id=runtime.settings.default_timezone,
            language_id=runtime.settings.default_language_id,
            rights=wanted,
        )
        runtime.auth.save_password(user.id, password)
        print(f"Created account: {login} (id: {user.id})")
        user_id = user.id
        status = "created"

    for name in rooms:
        if dry_run:
            print(f"[DRY RUN] Would create room {name}")
            continue
        room = runtime.store.create_room(name)
        room_ids.append(room.id)
        print(f"Created room {name} (id: {room.id})")

    return {
        "user_id": user_id,
        "login": login,
        "rights": sorted(r.value for r in wanted),
        "rooms": room_ids,
        "status": status,
    }


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Bootstrap a gateway caller account for Roomgate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--login",
        default=os.environ.get("ADMIN_LOGIN"),
        help="Account login (or set ADMIN_LOGIN env var)",
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Account email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Account password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--rights",
        nargs="+",
        choices=GRANTABLE_RIGHTS,
        default=["service-caller"],
        help="Rights to grant besides login",
    )
    parser.add_argument(
        "--room",
        action="append",
        default=[],
        help="Create a room with this name (repeatable)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args(argv)

    if not args.login:
        print("Error: --login or ADMIN_LOGIN environment variable required")
        return 1

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        return 1

    if not os.environ.get("SHARED_FS_ROOT"):
        os.environ["SHARED_FS_ROOT"] = "/tmp/roomgate-bootstrap"

    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = bootstrap_admin(
            args.login,
            args.email,
            args.password,
            rights=args.rights,
            rooms=args.room,
            dry_run=args.dry_run,
        )
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    if result["status"] == "created":
        print("\nAccount created successfully!")
        print(f"  Login: {result['login']}")
        print(f"  User ID: {result['user_id']}")
        print(f"  Rights: {', '.join(result['rights'])}")
    elif result["status"] == "unchanged":
        print("\nNo changes needed - account already holds these rights.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
