"""
Create a user (e.g. first admin). Run from project root:
  python -m app.scripts.create_user USERNAME PASSWORD [role] [--resource DEVICE_ID ...]
Example:
  python -m app.scripts.create_user admin your-secure-password admin
  python -m app.scripts.create_user alice secret-pass client --resource dev-1 --resource dev-2
"""
import argparse
import sys

from pydantic import ValidationError

from app.core.database import SessionLocal
from app.models.user import ROLE_CLIENT, ROLES
from app.schemas.auth import UserCreateRequest
from app.services.errors import ConflictError
from app.services.user_store import SqlUserStore


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a Nodeguard user (no registration UI).")
    parser.add_argument("username", help="Username (3-50 chars)")
    parser.add_argument("password", help="Password (8-128 chars)")
    parser.add_argument("role", nargs="?", default=ROLE_CLIENT, choices=ROLES)
    parser.add_argument(
        "--resource",
        action="append",
        default=[],
        help="Device id the client may access (repeatable; ignored for admins)",
    )
    args = parser.parse_args(argv)

    try:
        body = UserCreateRequest(
            username=args.username.strip(),
            password=args.password,
            role=args.role,
            assigned_resources=args.resource,
        )
    except ValidationError as e:
        print(f"Invalid input: {e.errors()[0]['msg']}", file=sys.stderr)
        return 1

    db = SessionLocal()
    try:
        SqlUserStore(db).create_user(body)
    except ConflictError:
        print(f"User '{body.username}' already exists.", file=sys.stderr)
        return 1
    finally:
        db.close()
    print(f"Created user '{body.username}' with role '{args.role}'.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
