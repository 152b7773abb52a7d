"""Provision an admin account.

Registration only creates students, so operators run this once per deployment:

    python -m bookstore.create_admin "Admin User" admin@example.com 's3cretpass'

Arguments left out fall back to ADMIN_NAME, ADMIN_EMAIL and ADMIN_PASSWORD.
"""
import argparse
import logging
import sys

from sqlalchemy.orm import Session

from bookstore.api.auth import get_password_hash
from bookstore.config import settings
from bookstore.db_init import init_db
from bookstore.errors import BookstoreError, InvalidState, ValidationFailed
from bookstore.models import User
from bookstore.models.database import SessionLocal
from bookstore.models.user import ROLE_ADMIN

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def create_admin(db: Session, name: str, email: str, password: str) -> User:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if db.query(User).filter(User.email == email).first():
        raise InvalidState("User with this email already exists")

    user = User(
        name=name,
        email=email,
        hashed_password=get_password_hash(password),
        role=ROLE_ADMIN,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Created admin user id=%s email=%s", user.id, user.email)
    return user


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bookstore-create-admin", description="Create an admin user.")
    parser.add_argument("name", nargs="?", default=None, help="Display name (ADMIN_NAME)")
    parser.add_argument("email", nargs="?", default=None, help="Login email (ADMIN_EMAIL)")
    parser.add_argument("password", nargs="?", default=None, help="Password (ADMIN_PASSWORD)")
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = create_parser().parse_args(argv)
    name = args.name or settings.ADMIN_NAME
    email = args.email or settings.ADMIN_EMAIL
    password = args.password or settings.ADMIN_PASSWORD
    if not email or not password:
        print("Usage: bookstore-create-admin [name] [email] [password]", file=sys.stderr)
        print("Or set ADMIN_NAME, ADMIN_EMAIL and ADMIN_PASSWORD.", file=sys.stderr)
        return 1

    init_db()
    db = SessionLocal()
    try:
        user = create_admin(db, name, email, password)
    except BookstoreError as exc:
        db.rollback()
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        db.close()

    print(f"Admin user created: id={user.id} email={user.email}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
