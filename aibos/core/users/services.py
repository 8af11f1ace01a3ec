"""User service layer."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import func

from aibos.core.auth.password import hash_password
from aibos.core.users.models import User
from aibos.extensions import db


def get_user(user_id: int) -> Optional[User]:
    return db.session.get(User, user_id)


def find_user_by_email(email: str) -> Optional[User]:
    normalized = (email or "").strip().lower()
    return User.query.filter(func.lower(User.email) == normalized).first()


def create_user(email: str, password: str, full_name: Optional[str] = None) -> User:
    """Stage a new user; caller commits."""
    normalized = email.strip().lower()
    if find_user_by_email(normalized):
        raise ValueError("email_already_exists")
    user = User(
        email=normalized,
        full_name=full_name,
        password_hash=hash_password(password),
    )
    db.session.add(user)
    db.session.flush()
    return user
