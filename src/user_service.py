"""Accounts: register, login, profile and user lookup."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

import auth
import db as _db
from errors import Conflict, NotFound, Unauthorized, ValidationError
from models import User
from schemas import Principal, UserRead

logger = logging.getLogger(__name__)


def _clean(value: str | None) -> str:
    return (value or "").strip()


def to_principal(user: User) -> Principal:
    return Principal(id=user.id, username=user.username, email=user.email)


def _to_read(user: User) -> UserRead:
    return UserRead(
        id=user.id,
        username=user.username,
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def register_user(username: str | None, email: str | None, password: str | None) -> tuple[Principal, str]:
    """Create an account and return (principal, token).

    Raises ValidationError if a field is missing, Conflict if the email or
    username is taken.
    """
    username, email = _clean(username), _clean(email)
    if not username or not email or not password:
        raise ValidationError("Username, email and password are required")

    with Session(_db.get_engine()) as session:
        existing = session.exec(
            select(User.id).where(or_(User.email == email, User.username == username))
        ).first()
        if existing is not None:
            raise Conflict("User with that email or username already exists")
        user = User(username=username, email=email, password_hash=auth.hash_password(password))
        session.add(user)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise Conflict("User with that email or username already exists") from exc
        session.refresh(user)
        principal = to_principal(user)

    logger.info("Registered user %s (id=%s).", principal.username, principal.id)
    return principal, auth.issue_token(principal)


def login(email: str | None, password: str | None) -> tuple[Principal, str]:
    email = _clean(email)
    if not email or not password:
        raise ValidationError("Email and password are required")
    with Session(_db.get_engine()) as session:
        user = session.exec(select(User).where(User.email == email)).first()
    if user is None or not auth.verify_password(password, user.password_hash):
        raise Unauthorized("Invalid email or password")
    principal = to_principal(user)
    return principal, auth.issue_token(principal)


def get_user(user_id: int) -> User | None:
    """Return a User by id, or None if not found."""
    with Session(_db.get_engine()) as session:
        return session.get(User, user_id)


def find_user_by_identifier(identifier: str) -> User | None:
    """Return the user whose email or username equals *identifier*."""
    with Session(_db.get_engine()) as session:
        return session.exec(
            select(User)
            .where(or_(User.email == identifier, User.username == identifier))
            .order_by(User.id)
            .limit(1)
        ).first()


def get_profile(user_id: int) -> UserRead:
    user = get_user(user_id)
    if user is None:
        raise NotFound("User not found")
    return _to_read(user)


def update_profile(user_id: int, username: str | None, email: str | None) -> UserRead:
    username, email = _clean(username), _clean(email)
    if not username or not email:
        raise ValidationError("Username and email are required")
    with Session(_db.get_engine()) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        taken = session.exec(
            select(User.id).where(
                or_(User.email == email, User.username == username),
                User.id != user_id,
            )
        ).first()
        if taken is not None:
            raise Conflict("User with that email or username already exists")
        user.username = username
        user.email = email
        user.updated_at = datetime.now()
        session.add(user)
        session.commit()
        session.refresh(user)
        return _to_read(user)


def change_password(user_id: int, password: str | None) -> None:
    if not password:
        raise ValidationError("Password is required")
    with Session(_db.get_engine()) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        user.password_hash = auth.hash_password(password)
        user.updated_at = datetime.now()
        session.add(user)
        session.commit()
    logger.info("Password changed for user id=%s.", user_id)
