from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from elepy.core.config import settings
from elepy.core.security import hash_password, verify_password
from elepy.models.user import User


def normalize_username(raw: str | None) -> str:
    return str(raw or "").strip().lower()


def get_active_user(db: Session, username: str) -> User | None:
    normalized = normalize_username(username)
    if not normalized:
        return None
    return (
        db.query(User)
        .filter(func.lower(User.username) == normalized, User.is_active.is_(True))
        .first()
    )


def ensure_bootstrap_user_for_login(db: Session, username: str, password: str) -> User | None:
    """Create (or repair) the configured bootstrap account when its credentials are used."""
    if not settings.BOOTSTRAP_ENABLED:
        return None

    normalized = normalize_username(username)
    bootstrap_username = normalize_username(settings.BOOTSTRAP_USERNAME)
    if not bootstrap_username or normalized != bootstrap_username:
        return None
    if str(password or "") != str(settings.BOOTSTRAP_PASSWORD or ""):
        return None

    permissions = list(settings.split_permissions(settings.BOOTSTRAP_PERMISSIONS))
    user = db.query(User).filter(func.lower(User.username) == bootstrap_username).first()
    if user is None:
        user = User(
            username=bootstrap_username,
            password_hash=hash_password(str(settings.BOOTSTRAP_PASSWORD or "")),
            permissions=permissions,
            is_active=True,
        )
    else:
        user.is_active = True
        user.permissions = sorted(set(user.permissions or []) | set(permissions))
        if not verify_password(str(settings.BOOTSTRAP_PASSWORD or ""), str(user.password_hash or "")):
            user.password_hash = hash_password(str(settings.BOOTSTRAP_PASSWORD or ""))
    db.add(user)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return get_active_user(db, bootstrap_username)
    db.refresh(user)
    return user


def authenticate(db: Session, username: str, password: str) -> User | None:
    user = ensure_bootstrap_user_for_login(db, username, password)
    if user is None:
        user = get_active_user(db, username)
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def claims_for(user: User) -> dict:
    return {
        "sub": str(user.id),
        "username": user.username,
        "permissions": list(user.permissions or []),
    }
