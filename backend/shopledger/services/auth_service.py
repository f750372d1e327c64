# Overview: Identity lookup for the acting user; token issuance lives outside the ledger.

"""
Acting-user resolution.

The ledger does not authenticate anybody. An external identity service (or
the `users create` CLI command) hands a random bearer token to the client;
we store only its SHA-256 hash and map incoming tokens back to a User.
"""

from __future__ import annotations

import hashlib
import secrets

from ..extensions import db
from ..models import Store, User
from ..errors import DuplicateCodeError, NotFoundError, ValidationError
from ..states import Role, values


def generate_token() -> str:
    """64 hex chars (32 bytes of entropy)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is enough for high-entropy tokens; bcrypt is for passwords."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_store(name: str, code: str) -> Store:
    if db.session.query(Store).filter_by(code=code).first():
        raise DuplicateCodeError(f"Store code '{code}' already exists")
    store = Store(name=name, code=code)
    db.session.add(store)
    db.session.commit()
    return store


def create_user(
    store_id: int,
    username: str,
    role: str = Role.SELLER.value,
    full_name: str | None = None,
) -> tuple[User, str]:
    """
    Create a user and issue a bearer token.

    Returns (user, plaintext_token). The plaintext is shown once.
    """
    if role not in values(Role):
        raise ValidationError(f"Invalid role '{role}'. Must be one of {values(Role)}")
    if not db.session.get(Store, store_id):
        raise NotFoundError(f"Store {store_id} not found")
    if db.session.query(User).filter_by(store_id=store_id, username=username).first():
        raise DuplicateCodeError(f"User '{username}' already exists in this store")

    token = generate_token()
    user = User(
        store_id=store_id,
        username=username,
        full_name=full_name,
        role=role,
        api_token_hash=hash_token(token),
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user, token


def rotate_token(user_id: int) -> str:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    token = generate_token()
    user.api_token_hash = hash_token(token)
    db.session.commit()
    return token


def resolve_token(token: str) -> User | None:
    """Active user owning this token, or None."""
    if not token:
        return None
    user = db.session.query(User).filter_by(api_token_hash=hash_token(token)).first()
    if not user or not user.is_active:
        return None
    return user
