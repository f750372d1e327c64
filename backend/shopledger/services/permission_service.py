# Overview: Role checks for privileged ledger operations.

from __future__ import annotations

from ..errors import UnauthorizedError
from ..states import Role

# cancel(document) and return approval are owner-only
ELEVATED_ROLES = (Role.OWNER.value,)


def require_role(user, *roles: str, action: str | None = None) -> None:
    """Raise UnauthorizedError unless `user` is active and holds one of `roles`."""
    if user is None or not user.is_active or user.role not in roles:
        what = f" to {action}" if action else ""
        raise UnauthorizedError(
            f"Requires role {' or '.join(roles)}{what}",
            details={"user_id": getattr(user, "id", None), "role": getattr(user, "role", None)},
        )


def require_elevated(user, action: str) -> None:
    require_role(user, *ELEVATED_ROLES, action=action)
