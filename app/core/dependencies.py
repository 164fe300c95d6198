"""
Request identity supplied by the authentication gateway.

Token verification happens upstream; the gateway forwards the authenticated
user as ``X-User-Id`` / ``X-User-Role`` headers.
"""

from typing import Any, Dict, Optional
from fastapi import Header

from app.core.config import STAFF_WRITE_ROLES
from app.core.exceptions import AuthorizationError


async def require_staff_writer(
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Dict[str, Any]:
    """
    Only admin/secretary (configurable) may call mutating staff endpoints

    Raises:
        AuthorizationError: identity missing or role not allowed
    """
    role = (x_user_role or "").strip().lower()

    if x_user_id is None or not role:
        raise AuthorizationError("Authenticated staff identity is required")

    if role not in STAFF_WRITE_ROLES:
        raise AuthorizationError(
            f"Role '{role}' cannot perform this operation",
            details={"role": role, "allowed_roles": STAFF_WRITE_ROLES},
        )

    return {"id": x_user_id, "role": role}
