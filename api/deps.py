"""Request-scoped dependencies: caller identity and partner gateways."""
from typing import Optional

from fastapi import Header

from errors import AuthenticationRequired, AuthorizationError
from providers import Providers, get_providers
from services.permissions import ROLE_PERMISSIONS, Actor


async def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_org_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Identity is asserted by the upstream gateway after it verifies the session JWT."""
    if not x_user_id or not x_org_id:
        raise AuthenticationRequired("Authentication required")
    role = (x_user_role or "").strip().lower()
    if role not in ROLE_PERMISSIONS:
        raise AuthorizationError("Unknown or missing role", details={"role": x_user_role})
    return Actor(user_id=x_user_id, org_id=x_org_id, role=role)


def get_provider_clients() -> Providers:
    return get_providers()
