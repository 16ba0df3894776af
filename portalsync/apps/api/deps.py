from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status
from pydantic import BaseModel

from portalsync.services.portal import OperatorRole, PortalSession, SessionRegistry


_ROLES: tuple[str, ...] = ("admin", "client")


class Principal(BaseModel):
    # Operator identity forwarded by the portal front end.
    operator_id: str
    tenant_id: str | None
    role: OperatorRole


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


async def get_principal(
    x_operator_id: str | None = Header(default=None),
    x_operator_tenant_id: str | None = Header(default=None),
    x_operator_role: str | None = Header(default="client"),
) -> Principal:
    if not x_operator_id:
        raise _auth_error("Missing X-Operator-Id header")
    role = (x_operator_role or "client").lower()
    if role not in _ROLES:
        raise _auth_error(f"Unknown operator role: {role}")
    return Principal(
        operator_id=x_operator_id,
        tenant_id=x_operator_tenant_id or None,
        role=role,  # type: ignore[arg-type]
    )


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


async def get_portal_session(
    request: Request,
    principal: Principal = Depends(get_principal),
    registry: SessionRegistry = Depends(get_registry),
) -> PortalSession:
    session = await registry.get_or_create(
        operator_id=principal.operator_id,
        operator_tenant_id=principal.tenant_id,
        role=principal.role,
    )
    if session.role != principal.role:
        raise _forbidden_error("Operator role changed; start a new session")
    request.state.scope = session.scope
    return session


def require_admin(session: PortalSession = Depends(get_portal_session)) -> PortalSession:
    if not session.is_admin:
        raise _forbidden_error("Admin role required")
    return session
