"""Request identity supplied by the upstream auth layer.

Sessions and tokens are handled in front of this service; every request
arrives with the caller's organisation, user id and role in headers.
"""
from typing import Optional
from fastapi import Header, HTTPException
from pydantic import BaseModel


class CurrentUser(BaseModel):
    id: str
    org_id: str
    role: str = "employee"
    full_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.id


def get_current_user(
    x_org_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
) -> CurrentUser:
    if not x_org_id or not x_user_id:
        raise HTTPException(status_code=401, detail="Missing tenant context")
    return CurrentUser(
        id=x_user_id,
        org_id=x_org_id,
        role=(x_user_role or "employee").lower(),
        full_name=x_user_name,
    )


def require_roles(user: CurrentUser, *roles: str):
    if user.role not in roles:
        raise HTTPException(
            status_code=403,
            detail=f"{'/'.join(r.title() for r in roles)} access required",
        )


def require_tenant(user: CurrentUser, tenant_id: str):
    """System admins may act on any tenant; everyone else only on their own."""
    if user.org_id != tenant_id and user.role != "system_admin":
        raise HTTPException(status_code=403, detail="Access denied to tenant data")


# Roles allowed to change grids, campaigns, caps and settlement state
ADMIN_ROLES = ("admin", "manager", "system_admin")
