from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Request


SUPER_ADMIN_ROLES = {"super_admin"}
OWNER_ROLES = {"owner"}
STAFF_ROLES = {"staff"}
MANAGEMENT_ROLES = set().union(SUPER_ADMIN_ROLES, OWNER_ROLES)
ALL_ROLES = set().union(SUPER_ADMIN_ROLES, OWNER_ROLES, STAFF_ROLES)


def normalize_role(role: Any) -> str:
    try:
        return str(role or "").strip().lower()
    except Exception:
        return ""


def parse_int(value: Any) -> Optional[int]:
    try:
        if value is None:
            return None
        iv = int(value)
        return iv
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class RequestContext:
    """Identidad resuelta una vez por request y pasada a cada servicio."""

    user_id: int
    role: str
    organization_id: Optional[int] = None
    branch_id: Optional[int] = None
    full_name: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role in SUPER_ADMIN_ROLES

    @property
    def is_owner(self) -> bool:
        return self.role in OWNER_ROLES

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def branch_scope(self) -> Optional[int]:
        """Sede a la que se restringen las lecturas (solo staff con sede asignada)."""
        if self.is_staff and self.branch_id:
            return self.branch_id
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "organization_id": self.organization_id,
            "branch_id": self.branch_id,
            "full_name": self.full_name,
        }


def get_claims(request: Request) -> Dict[str, Any]:
    s = request.session
    role = normalize_role(s.get("role"))
    user_id = parse_int(s.get("user_id"))
    logged_in = bool(s.get("logged_in"))
    return {
        "role": role,
        "user_id": user_id,
        "logged_in": logged_in,
        "organization_id": parse_int(s.get("organization_id")),
        "branch_id": parse_int(s.get("branch_id")),
        "is_authenticated": bool(user_id) and logged_in,
        "is_super_admin": role in SUPER_ADMIN_ROLES,
        "is_owner": role in OWNER_ROLES,
        "is_staff": role in STAFF_ROLES,
    }


def set_session_claims(
    session: Dict[str, Any],
    *,
    role: Optional[str] = None,
    user_id: Optional[int] = None,
    logged_in: Optional[bool] = None,
    organization_id: Optional[int] = None,
    branch_id: Optional[int] = None,
) -> None:
    if role is not None:
        session["role"] = normalize_role(role)
    if user_id is not None:
        session["user_id"] = int(user_id)
    if logged_in is not None:
        session["logged_in"] = bool(logged_in)
    if organization_id is not None:
        session["organization_id"] = int(organization_id)
    if branch_id is not None:
        session["branch_id"] = int(branch_id)
