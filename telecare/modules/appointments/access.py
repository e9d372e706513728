"""Role-scoped write and read rules for appointments.

The store does not enforce these itself; services call them with the actor
from the HTTP layer before touching a record.
"""
from dataclasses import dataclass
from telecare.core.errors import Unauthorized
from telecare.core.security import Principal, Role

@dataclass(frozen=True)
class WriteTarget:
    provider_identity: str | None
    org_id: str | None
    department_id: str | None

    @classmethod
    def of(cls, appt) -> "WriteTarget":
        return cls(appt.provider_identity, appt.org_id, appt.department_id)

def authorize_write(actor: Principal, target: WriteTarget) -> None:
    if actor.role == Role.SYSTEM_ADMIN:
        return
    if actor.role == Role.PROVIDER:
        if target.provider_identity != actor.identity:
            raise Unauthorized("Provider can only manage their own appointments")
        return
    if actor.role == Role.ORG_ADMIN:
        if target.org_id != actor.org_id:
            raise Unauthorized("Org admin can only manage appointments in their organization")
        return
    if actor.role == Role.DEPARTMENT_ADMIN:
        if not actor.department_id or target.department_id != actor.department_id:
            raise Unauthorized("Department admin can only manage appointments in their department")
        return
    raise Unauthorized(f"Role {actor.role.value} cannot manage appointments")

def read_scope(actor: Principal) -> dict[str, str]:
    """Column filters restricting what an actor may list."""
    if actor.role == Role.PROVIDER:
        return {"provider_identity": actor.identity}
    if actor.role == Role.DEPARTMENT_ADMIN and actor.department_id:
        return {"department_id": actor.department_id}
    if actor.role in (Role.ORG_ADMIN, Role.DEPARTMENT_ADMIN):
        return {"org_id": actor.org_id}
    if actor.role == Role.CLIENT:
        return {"client_email": actor.identity}
    return {}

def can_read(actor: Principal, appt) -> bool:
    return all(getattr(appt, field) == value for field, value in read_scope(actor).items())

def apply_actor_defaults(actor: Principal, data: dict) -> dict:
    if actor.role == Role.DEPARTMENT_ADMIN and actor.department_id:
        data["department_id"] = actor.department_id
    if not data.get("org_id"):
        data["org_id"] = actor.org_id
    return data
