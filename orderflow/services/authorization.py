"""Caller identity, organization context and order permissions.

Authentication happens upstream; this module only turns an already
authenticated user id and an acting organization id into the context the
order services check against. The permission check itself sits behind
the ``PermissionChecker`` protocol so a deployment can plug in its own
policy.
"""

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.db.models import (
    Organization,
    OrganizationMember,
    OrgRole,
    OrgType,
    User,
)
from orderflow.errors import ForbiddenError

ORDER_CREATOR_ROLES = frozenset({
    OrgRole.personal_owner.value,
    OrgRole.owner.value,
    OrgRole.admin.value,
    OrgRole.project_manager.value,
})


@dataclass(frozen=True)
class AuthenticatedUser:
    """The caller, as established by the authentication layer."""

    id: str
    email: str
    name: str = ""


@dataclass(frozen=True)
class OrgContext:
    """The organization a request acts in and the caller's role there."""

    org_id: str
    org_type: str
    effective_role: str | None

    @property
    def is_personal(self) -> bool:
        return self.org_type == OrgType.personal.value

    @property
    def is_company(self) -> bool:
        return self.org_type == OrgType.company.value


class PermissionChecker(Protocol):
    """Decides whether a user may create orders in an organization."""

    def can_create_order(self, ctx: OrgContext, user: AuthenticatedUser) -> bool:
        ...


class RolePermissionChecker:
    """Default policy: owners, admins and project managers create orders.

    In a personal organization only its owner may.
    """

    def can_create_order(self, ctx: OrgContext, user: AuthenticatedUser) -> bool:
        if ctx.is_personal:
            return ctx.effective_role == OrgRole.personal_owner.value
        return ctx.effective_role in ORDER_CREATOR_ROLES


def load_user(db: Session, user_id: str) -> AuthenticatedUser | None:
    """Look up the caller by id. Returns None for unknown users."""
    user = db.get(User, user_id)
    if user is None:
        return None
    return AuthenticatedUser(id=user.id, email=user.email, name=user.name)


def load_org_context(db: Session, user: AuthenticatedUser, org_id: str) -> OrgContext:
    """Build the org context for a member of ``org_id``.

    Members of a personal organization act as its owner.

    Raises:
        ForbiddenError: If the organization does not exist or the user is
            not a member.
    """
    org = db.get(Organization, org_id)
    if org is None:
        raise ForbiddenError("Organization not found or access denied")
    membership = db.scalars(
        select(OrganizationMember).where(
            OrganizationMember.org_id == org_id,
            OrganizationMember.user_id == user.id,
        )
    ).first()
    if membership is None:
        raise ForbiddenError("Organization not found or access denied")

    role = membership.role
    if org.type == OrgType.personal.value:
        role = OrgRole.personal_owner.value
    return OrgContext(org_id=org.id, org_type=org.type, effective_role=role)
