"""Tests for caller identity and org context resolution."""

import pytest

from orderflow.db.models import OrgRole, OrgType
from orderflow.errors import ForbiddenError
from orderflow.services.authorization import (
    AuthenticatedUser,
    OrgContext,
    RolePermissionChecker,
    load_org_context,
    load_user,
)


def _user(user) -> AuthenticatedUser:
    return AuthenticatedUser(id=user.id, email=user.email, name=user.name)


class TestLoadOrgContext:
    """Tests for load_org_context."""

    def test_member_role(self, db_session, seed):
        ctx = load_org_context(db_session, _user(seed.technician), seed.company.id)
        assert ctx.effective_role == OrgRole.technician.value
        assert ctx.is_company

    def test_personal_org_member_is_personal_owner(self, db_session, seed):
        ctx = load_org_context(db_session, _user(seed.solo), seed.personal.id)
        assert ctx.is_personal
        assert ctx.effective_role == OrgRole.personal_owner.value

    def test_non_member_is_forbidden(self, db_session, seed):
        with pytest.raises(ForbiddenError):
            load_org_context(db_session, _user(seed.agent), seed.company.id)

    def test_unknown_org_is_forbidden(self, db_session, seed):
        with pytest.raises(ForbiddenError):
            load_org_context(db_session, _user(seed.owner), "missing")


def test_load_user(db_session, seed):
    assert load_user(db_session, seed.owner.id).email == "owner@brighthomes.test"
    assert load_user(db_session, "missing") is None


@pytest.mark.parametrize("org_type,role,allowed", [
    (OrgType.company, OrgRole.owner, True),
    (OrgType.company, OrgRole.admin, True),
    (OrgType.company, OrgRole.project_manager, True),
    (OrgType.company, OrgRole.technician, False),
    (OrgType.company, OrgRole.editor, False),
    (OrgType.team, OrgRole.admin, True),
    (OrgType.personal, OrgRole.personal_owner, True),
    (OrgType.personal, OrgRole.admin, False),
])
def test_role_permission_checker(org_type, role, allowed):
    ctx = OrgContext(org_id="o", org_type=org_type.value, effective_role=role.value)
    user = AuthenticatedUser(id="u", email="u@example.test")
    assert RolePermissionChecker().can_create_order(ctx, user) is allowed
