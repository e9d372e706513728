from types import SimpleNamespace

import pytest

from telecare.core.errors import Unauthorized
from telecare.core.security import Principal, Role
from telecare.modules.appointments.access import WriteTarget, apply_actor_defaults, authorize_write, can_read, read_scope

TARGET = WriteTarget(provider_identity="p@clinic.test", org_id="org-1", department_id="cardiology")


def _actor(role: Role, identity="p@clinic.test", org_id="org-1", department_id=None) -> Principal:
    return Principal(identity=identity, role=role, org_id=org_id, department_id=department_id)


class TestAuthorizeWrite:
    @pytest.mark.parametrize(
        "actor",
        [
            _actor(Role.SYSTEM_ADMIN, identity="root", org_id="elsewhere"),
            _actor(Role.PROVIDER),
            _actor(Role.ORG_ADMIN, identity="ops"),
            _actor(Role.DEPARTMENT_ADMIN, identity="desk", department_id="cardiology"),
        ],
    )
    def test_allowed(self, actor):
        authorize_write(actor, TARGET)

    @pytest.mark.parametrize(
        "actor",
        [
            _actor(Role.PROVIDER, identity="someone-else"),
            _actor(Role.ORG_ADMIN, identity="ops", org_id="org-2"),
            _actor(Role.DEPARTMENT_ADMIN, identity="desk", department_id="oncology"),
            _actor(Role.DEPARTMENT_ADMIN, identity="desk"),
            _actor(Role.CLIENT),
        ],
    )
    def test_denied(self, actor):
        with pytest.raises(Unauthorized):
            authorize_write(actor, TARGET)


class TestReadScope:
    def test_provider_sees_own(self):
        assert read_scope(_actor(Role.PROVIDER)) == {"provider_identity": "p@clinic.test"}

    def test_department_admin_sees_department(self):
        assert read_scope(_actor(Role.DEPARTMENT_ADMIN, department_id="cardiology")) == {"department_id": "cardiology"}

    def test_org_admin_sees_org(self):
        assert read_scope(_actor(Role.ORG_ADMIN)) == {"org_id": "org-1"}

    def test_client_sees_own_bookings(self):
        assert read_scope(_actor(Role.CLIENT, identity="c@example.test")) == {"client_email": "c@example.test"}

    def test_system_admin_is_unscoped(self):
        assert read_scope(_actor(Role.SYSTEM_ADMIN)) == {}

    def test_can_read(self):
        appt = SimpleNamespace(provider_identity="p@clinic.test", org_id="org-1", department_id=None, client_email=None)
        assert can_read(_actor(Role.PROVIDER), appt)
        assert not can_read(_actor(Role.PROVIDER, identity="other"), appt)


class TestActorDefaults:
    def test_department_admin_department_is_stamped(self):
        data = apply_actor_defaults(_actor(Role.DEPARTMENT_ADMIN, department_id="cardiology"), {"department_id": "oncology"})
        assert data["department_id"] == "cardiology"
        assert data["org_id"] == "org-1"

    def test_explicit_org_is_kept(self):
        assert apply_actor_defaults(_actor(Role.SYSTEM_ADMIN), {"org_id": "org-9"})["org_id"] == "org-9"
