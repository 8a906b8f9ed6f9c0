import uuid

import pytest

from maraude_tracker.auth import policy
from maraude_tracker.errors import ForbiddenError
from maraude_tracker.models.db_models import Association, MaraudeAction, MaraudeReport, Merchant, User, UserRole

PARIS = uuid.uuid4()
LYON = uuid.uuid4()


def person(role: UserRole, association_id=PARIS) -> User:
    return User(id=uuid.uuid4(), role=role, association_id=association_id, is_active=True)


@pytest.fixture
def people():
    return {
        "admin": person(UserRole.ADMIN),
        "coordinator": person(UserRole.COORDINATOR),
        "volunteer": person(UserRole.VOLUNTEER),
        "peer": person(UserRole.VOLUNTEER),
        "outsider": person(UserRole.COORDINATOR, LYON),
    }


def action_by(user: User) -> MaraudeAction:
    return MaraudeAction(id=uuid.uuid4(), created_by=user.id, association_id=user.association_id)


class TestRolePredicates:
    def test_admin_and_coordinator(self, people):
        assert policy.is_admin(people["admin"])
        assert not policy.is_admin(people["coordinator"])
        assert policy.is_coordinator(people["coordinator"])
        assert not policy.is_coordinator(people["volunteer"])

    def test_anonymous_is_nothing(self):
        assert not policy.is_admin(None)
        assert not policy.is_self(None, person(UserRole.VOLUNTEER))


class TestOwnership:
    def test_user_resource_is_its_own_owner(self, people):
        assert policy.is_self(people["volunteer"], people["volunteer"])
        assert not policy.is_self(people["volunteer"], people["peer"])

    def test_created_by(self, people):
        assert policy.is_self(people["volunteer"], action_by(people["volunteer"]))
        assert not policy.is_self(people["peer"], action_by(people["volunteer"]))

    def test_added_by_on_merchants(self, people):
        merchant = Merchant(id=uuid.uuid4(), added_by=people["peer"].id)
        assert policy.is_self(people["peer"], merchant)
        assert not policy.is_self(people["volunteer"], merchant)


class TestAssociationScope:
    def test_association_resource_uses_its_own_id(self, people):
        paris = Association(id=PARIS)
        assert policy.is_same_association(people["volunteer"], paris)
        assert not policy.is_same_association(people["outsider"], paris)

    def test_report_reads_scope_through_its_action(self, people):
        action = action_by(people["volunteer"])
        report = MaraudeReport(id=uuid.uuid4(), created_by=people["volunteer"].id, maraude_action=action)
        assert report.association_id == PARIS
        assert policy.can_access_association(people["peer"], report)
        assert not policy.can_access_association(people["outsider"], report)
        assert policy.can_access_association(person(UserRole.ADMIN, LYON), report)


class TestCapabilities:
    def test_can_edit(self, people):
        action = action_by(people["volunteer"])
        assert policy.can_edit(people["volunteer"], action)
        assert policy.can_edit(people["coordinator"], action)
        assert policy.can_edit(people["admin"], action)
        assert not policy.can_edit(people["peer"], action)
        assert not policy.can_edit(people["outsider"], action)

    def test_can_manage_without_resource(self, people):
        assert policy.can_manage(people["admin"])
        assert policy.can_manage(people["coordinator"])
        assert not policy.can_manage(people["volunteer"])

    def test_can_manage_is_scoped_for_coordinators(self, people):
        action = action_by(people["volunteer"])
        assert policy.can_manage(people["coordinator"], action)
        assert not policy.can_manage(people["outsider"], action)
        assert policy.can_manage(person(UserRole.ADMIN, LYON), action)

    def test_creator_cannot_validate_own_work(self, people):
        action = action_by(people["volunteer"])
        assert not policy.can_validate(people["volunteer"], action)
        assert policy.can_validate(people["coordinator"], action)
        assert not policy.can_validate(people["outsider"], action)


def test_require_raises_forbidden():
    policy.require(True)
    with pytest.raises(ForbiddenError) as exc:
        policy.require(False)
    assert exc.value.status_code == 403
