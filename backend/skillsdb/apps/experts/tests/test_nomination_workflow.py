from __future__ import annotations

import pytest

from skillsdb.apps.accounts import models as account_models
from skillsdb.apps.competencies import models as competency_models
from skillsdb.apps.competencies import schemas as competency_schemas
from skillsdb.apps.competencies import services as competency_services
from skillsdb.apps.experts import models as expert_models
from skillsdb.apps.experts import services as expert_services
from skillsdb.apps.notifications import models as notification_models
from skillsdb.apps.workflow import TransitionError
from skillsdb.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError


def _create_org(db) -> account_models.Organisation:
    org = account_models.Organisation(code="ORG-EXPERT", name="Expert Org", login_slug="expert")
    db.add(org)
    db.commit()
    return org


def _create_user(db, org_id: str, email: str, role=account_models.AccountRole.TRAINEE) -> account_models.User:
    user = account_models.User(
        org_id=org_id,
        email=email,
        full_name=email.split("@")[0].title(),
        role=role,
        site_name="North Plant",
        hashed_password="x",
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def network_setup(db_session):
    org = _create_org(db_session)
    admin = _create_user(db_session, org.id, "admin@example.com", account_models.AccountRole.ORG_ADMIN)
    manager = _create_user(db_session, org.id, "manager@example.com", account_models.AccountRole.MANAGER)
    competency = competency_models.Competency(org_id=org.id, name="Vibration Analysis")
    db_session.add(competency)
    db_session.commit()
    return org, admin, manager, competency


def _trainee_at_level(db, org, manager, competency, email, level, target_level=5):
    trainee = _create_user(db, org.id, email)
    competency_services.assign_competency(
        db,
        actor=manager,
        competency_id=competency.id,
        target_level=target_level,
        user_ids=[trainee.id],
        mode=competency_schemas.mode_for_level(level),
    )
    db.commit()
    return trainee


def test_level_below_minimum_is_ineligible(db_session, network_setup):
    org, admin, manager, competency = network_setup
    trainee = _trainee_at_level(db_session, org, manager, competency, "low@example.com", level=2)

    eligibility = expert_services.check_eligibility(
        db_session, org_id=org.id, user_id=trainee.id, competency_id=competency.id
    )
    assert eligibility.eligible is False
    assert eligibility.reasons == [expert_services.REASON_LEVEL_TOO_LOW]

    with pytest.raises(expert_services.NominationIneligibleError) as excinfo:
        expert_services.submit_nomination(
            db_session, actor=manager, user_id=trainee.id, competency_id=competency.id
        )
    assert excinfo.value.code == "not_eligible"
    assert isinstance(excinfo.value, ConflictError)
    assert db_session.query(expert_models.ExpertNomination).count() == 0


def test_unassigned_user_counts_as_level_zero(db_session, network_setup):
    org, admin, manager, competency = network_setup
    outsider = _create_user(db_session, org.id, "outsider@example.com")

    eligibility = expert_services.check_eligibility(
        db_session, org_id=org.id, user_id=outsider.id, competency_id=competency.id
    )

    assert eligibility.current_level == 0
    assert eligibility.suggested_role is None


@pytest.mark.parametrize(
    "level,role",
    [(3, expert_models.ExpertRole.FSME), (4, expert_models.ExpertRole.FSME), (5, expert_models.ExpertRole.GSME)],
)
def test_submission_defaults_role_from_level(db_session, network_setup, level, role):
    org, admin, manager, competency = network_setup
    trainee = _trainee_at_level(db_session, org, manager, competency, "expert@example.com", level=level)

    nomination = expert_services.submit_nomination(
        db_session, actor=manager, user_id=trainee.id, competency_id=competency.id
    )

    assert nomination.status == expert_models.NominationStatus.PENDING
    assert nomination.proposed_role == role
    assert nomination.current_level == level
    assert nomination.site_name == "North Plant"
    assert nomination.network_id is None

    admin_notes = (
        db_session.query(notification_models.Notification)
        .filter(notification_models.Notification.type == notification_models.NotificationType.NOMINATION_SUBMITTED)
        .all()
    )
    assert [note.user_id for note in admin_notes] == [admin.id]


def test_second_pending_nomination_is_rejected(db_session, network_setup):
    org, admin, manager, competency = network_setup
    trainee = _trainee_at_level(db_session, org, manager, competency, "expert@example.com", level=4)
    expert_services.submit_nomination(db_session, actor=manager, user_id=trainee.id, competency_id=competency.id)

    with pytest.raises(expert_services.NominationIneligibleError) as excinfo:
        expert_services.submit_nomination(db_session, actor=admin, user_id=trainee.id, competency_id=competency.id)

    assert [item["field"] for item in excinfo.value.detail] == [expert_services.REASON_NOMINATION_PENDING]


def test_partial_unique_index_backs_up_pending_check(db_session, network_setup, monkeypatch):
    org, admin, manager, competency = network_setup
    trainee = _trainee_at_level(db_session, org, manager, competency, "expert@example.com", level=4)
    expert_services.submit_nomination(db_session, actor=manager, user_id=trainee.id, competency_id=competency.id)

    monkeypatch.setattr(expert_services, "_has_pending", lambda db, **kwargs: False)
    with pytest.raises(expert_services.NominationIneligibleError):
        expert_services.submit_nomination(db_session, actor=admin, user_id=trainee.id, competency_id=competency.id)

    assert db_session.query(expert_models.ExpertNomination).count() == 1


def test_level_mismatch_and_unknowns(db_session, network_setup):
    org, admin, manager, competency = network_setup
    trainee = _trainee_at_level(db_session, org, manager, competency, "expert@example.com", level=4)

    with pytest.raises(ValidationError) as excinfo:
        expert_services.submit_nomination(
            db_session, actor=manager, user_id=trainee.id, competency_id=competency.id, current_level=5
        )
    assert excinfo.value.code == "level_mismatch"

    with pytest.raises(ValidationError):
        expert_services.submit_nomination(db_session, actor=manager, user_id="ghost", competency_id=competency.id)
    with pytest.raises(ValidationError):
        expert_services.submit_nomination(db_session, actor=manager, user_id=trainee.id, competency_id="ghost")


def test_trainee_cannot_nominate(db_session, network_setup):
    org, admin, manager, competency = network_setup
    trainee = _trainee_at_level(db_session, org, manager, competency, "expert@example.com", level=4)

    with pytest.raises(PermissionDeniedError):
        expert_services.submit_nomination(db_session, actor=trainee, user_id=trainee.id, competency_id=competency.id)


def test_approve_requires_network(db_session, network_setup):
    org, admin, manager, competency = network_setup
    trainee = _trainee_at_level(db_session, org, manager, competency, "expert@example.com", level=4)
    nomination = expert_services.submit_nomination(
        db_session, actor=manager, user_id=trainee.id, competency_id=competency.id
    )

    with pytest.raises(ConflictError) as excinfo:
        expert_services.approve_nomination(db_session, actor=admin, nomination_id=nomination.id)

    assert excinfo.value.code == "network_required"
    assert nomination.status == expert_models.NominationStatus.PENDING


def test_create_network_attaches_pending_and_approval_adds_member(db_session, network_setup):
    org, admin, manager, competency = network_setup
    trainee = _trainee_at_level(db_session, org, manager, competency, "expert@example.com", level=5)
    nomination = expert_services.submit_nomination(
        db_session, actor=manager, user_id=trainee.id, competency_id=competency.id
    )

    network = expert_services.create_network(
        db_session, actor=admin, competency_id=competency.id, name="Vibration SMEs"
    )
    assert nomination.network_id == network.id

    expert_services.approve_nomination(db_session, actor=admin, nomination_id=nomination.id, notes="Welcome")
    db_session.commit()

    assert nomination.status == expert_models.NominationStatus.APPROVED
    assert nomination.decided_by == admin.id
    assert nomination.decided_at is not None
    members = expert_services.list_members(db_session, org_id=org.id, network_id=network.id)
    assert [(m.user_id, m.role) for m in members] == [(trainee.id, expert_models.ExpertRole.GSME)]

    eligibility = expert_services.check_eligibility(
        db_session, org_id=org.id, user_id=trainee.id, competency_id=competency.id
    )
    assert eligibility.reasons == [expert_services.REASON_ALREADY_MEMBER]

    with pytest.raises(TransitionError):
        expert_services.reject_nomination(db_session, actor=admin, nomination_id=nomination.id)


def test_reject_adds_no_member(db_session, network_setup):
    org, admin, manager, competency = network_setup
    network = expert_services.create_network(db_session, actor=admin, competency_id=competency.id, name="SMEs")
    trainee = _trainee_at_level(db_session, org, manager, competency, "expert@example.com", level=3)
    nomination = expert_services.submit_nomination(
        db_session, actor=manager, user_id=trainee.id, competency_id=competency.id
    )
    assert nomination.network_id == network.id

    expert_services.reject_nomination(db_session, actor=admin, nomination_id=nomination.id, notes="Not yet")

    assert nomination.status == expert_models.NominationStatus.REJECTED
    assert nomination.decision_notes == "Not yet"
    assert expert_services.list_members(db_session, org_id=org.id, network_id=network.id) == []

    # A decided nomination no longer blocks a fresh one.
    renewed = expert_services.submit_nomination(
        db_session, actor=manager, user_id=trainee.id, competency_id=competency.id
    )
    assert renewed.status == expert_models.NominationStatus.PENDING


def test_removed_member_can_be_nominated_again(db_session, network_setup):
    org, admin, manager, competency = network_setup
    network = expert_services.create_network(db_session, actor=admin, competency_id=competency.id, name="SMEs")
    trainee = _trainee_at_level(db_session, org, manager, competency, "expert@example.com", level=4)
    nomination = expert_services.submit_nomination(
        db_session, actor=manager, user_id=trainee.id, competency_id=competency.id
    )
    expert_services.approve_nomination(db_session, actor=admin, nomination_id=nomination.id)
    db_session.commit()
    [member] = expert_services.list_members(db_session, org_id=org.id, network_id=network.id)

    with pytest.raises(PermissionDeniedError):
        expert_services.remove_member(db_session, actor=manager, network_id=network.id, member_id=member.id)
    with pytest.raises(NotFoundError):
        expert_services.remove_member(db_session, actor=admin, network_id="other-network", member_id=member.id)

    expert_services.remove_member(db_session, actor=admin, network_id=network.id, member_id=member.id)
    db_session.commit()

    assert expert_services.list_members(db_session, org_id=org.id, network_id=network.id) == []
    eligibility = expert_services.check_eligibility(
        db_session, org_id=org.id, user_id=trainee.id, competency_id=competency.id
    )
    assert eligibility.eligible is True


def test_network_admin_rules(db_session, network_setup):
    org, admin, manager, competency = network_setup

    with pytest.raises(PermissionDeniedError):
        expert_services.create_network(db_session, actor=manager, competency_id=competency.id, name="SMEs")

    expert_services.create_network(db_session, actor=admin, competency_id=competency.id, name="SMEs")
    with pytest.raises(ConflictError) as excinfo:
        expert_services.create_network(db_session, actor=admin, competency_id=competency.id, name="Again")
    assert excinfo.value.code == "network_exists"
