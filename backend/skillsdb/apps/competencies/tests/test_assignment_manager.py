from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from skillsdb.apps.accounts import models as account_models
from skillsdb.apps.assessments import models as assessment_models
from skillsdb.apps.competencies import models as competency_models
from skillsdb.apps.competencies import schemas as competency_schemas
from skillsdb.apps.competencies import services as competency_services
from skillsdb.apps.development import models as development_models
from skillsdb.apps.notifications import models as notification_models
from skillsdb.errors import PermissionDeniedError, ValidationError


def _create_org(db) -> account_models.Organisation:
    org = account_models.Organisation(code="ORG-ASSIGN", name="Assign Org", login_slug="assign")
    db.add(org)
    db.commit()
    return org


def _create_user(db, org_id: str, email: str, role=account_models.AccountRole.TRAINEE) -> account_models.User:
    user = account_models.User(
        org_id=org_id,
        email=email,
        full_name=email.split("@")[0].title(),
        role=role,
        hashed_password="x",
    )
    db.add(user)
    db.commit()
    return user


def _create_competency(db, org_id: str, owner_id=None, is_active=True) -> competency_models.Competency:
    competency = competency_models.Competency(
        org_id=org_id,
        name="Root Cause Analysis",
        owner_id=owner_id,
        level_4_description="Leads RCA sessions unaided",
        is_active=is_active,
    )
    db.add(competency)
    db.commit()
    return competency


@pytest.fixture()
def setup(db_session):
    org = _create_org(db_session)
    manager = _create_user(db_session, org.id, "manager@example.com", account_models.AccountRole.MANAGER)
    coach = _create_user(db_session, org.id, "coach@example.com", account_models.AccountRole.COACH)
    trainee = _create_user(db_session, org.id, "trainee@example.com")
    competency = _create_competency(db_session, org.id, owner_id=coach.id)
    return org, manager, coach, trainee, competency


def _activities(db, trainee_id):
    return (
        db.query(development_models.DevelopmentActivity)
        .filter(development_models.DevelopmentActivity.trainee_id == trainee_id)
        .all()
    )


def test_needs_coaching_creates_pending_coaching_activity(db_session, setup):
    org, manager, coach, trainee, competency = setup

    result = competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=4,
        user_ids=[trainee.id],
        mode=competency_schemas.NeedsCoaching(),
        target_date=date(2026, 12, 31),
    )

    assert result.summary() == {"succeeded": 1, "skipped": 0, "failed": 0}
    uc = result.succeeded[0]
    assert uc.current_level == 0
    assert uc.target_level == 4
    assert uc.status == competency_models.UserCompetencyStatus.IN_PROGRESS

    activities = _activities(db_session, trainee.id)
    assert len(activities) == 1
    activity = activities[0]
    assert activity.activity_type == development_models.ActivityType.COACHING
    assert activity.status == development_models.ActivityStatus.PENDING
    assert activity.coach_id == coach.id
    assert activity.due_date == date(2026, 12, 31)
    assert activity.success_criteria == "Leads RCA sessions unaided"

    notified = {
        (note.user_id, note.type)
        for note in db_session.query(notification_models.Notification).all()
    }
    assert (trainee.id, notification_models.NotificationType.COMPETENCY_ASSIGNED) in notified
    assert (coach.id, notification_models.NotificationType.COACHING_ASSIGNED) in notified


def test_explicit_coach_overrides_competency_owner(db_session, setup):
    org, manager, coach, trainee, competency = setup
    other_coach = _create_user(db_session, org.id, "other@example.com", account_models.AccountRole.COACH)

    competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=3,
        user_ids=[trainee.id],
        mode=competency_schemas.NeedsCoaching(),
        coach_id=other_coach.id,
    )

    assert _activities(db_session, trainee.id)[0].coach_id == other_coach.id


def test_already_competent_records_validation_audit_and_assessment(db_session, setup):
    org, manager, coach, trainee, competency = setup

    result = competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=4,
        user_ids=[trainee.id],
        mode=competency_schemas.AlreadyCompetent(level=3),
    )

    uc = result.succeeded[0]
    assert uc.current_level == 3
    assert uc.status == competency_models.UserCompetencyStatus.IN_PROGRESS
    assert uc.last_assessment_date is not None

    activities = _activities(db_session, trainee.id)
    assert [a.activity_type for a in activities] == [development_models.ActivityType.VALIDATION_AUDIT]
    assert activities[0].status == development_models.ActivityStatus.VALIDATED
    assert activities[0].validated_by == manager.id
    assert activities[0].validated_at is not None

    assessment = db_session.query(assessment_models.Assessment).one()
    assert assessment.level_achieved == 3
    assert assessment.status == assessment_models.AssessmentStatus.VALIDATED


def test_already_competent_at_target_is_achieved(db_session, setup):
    org, manager, coach, trainee, competency = setup

    result = competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=3,
        user_ids=[trainee.id],
        mode=competency_schemas.mode_for_level(5),
    )

    assert result.succeeded[0].status == competency_models.UserCompetencyStatus.ACHIEVED


def test_second_assignment_is_skipped_not_duplicated(db_session, setup):
    org, manager, coach, trainee, competency = setup
    second = _create_user(db_session, org.id, "second@example.com")

    competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=4,
        user_ids=[trainee.id],
    )
    result = competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=4,
        user_ids=[trainee.id, second.id],
    )

    assert [uc.user_id for uc in result.succeeded] == [second.id]
    assert result.skipped_keys == [trainee.id]
    assert result.skipped[0].reason == competency_services.SKIP_ALREADY_ASSIGNED
    assert (
        db_session.query(competency_models.UserCompetency)
        .filter(competency_models.UserCompetency.user_id == trainee.id)
        .count()
        == 1
    )
    assert len(_activities(db_session, trainee.id)) == 1


def test_duplicate_user_in_same_batch_is_skipped(db_session, setup):
    org, manager, coach, trainee, competency = setup

    result = competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=2,
        user_ids=[trainee.id, trainee.id],
    )

    assert len(result.succeeded) == 1
    assert result.skipped_keys == [trainee.id]


def test_unique_constraint_is_authoritative_when_precheck_misses(db_session, setup, monkeypatch):
    org, manager, coach, trainee, competency = setup
    competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=4,
        user_ids=[trainee.id],
    )

    # Simulate a concurrent request racing past the existence check.
    monkeypatch.setattr(competency_services, "find_user_competency", lambda db, **kwargs: None)
    result = competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=4,
        user_ids=[trainee.id],
    )

    assert result.succeeded == []
    assert result.skipped[0].reason == competency_services.SKIP_ALREADY_ASSIGNED
    assert db_session.query(competency_models.UserCompetency).count() == 1
    # The savepoint rolled back the half-written item.
    assert len(_activities(db_session, trainee.id)) == 1


def test_unknown_user_is_skipped_and_batch_continues(db_session, setup):
    org, manager, coach, trainee, competency = setup

    result = competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=3,
        user_ids=["missing-user", trainee.id],
    )

    assert result.skipped[0].key == "missing-user"
    assert result.skipped[0].reason == competency_services.SKIP_UNKNOWN_USER
    assert [uc.user_id for uc in result.succeeded] == [trainee.id]


def test_failure_for_one_user_does_not_abort_siblings(db_session, setup, monkeypatch):
    org, manager, coach, trainee, competency = setup
    second = _create_user(db_session, org.id, "second@example.com")
    original = competency_services._create_assignment_records

    def _flaky(db, **kwargs):
        if kwargs["user_id"] == trainee.id:
            raise ValidationError.single("boom", "user_id", "simulated failure")
        return original(db, **kwargs)

    monkeypatch.setattr(competency_services, "_create_assignment_records", _flaky)

    result = competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=3,
        user_ids=[trainee.id, second.id],
    )

    assert result.failed_keys == [trainee.id]
    assert result.failed[0].code == "boom"
    assert [uc.user_id for uc in result.succeeded] == [second.id]


def test_lookup_error_for_one_user_is_recorded_and_siblings_persist(db_session, setup, monkeypatch):
    org, manager, coach, trainee, competency = setup
    second = _create_user(db_session, org.id, "second@example.com")
    original = competency_services.find_user_competency

    def _flaky_lookup(db, **kwargs):
        if kwargs["user_id"] == trainee.id:
            raise OperationalError("SELECT user_competencies", {}, Exception("connection reset"))
        return original(db, **kwargs)

    monkeypatch.setattr(competency_services, "find_user_competency", _flaky_lookup)

    result = competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=3,
        user_ids=[trainee.id, second.id],
    )
    db_session.commit()

    assert result.failed_keys == [trainee.id]
    assert result.failed[0].code == "dependency_error"
    assert [uc.user_id for uc in result.succeeded] == [second.id]
    assert db_session.query(competency_models.UserCompetency).count() == 1


def test_empty_user_list_is_a_validation_error(db_session, setup):
    org, manager, coach, trainee, competency = setup

    with pytest.raises(ValidationError) as excinfo:
        competency_services.assign_competency(
            db_session,
            actor=manager,
            competency_id=competency.id,
            target_level=3,
            user_ids=[],
        )

    assert excinfo.value.detail[0]["field"] == "user_ids"
    assert db_session.query(competency_models.UserCompetency).count() == 0


def test_inactive_competency_is_a_validation_error(db_session, setup):
    org, manager, coach, trainee, competency = setup
    retired = competency_models.Competency(org_id=org.id, name="Retired", is_active=False)
    db_session.add(retired)
    db_session.commit()

    with pytest.raises(ValidationError) as excinfo:
        competency_services.assign_competency(
            db_session,
            actor=manager,
            competency_id=retired.id,
            target_level=3,
            user_ids=[trainee.id],
        )

    assert excinfo.value.code == "unknown_competency"


@pytest.mark.parametrize("target_level", [0, 6])
def test_target_level_out_of_range(db_session, setup, target_level):
    org, manager, coach, trainee, competency = setup

    with pytest.raises(ValidationError):
        competency_services.assign_competency(
            db_session,
            actor=manager,
            competency_id=competency.id,
            target_level=target_level,
            user_ids=[trainee.id],
        )


def test_trainee_cannot_assign(db_session, setup):
    org, manager, coach, trainee, competency = setup

    with pytest.raises(PermissionDeniedError):
        competency_services.assign_competency(
            db_session,
            actor=trainee,
            competency_id=competency.id,
            target_level=3,
            user_ids=[trainee.id],
        )


def test_mode_for_level_maps_numeric_input():
    assert isinstance(competency_schemas.mode_for_level(0), competency_schemas.NeedsCoaching)
    assert isinstance(competency_schemas.mode_for_level(None), competency_schemas.NeedsCoaching)
    mode = competency_schemas.mode_for_level(3)
    assert isinstance(mode, competency_schemas.AlreadyCompetent)
    assert mode.current_level == 3
    with pytest.raises(ValidationError):
        competency_schemas.mode_for_level(7)


def test_assignment_request_accepts_discriminated_mode():
    request = competency_schemas.AssignmentRequest.model_validate(
        {
            "competency_id": "c-1",
            "target_level": 4,
            "user_ids": ["u-1"],
            "mode": {"kind": "already_competent", "level": 2},
        }
    )
    assert request.resolved_mode() == competency_schemas.AlreadyCompetent(level=2)

    legacy = competency_schemas.AssignmentRequest.model_validate(
        {"competency_id": "c-1", "target_level": 4, "user_ids": ["u-1"], "current_level": 0}
    )
    assert isinstance(legacy.resolved_mode(), competency_schemas.NeedsCoaching)
