from __future__ import annotations

import pytest

from skillsdb.apps.accounts import models as account_models
from skillsdb.apps.assessments import services as assessment_services
from skillsdb.apps.competencies import models as competency_models
from skillsdb.apps.competencies import services as competency_services
from skillsdb.apps.development import models as development_models
from skillsdb.apps.development import services as development_services
from skillsdb.apps.notifications import models as notification_models
from skillsdb.apps.workflow import TransitionError
from skillsdb.errors import ConflictError, PermissionDeniedError, ValidationError


def _create_org(db) -> account_models.Organisation:
    org = account_models.Organisation(code="ORG-COACH", name="Coaching Org", login_slug="coach")
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


@pytest.fixture()
def coaching(db_session):
    org = _create_org(db_session)
    manager = _create_user(db_session, org.id, "manager@example.com", account_models.AccountRole.MANAGER)
    coach = _create_user(db_session, org.id, "coach@example.com", account_models.AccountRole.COACH)
    trainee = _create_user(db_session, org.id, "trainee@example.com")
    competency = competency_models.Competency(org_id=org.id, name="Problem Solving", owner_id=coach.id)
    db_session.add(competency)
    db_session.commit()

    result = competency_services.assign_competency(
        db_session,
        actor=manager,
        competency_id=competency.id,
        target_level=3,
        user_ids=[trainee.id],
    )
    db_session.commit()
    activity = db_session.query(development_models.DevelopmentActivity).one()
    return {
        "org": org,
        "manager": manager,
        "coach": coach,
        "trainee": trainee,
        "competency": competency,
        "uc": result.succeeded[0],
        "activity": activity,
    }


def test_trainee_starts_and_marks_ready(db_session, coaching):
    trainee, coach, activity = coaching["trainee"], coaching["coach"], coaching["activity"]

    development_services.start_activity(db_session, actor=trainee, activity_id=activity.id)
    assert activity.status == development_models.ActivityStatus.IN_PROGRESS

    development_services.mark_ready(db_session, actor=trainee, activity_id=activity.id, note="Finished the RCA project")
    assert activity.status == development_models.ActivityStatus.COMPLETED
    assert activity.completed_at is not None

    feedback = development_services.list_feedback(db_session, org_id=activity.org_id, activity_id=activity.id)
    assert len(feedback) == 1
    assert feedback[0].feedback_type == development_models.FeedbackType.MILESTONE
    assert feedback[0].author_role == development_models.AuthorRole.COACHEE
    assert feedback[0].content == "Finished the RCA project"

    note = (
        db_session.query(notification_models.Notification)
        .filter(notification_models.Notification.type == notification_models.NotificationType.VALIDATION_REQUIRED)
        .one()
    )
    assert note.user_id == coach.id


def test_mark_ready_straight_from_pending(db_session, coaching):
    trainee, activity = coaching["trainee"], coaching["activity"]

    development_services.mark_ready(db_session, actor=trainee, activity_id=activity.id)

    assert activity.status == development_models.ActivityStatus.COMPLETED


def test_only_trainee_marks_ready(db_session, coaching):
    coach, activity = coaching["coach"], coaching["activity"]

    with pytest.raises(PermissionDeniedError):
        development_services.mark_ready(db_session, actor=coach, activity_id=activity.id)


def test_coach_validates_completed_activity_and_writes_level_back(db_session, coaching):
    trainee, coach, activity, uc = coaching["trainee"], coaching["coach"], coaching["activity"], coaching["uc"]
    development_services.mark_ready(db_session, actor=trainee, activity_id=activity.id)

    development_services.validate_activity(db_session, actor=coach, activity_id=activity.id, notes="Solid work")

    assert activity.status == development_models.ActivityStatus.VALIDATED
    assert activity.validated_by == coach.id
    assert activity.validated_at is not None
    assert uc.current_level == 3
    assert uc.status == competency_models.UserCompetencyStatus.ACHIEVED
    assert uc.last_assessment_date is not None

    feedback = development_services.list_feedback(db_session, org_id=activity.org_id, activity_id=activity.id)
    from_coach = [entry for entry in feedback if entry.author_role == development_models.AuthorRole.COACH]
    assert [entry.content for entry in from_coach] == ["Validated at level 3. Solid work"]


def test_validate_with_lower_level_keeps_in_progress(db_session, coaching):
    trainee, coach, activity, uc = coaching["trainee"], coaching["coach"], coaching["activity"], coaching["uc"]
    development_services.mark_ready(db_session, actor=trainee, activity_id=activity.id)

    development_services.validate_activity(db_session, actor=coach, activity_id=activity.id, achieved_level=2)

    assert uc.current_level == 2
    assert uc.status == competency_models.UserCompetencyStatus.IN_PROGRESS


def test_validate_without_level_keeps_higher_recorded_level(db_session, coaching):
    trainee, coach, activity, uc = coaching["trainee"], coaching["coach"], coaching["activity"], coaching["uc"]
    assessment_services.record_validation(db_session, actor=coach, user_competency_id=uc.id, achieved_level=5)
    development_services.mark_ready(db_session, actor=trainee, activity_id=activity.id)

    development_services.validate_activity(db_session, actor=coach, activity_id=activity.id)

    assert activity.status == development_models.ActivityStatus.VALIDATED
    assert uc.current_level == 5
    assert uc.status == competency_models.UserCompetencyStatus.ACHIEVED


def test_validate_creates_missing_assignment(db_session, coaching):
    trainee, coach, activity, uc = coaching["trainee"], coaching["coach"], coaching["activity"], coaching["uc"]
    development_services.mark_ready(db_session, actor=trainee, activity_id=activity.id)
    db_session.delete(uc)
    db_session.commit()

    development_services.validate_activity(db_session, actor=coach, activity_id=activity.id)

    recreated = competency_services.find_user_competency(
        db_session, user_id=trainee.id, competency_id=activity.competency_id
    )
    assert recreated is not None
    assert recreated.current_level == 3
    assert recreated.status == competency_models.UserCompetencyStatus.ACHIEVED


def test_cannot_validate_before_completion(db_session, coaching):
    coach, activity = coaching["coach"], coaching["activity"]

    with pytest.raises(TransitionError):
        development_services.validate_activity(db_session, actor=coach, activity_id=activity.id)

    assert activity.status == development_models.ActivityStatus.PENDING


def test_trainee_cannot_validate_own_activity(db_session, coaching):
    trainee, activity = coaching["trainee"], coaching["activity"]
    development_services.mark_ready(db_session, actor=trainee, activity_id=activity.id)

    with pytest.raises(PermissionDeniedError):
        development_services.validate_activity(db_session, actor=trainee, activity_id=activity.id)


def test_unrelated_coach_cannot_validate(db_session, coaching):
    trainee, activity = coaching["trainee"], coaching["activity"]
    stranger = _create_user(db_session, coaching["org"].id, "stranger@example.com", account_models.AccountRole.COACH)
    development_services.mark_ready(db_session, actor=trainee, activity_id=activity.id)

    with pytest.raises(PermissionDeniedError):
        development_services.validate_activity(db_session, actor=stranger, activity_id=activity.id)


def test_cancel_from_in_progress_and_terminal_afterwards(db_session, coaching):
    trainee, coach, activity = coaching["trainee"], coaching["coach"], coaching["activity"]
    development_services.start_activity(db_session, actor=coach, activity_id=activity.id)

    development_services.cancel_activity(db_session, actor=coach, activity_id=activity.id, reason="Role changed")
    assert activity.status == development_models.ActivityStatus.CANCELLED
    assert activity.cancelled_at is not None

    with pytest.raises(ConflictError):
        development_services.start_activity(db_session, actor=trainee, activity_id=activity.id)


def test_trainee_cannot_cancel(db_session, coaching):
    trainee, activity = coaching["trainee"], coaching["activity"]

    with pytest.raises(PermissionDeniedError):
        development_services.cancel_activity(db_session, actor=trainee, activity_id=activity.id)


def test_feedback_thread(db_session, coaching):
    trainee, coach, activity = coaching["trainee"], coaching["coach"], coaching["activity"]

    development_services.add_feedback(db_session, actor=trainee, activity_id=activity.id, content="Started reading")
    development_services.add_feedback(
        db_session,
        actor=coach,
        activity_id=activity.id,
        content="Good, try the 5-whys next",
    )

    entries = development_services.list_feedback(db_session, org_id=activity.org_id, activity_id=activity.id)
    roles = {entry.author_role for entry in entries}
    assert roles == {development_models.AuthorRole.COACH, development_models.AuthorRole.COACHEE}
    assert all(entry.feedback_type == development_models.FeedbackType.PROGRESS for entry in entries)


def test_feedback_rejected_on_closed_activity(db_session, coaching):
    trainee, coach, activity = coaching["trainee"], coaching["coach"], coaching["activity"]
    development_services.mark_ready(db_session, actor=trainee, activity_id=activity.id)
    development_services.validate_activity(db_session, actor=coach, activity_id=activity.id)

    with pytest.raises(ConflictError) as excinfo:
        development_services.add_feedback(db_session, actor=trainee, activity_id=activity.id, content="One more thing")
    assert excinfo.value.code == "activity_closed"


def test_feedback_requires_content_and_participation(db_session, coaching):
    trainee, activity = coaching["trainee"], coaching["activity"]
    outsider = _create_user(db_session, coaching["org"].id, "outsider@example.com")

    with pytest.raises(ValidationError):
        development_services.add_feedback(db_session, actor=trainee, activity_id=activity.id, content="   ")
    with pytest.raises(PermissionDeniedError):
        development_services.add_feedback(db_session, actor=outsider, activity_id=activity.id, content="Hi")


def test_list_activities_filters(db_session, coaching):
    coach, trainee = coaching["coach"], coaching["trainee"]

    assert len(development_services.list_activities(db_session, org_id=coaching["org"].id, coach_id=coach.id)) == 1
    assert (
        development_services.list_activities(
            db_session,
            org_id=coaching["org"].id,
            trainee_id=trainee.id,
            status=development_models.ActivityStatus.VALIDATED,
        )
        == []
    )
