from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from skillsdb.apps.accounts import models as account_models
from skillsdb.apps.audit import schemas, services


def _create_org(db) -> account_models.Organisation:
    org = account_models.Organisation(code="ORG-AUDIT", name="Audit Org", login_slug="audit")
    db.add(org)
    db.commit()
    return org


def _broken_insert(*args, **kwargs):
    raise OperationalError("INSERT INTO audit_events", {}, Exception("disk full"))


def test_log_event_persists_and_lists_newest_first(db_session):
    org = _create_org(db_session)

    services.log_event(
        db_session,
        org_id=org.id,
        actor_user_id=None,
        entity_type="competency",
        entity_id="c-1",
        action="created",
        after={"name": "Safety"},
        metadata={"source": "import"},
    )
    services.log_event(
        db_session,
        org_id=org.id,
        actor_user_id=None,
        entity_type="competency",
        entity_id="c-1",
        action="updated",
    )
    db_session.commit()

    events = services.list_audit_events(db_session, org_id=org.id, entity_id="c-1")
    assert [event.action for event in events] == ["updated", "created"]

    created = schemas.AuditEventRead.model_validate(events[1])
    assert created.metadata == {"source": "import"}
    assert created.after == {"name": "Safety"}

    history = services.entity_history(db_session, org_id=org.id, entity_type="competency", entity_id="c-1")
    assert [event.action for event in history] == ["created", "updated"]
    assert [e.action for e in services.list_audit_events(db_session, org_id=org.id, action="created")] == [
        "created"
    ]


def test_non_critical_failure_is_swallowed(db_session, monkeypatch):
    org = _create_org(db_session)
    monkeypatch.setattr(services, "create_audit_event", _broken_insert)

    result = services.log_event(
        db_session,
        org_id=org.id,
        actor_user_id=None,
        entity_type="competency",
        entity_id="c-1",
        action="viewed",
    )

    assert result is None
    # The caller's transaction is still usable.
    db_session.commit()


def test_critical_failure_propagates(db_session, monkeypatch):
    org = _create_org(db_session)
    monkeypatch.setattr(services, "create_audit_event", _broken_insert)

    with pytest.raises(OperationalError):
        services.log_event(
            db_session,
            org_id=org.id,
            actor_user_id=None,
            entity_type="user_competency",
            entity_id="uc-1",
            action="transition",
            critical=True,
        )
