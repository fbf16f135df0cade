"""Tests for UsageLedger: counters and activity log move together."""

import pytest
from sqlalchemy.exc import OperationalError

from errors import LedgerCommitFailed, NotFoundError, ValidationError
from ledger import ACTIONS, QUERY, REPORT, SCAN, UsageLedger, action_kind_for_type
from models import Activity, User, db


@pytest.fixture
def ledger(flask_app):
    return UsageLedger()


def fail_commit():
    raise OperationalError("INSERT INTO activities", {}, Exception("database is locked"))


def test_record_action_increments_counter_and_logs(ledger, user):
    counters = ledger.record_action(user.email, REPORT)

    assert counters == {"reportsCount": 1, "scansCount": 0, "queriesCount": 0}
    activities = ledger.activities_for(user.email)
    assert [a.action for a in activities] == ["Uploaded Lab Report"]


def test_counters_match_successful_actions(ledger, user):
    for kind in [REPORT, SCAN, QUERY, REPORT, QUERY, QUERY, REPORT]:
        counters = ledger.record_action(user.email, kind)

    assert counters == {"reportsCount": 3, "scansCount": 1, "queriesCount": 3}

    activities = ledger.activities_for(user.email)
    assert len(activities) == 7
    # newest first
    assert activities[0].action == "Uploaded Lab Report"
    assert activities[-1].action == "Uploaded Lab Report"
    assert [a.id for a in activities] == sorted((a.id for a in activities), reverse=True)


def test_unknown_user_writes_nothing(ledger, user):
    with pytest.raises(NotFoundError):
        ledger.record_action("ghost@example.com", SCAN)

    assert db.session.query(Activity).count() == 0


def test_unknown_kind_is_rejected(ledger, user):
    with pytest.raises(ValidationError):
        ledger.record_action(user.email, "download")


def test_failed_commit_leaves_nothing_behind(ledger, user, monkeypatch):
    ledger.record_action(user.email, QUERY)
    monkeypatch.setattr(db.session, "commit", fail_commit)

    with pytest.raises(LedgerCommitFailed):
        ledger.record_action(user.email, QUERY)

    monkeypatch.undo()
    stored = db.session.get(User, user.email, populate_existing=True)
    assert stored.counters() == {"reportsCount": 0, "scansCount": 0, "queriesCount": 1}
    assert db.session.query(Activity).count() == 1


@pytest.mark.parametrize("type_name, kind", [
    ("labReport", REPORT),
    ("medicineScan", SCAN),
    ("aiQuery", QUERY),
])
def test_action_kind_for_type(type_name, kind):
    assert action_kind_for_type(type_name) == kind


@pytest.mark.parametrize("type_name", ["LabReport", "report", "", None, 3])
def test_action_kind_for_unknown_type(type_name):
    with pytest.raises(ValidationError):
        action_kind_for_type(type_name)


def test_every_action_has_distinct_counter_and_label():
    assert len({spec.counter for spec in ACTIONS.values()}) == 3
    assert {spec.label for spec in ACTIONS.values()} == {
        "Uploaded Lab Report", "Scanned Medicine", "Asked AI Query",
    }


def test_user_gone_after_commit_is_not_found(ledger, user, monkeypatch):
    real_get = db.session.get

    def get_after_delete(entity, ident, **kwargs):
        if entity is User:
            return None
        return real_get(entity, ident, **kwargs)

    monkeypatch.setattr(db.session, "get", get_after_delete)

    with pytest.raises(NotFoundError):
        ledger.record_action(user.email, SCAN)

    monkeypatch.undo()
    assert db.session.query(Activity).count() == 1
