"""Tests for model helpers."""

from datetime import date

import pytest

from models import Activity, User, compute_age, db, find_user_by_email


@pytest.mark.parametrize("dob, today, expected", [
    (date(2000, 6, 15), date(2025, 6, 14), 24),
    (date(2000, 6, 15), date(2025, 6, 15), 25),
    (date(2000, 6, 15), date(2025, 12, 31), 25),
    (date(2000, 2, 29), date(2025, 2, 28), 24),
    (date(2000, 2, 29), date(2025, 3, 1), 25),
    (date(2025, 1, 1), date(2025, 1, 1), 0),
])
def test_compute_age(dob, today, expected):
    assert compute_age(dob, today) == expected


def test_user_to_dict(user):
    data = user.to_dict()

    assert data["email"] == "priya@example.com"
    assert data["dob"] == "1990-03-12"
    assert data["healthRecords"] == ["Type 2 diabetes", "Allergic to penicillin"]
    assert data["reportsCount"] == 0
    assert data["scansCount"] == 0
    assert data["queriesCount"] == 0


def test_find_user_by_email(user):
    assert find_user_by_email("priya@example.com") is user
    assert find_user_by_email("missing@example.com") is None
    assert find_user_by_email(None) is None


def test_deleting_user_removes_activities(user):
    db.session.add(Activity(user_email=user.email, action="Asked AI Query"))
    db.session.commit()

    db.session.delete(user)
    db.session.commit()

    assert db.session.query(Activity).count() == 0
    assert db.session.query(User).count() == 0
