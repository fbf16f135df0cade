"""Database models: users and their activity history."""
from datetime import date, datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def compute_age(dob: date, today: date = None) -> int:
	"""Return the age in whole years on ``today`` for someone born on ``dob``.

	The birthday only counts once its month/day has been reached, so
	2000-06-15 gives 24 on 2025-06-14 and 25 on 2025-06-15.
	"""
	today = today or date.today()
	age = today.year - dob.year
	if (today.month, today.day) < (dob.month, dob.day):
		age -= 1
	return age


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


# -----------------------------
# User model
# -----------------------------
class User(db.Model):
	"""Registered user, keyed by email.

	Fields:
	- email: unique identity key
	- name, dob: as given at registration
	- age: derived from dob at registration, not re-derived later
	- health_records: list of free-text notes
	- reports_count / scans_count / queries_count: usage counters, only
	  mutated by the usage ledger
	"""
	__tablename__ = 'users'

	email = db.Column(db.String(255), primary_key=True)
	name = db.Column(db.String(255), nullable=False)
	dob = db.Column(db.Date, nullable=False)
	age = db.Column(db.Integer, nullable=False)
	health_records = db.Column(db.JSON, nullable=False, default=list)
	reports_count = db.Column(db.Integer, nullable=False, default=0)
	scans_count = db.Column(db.Integer, nullable=False, default=0)
	queries_count = db.Column(db.Integer, nullable=False, default=0)

	activities = db.relationship(
		'Activity',
		backref='user',
		lazy=True,
		cascade='all, delete-orphan',
	)

	def counters(self) -> dict:
		return {
			'reportsCount': self.reports_count,
			'scansCount': self.scans_count,
			'queriesCount': self.queries_count,
		}

	def to_dict(self) -> dict:
		data = {
			'email': self.email,
			'name': self.name,
			'dob': self.dob.isoformat(),
			'age': self.age,
			'healthRecords': list(self.health_records or []),
		}
		data.update(self.counters())
		return data


class Activity(db.Model):
	"""Immutable record of one successful action by a user."""
	__tablename__ = 'activities'

	id = db.Column(db.Integer, primary_key=True)
	user_email = db.Column(
		db.String(255),
		db.ForeignKey('users.email', ondelete='CASCADE'),
		nullable=False,
		index=True,
	)
	action = db.Column(db.String(255), nullable=False)
	date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

	def to_dict(self) -> dict:
		return {
			'id': self.id,
			'action': self.action,
			'date': self.date.isoformat(),
		}


def find_user_by_email(email: str):
	"""Return a User instance by email or None."""
	if not email:
		return None
	return db.session.get(User, email)
