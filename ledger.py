"""Usage counters and activity history.

Every successful report upload, medicine scan and chat query is recorded
here: the matching counter on the user row is incremented and an Activity row
is inserted in the same transaction.
"""
from dataclasses import dataclass

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from errors import LedgerCommitFailed, NotFoundError, ValidationError
from models import Activity, User, db, utcnow

logger = structlog.get_logger(__name__)

REPORT = 'report'
SCAN = 'scan'
QUERY = 'query'


@dataclass(frozen=True)
class ActionSpec:
	counter: str
	label: str
	type_name: str


# The only place an action kind is tied to a counter, label and API name
ACTIONS = {
	REPORT: ActionSpec(counter='reports_count', label='Uploaded Lab Report', type_name='labReport'),
	SCAN: ActionSpec(counter='scans_count', label='Scanned Medicine', type_name='medicineScan'),
	QUERY: ActionSpec(counter='queries_count', label='Asked AI Query', type_name='aiQuery'),
}

_KINDS_BY_TYPE = {spec.type_name: kind for kind, spec in ACTIONS.items()}


def action_kind_for_type(type_name: str) -> str:
	"""Map an API activity type (``labReport`` etc.) to an action kind."""
	try:
		return _KINDS_BY_TYPE[type_name]
	except (KeyError, TypeError):
		raise ValidationError(
			f'Invalid activity type. Expected one of: {", ".join(sorted(_KINDS_BY_TYPE))}'
		) from None


class UsageLedger:
	"""Records actions against a user atomically."""

	def __init__(self, session=None):
		self._session = session

	@property
	def session(self):
		return self._session if self._session is not None else db.session

	def record_action(self, email: str, kind: str) -> dict:
		"""Increment the counter for ``kind`` and log the activity.

		Returns the user's counters as re-read after the commit. Either both
		writes land or neither does.
		"""
		spec = ACTIONS.get(kind)
		if spec is None:
			raise ValidationError(f'Unknown action kind: {kind}')

		session = self.session
		column = getattr(User, spec.counter)
		try:
			result = session.execute(
				update(User)
				.where(User.email == email)
				.values({spec.counter: column + 1})
				.execution_options(synchronize_session=False)
			)
			if result.rowcount == 0:
				session.rollback()
				raise NotFoundError('User not found')
			session.add(Activity(user_email=email, action=spec.label, date=utcnow()))
			session.commit()
		except SQLAlchemyError as exc:
			session.rollback()
			logger.error("ledger_rolled_back", email=email, kind=kind, error=str(exc))
			raise LedgerCommitFailed('Failed to record activity') from exc

		logger.info("ledger_committed", email=email, kind=kind, action=spec.label)
		user = session.get(User, email, populate_existing=True)
		if user is None:
			# Removed right after the commit; the recorded action still stands
			raise NotFoundError('User not found')
		return user.counters()

	def activities_for(self, email: str) -> list:
		"""Full activity history for ``email``, newest first."""
		return (
			self.session.query(Activity)
			.filter(Activity.user_email == email)
			.order_by(Activity.date.desc(), Activity.id.desc())
			.all()
		)
