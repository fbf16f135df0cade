"""Error taxonomy for the lab report assistant.

Every failure that can reach a caller is a ServiceError subclass carrying the
HTTP status it maps to. The Flask app converts them to ``{'msg': ...}``
payloads at the request boundary.
"""


class ServiceError(Exception):
	"""Base class for failures surfaced to API callers."""

	status_code = 500

	def __init__(self, message: str = None):
		super().__init__(message or self.__class__.__name__)
		self.message = message or self.__class__.__name__

	def to_dict(self) -> dict:
		return {'msg': self.message, 'error': self.__class__.__name__}


class ValidationError(ServiceError):
	"""Missing or malformed request fields."""
	status_code = 400


class NoFile(ValidationError):
	"""An upload endpoint was called without a file."""

	def __init__(self, message: str = 'No file uploaded'):
		super().__init__(message)


class NotFoundError(ServiceError):
	status_code = 404


class UnsupportedMediaKind(ServiceError):
	"""The declared file kind is not one the requested operation accepts."""
	status_code = 400


class ExtractionFailed(ServiceError):
	"""No usable text could be obtained from the uploaded file."""
	status_code = 400


class ModelInvocationFailed(ServiceError):
	"""The remote language model call failed or returned nothing usable."""
	status_code = 500


class LedgerCommitFailed(ServiceError):
	"""The usage counter/activity transaction was rolled back."""
	status_code = 500
