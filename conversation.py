"""Per-user chat transcripts kept in process memory.

Each transcript starts with the system preamble, inserted lazily the first
time the user is seen. Transcripts are not persisted and are lost when the
process restarts.
"""
import threading
import time

import structlog

logger = structlog.get_logger(__name__)

SYSTEM = 'system'
USER = 'user'
ASSISTANT = 'assistant'
ROLES = (SYSTEM, USER, ASSISTANT)


def message(role: str, content: str) -> dict:
	if role not in ROLES:
		raise ValueError(f'unknown role: {role}')
	return {'role': role, 'content': content}


class _Transcript:
	__slots__ = ('messages', 'touched')

	def __init__(self, messages, touched):
		self.messages = messages
		self.touched = touched


class ConversationStore:
	"""Ordered message log per user key.

	Invariant: a non-empty transcript always has the preamble at index 0 and
	nowhere else.

	Args:
		preamble: content of the system message that opens every transcript
		max_messages: cap on transcript length including the preamble; the
			oldest non-preamble messages are dropped first
		idle_ttl: seconds after which an untouched transcript is evicted
		clock: monotonic time source
	"""

	def __init__(self, preamble: str, max_messages: int = None, idle_ttl: float = None, clock=time.monotonic):
		if max_messages is not None and max_messages < 3:
			raise ValueError('max_messages must leave room for the preamble and one exchange')
		self.preamble = preamble
		self.max_messages = max_messages
		self.idle_ttl = idle_ttl
		self._clock = clock
		self._transcripts = {}
		self._lock = threading.Lock()

	def __contains__(self, user_key) -> bool:
		with self._lock:
			return user_key in self._transcripts

	def __len__(self) -> int:
		with self._lock:
			return len(self._transcripts)

	def _preamble_message(self) -> dict:
		return message(SYSTEM, self.preamble)

	def _transcript(self, user_key) -> _Transcript:
		now = self._clock()
		self._evict_idle(now)
		transcript = self._transcripts.get(user_key)
		if transcript is None:
			transcript = _Transcript([self._preamble_message()], now)
			self._transcripts[user_key] = transcript
		transcript.touched = now
		return transcript

	def _evict_idle(self, now) -> None:
		if self.idle_ttl is None:
			return
		expired = [key for key, t in self._transcripts.items() if now - t.touched > self.idle_ttl]
		for key in expired:
			del self._transcripts[key]
		if expired:
			logger.info("transcripts_evicted", count=len(expired))

	def get_or_init(self, user_key) -> list:
		"""Return a copy of the user's transcript, creating it if absent."""
		with self._lock:
			return list(self._transcript(user_key).messages)

	def snapshot(self, user_key) -> list:
		"""Return a copy of the user's transcript without creating one."""
		with self._lock:
			transcript = self._transcripts.get(user_key)
			return list(transcript.messages) if transcript else []

	def append(self, user_key, *messages) -> None:
		"""Append messages as one contiguous block."""
		for msg in messages:
			if msg.get('role') not in (USER, ASSISTANT):
				raise ValueError('only user and assistant messages can be appended')
		with self._lock:
			transcript = self._transcript(user_key)
			transcript.messages.extend(messages)
			self._trim(transcript)

	def retract(self, user_key, messages) -> None:
		"""Remove exactly these message objects if they are still present."""
		with self._lock:
			transcript = self._transcripts.get(user_key)
			if transcript is None:
				return
			doomed = {id(m) for m in messages}
			transcript.messages[1:] = [m for m in transcript.messages[1:] if id(m) not in doomed]

	def reset(self, user_key) -> None:
		"""Truncate to the preamble; unknown users stay empty."""
		with self._lock:
			transcript = self._transcripts.get(user_key)
			if transcript is not None:
				del transcript.messages[1:]
				transcript.touched = self._clock()

	def _trim(self, transcript: _Transcript) -> None:
		if self.max_messages is None:
			return
		overflow = len(transcript.messages) - self.max_messages
		if overflow <= 0:
			return
		# Drop whole exchanges so the history after the preamble opens with a user turn
		while overflow < len(transcript.messages) - 1 and transcript.messages[1 + overflow]['role'] != USER:
			overflow += 1
		del transcript.messages[1:1 + overflow]
