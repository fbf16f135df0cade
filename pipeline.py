"""Request pipeline: extract text, ask the model, record the exchange.

One run handles one upload (or one chat question) synchronously:

	Received -> Extracting -> PromptBuilt -> ModelInvoked -> LedgerCommitted -> Responded

with Failed reachable from every stage. Nothing is retried.
"""
import enum
import os
import time
from dataclasses import dataclass, field

from conversation import ASSISTANT, SYSTEM, USER, message
from errors import NoFile, UnsupportedMediaKind, ValidationError
from extraction import IMAGE_KINDS, SUPPORTED_KINDS
from ledger import QUERY, REPORT, SCAN
from logging_config import get_request_logger
from prompts import build_chat_prompt, build_lab_report_prompt, build_medicine_prompt


class Stage(enum.Enum):
	RECEIVED = 'Received'
	EXTRACTING = 'Extracting'
	PROMPT_BUILT = 'PromptBuilt'
	MODEL_INVOKED = 'ModelInvoked'
	LEDGER_COMMITTED = 'LedgerCommitted'
	RESPONDED = 'Responded'
	FAILED = 'Failed'


# File kinds each upload mode accepts
MODE_KINDS = {
	REPORT: SUPPORTED_KINDS,
	SCAN: IMAGE_KINDS,
}

PROMPT_BUILDERS = {
	REPORT: build_lab_report_prompt,
	SCAN: build_medicine_prompt,
	QUERY: build_chat_prompt,
}


@dataclass
class PipelineResult:
	response_text: str
	provenance: str
	elapsed: float
	counters: dict = field(default_factory=dict)

	@property
	def processing_time(self) -> str:
		return f"{self.elapsed:.2f}s"


class PipelineRun:
	"""Stage bookkeeping for a single request."""

	def __init__(self, email: str, mode: str, clock):
		self.mode = mode
		self.stage = Stage.RECEIVED
		self.failure = None
		self._clock = clock
		self._started = clock()
		self.log = get_request_logger('pipeline', user=email, mode=mode)
		self.log.info("pipeline_state", state=self.stage.value)

	@property
	def elapsed(self) -> float:
		return self._clock() - self._started

	def advance(self, stage: Stage) -> None:
		self.stage = stage
		self.log.info("pipeline_state", state=stage.value, elapsed=round(self.elapsed, 3))

	def fail(self, exc: Exception) -> None:
		self.failure = str(exc)
		self.log.warning(
			"pipeline_state",
			state=Stage.FAILED.value,
			failed_in=self.stage.value,
			reason=exc.__class__.__name__,
			detail=self.failure,
			elapsed=round(self.elapsed, 3),
		)
		self.stage = Stage.FAILED


class IngestionPipeline:
	"""Coordinates extraction, prompting, the model call and usage tracking.

	Collaborators are injected so each can be replaced:
		extractor: TextExtractor
		llm: object with ``complete(messages) -> str``
		transcripts: ConversationStore
		ledger: UsageLedger
	"""

	def __init__(self, extractor, llm, transcripts, ledger, default_language: str = 'English', clock=time.perf_counter):
		self.extractor = extractor
		self.llm = llm
		self.transcripts = transcripts
		self.ledger = ledger
		self.default_language = default_language
		self._clock = clock

	def run_document(self, user, file_path, declared_kind, mode: str, language: str = None) -> PipelineResult:
		"""Process an uploaded report (``mode='report'``) or medicine photo (``mode='scan'``).

		The uploaded file is always deleted before returning, whatever the outcome.
		"""
		run = PipelineRun(user.email, mode, self._clock)
		try:
			if mode not in MODE_KINDS:
				raise ValueError(f'not a document mode: {mode}')
			if not file_path:
				raise NoFile()
			kind = (declared_kind or '').lower().lstrip('.')
			if kind not in MODE_KINDS[mode]:
				allowed = ', '.join(sorted(MODE_KINDS[mode]))
				raise UnsupportedMediaKind(f'Unsupported file type: {declared_kind or "unknown"}. Allowed: {allowed}')

			run.advance(Stage.EXTRACTING)
			extraction = self.extractor.extract(file_path, kind)

			prompt = PROMPT_BUILDERS[mode](
				extraction.text, user.age, user.health_records, self._language(language)
			)
			model_messages = [message(SYSTEM, self.transcripts.preamble), message(USER, prompt)]
			return self._complete(run, user, prompt, model_messages, extraction.provenance)
		except Exception as exc:
			run.fail(exc)
			raise
		finally:
			self._discard(file_path, run)

	def run_query(self, user, text: str, language: str = None) -> PipelineResult:
		"""Answer a free-form chat question in the context of the user's transcript."""
		run = PipelineRun(user.email, QUERY, self._clock)
		try:
			question = text.strip() if isinstance(text, str) else ''
			if not question:
				raise ValidationError('Input text is required')

			prompt = build_chat_prompt(question, user.age, user.health_records, self._language(language))
			model_messages = self.transcripts.get_or_init(user.email) + [message(USER, prompt)]
			return self._complete(run, user, prompt, model_messages, None)
		except Exception as exc:
			run.fail(exc)
			raise

	def _complete(self, run: PipelineRun, user, prompt: str, model_messages: list, provenance) -> PipelineResult:
		email = user.email
		run.advance(Stage.PROMPT_BUILT)
		answer = self.llm.complete(model_messages)
		run.advance(Stage.MODEL_INVOKED)

		exchange = (message(USER, prompt), message(ASSISTANT, answer))
		self.transcripts.append(email, *exchange)
		try:
			counters = self.ledger.record_action(email, run.mode)
		except Exception:
			# Keep the transcript consistent with the ledger
			self.transcripts.retract(email, exchange)
			raise
		run.advance(Stage.LEDGER_COMMITTED)

		result = PipelineResult(
			response_text=answer,
			provenance=provenance,
			elapsed=run.elapsed,
			counters=counters,
		)
		run.advance(Stage.RESPONDED)
		return result

	def _language(self, language) -> str:
		if isinstance(language, str) and language.strip():
			return language.strip()
		return self.default_language

	def _discard(self, file_path, run: PipelineRun) -> None:
		if not file_path:
			return
		try:
			os.remove(file_path)
		except FileNotFoundError:
			pass
		except OSError as exc:
			run.log.warning("upload_cleanup_failed", path=file_path, error=str(exc))
