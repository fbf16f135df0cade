"""Chat completion client for the remote language model."""
import openai
import structlog

from errors import ModelInvocationFailed

logger = structlog.get_logger(__name__)


def clean_response(raw_output: str) -> str:
	"""Trim every line and drop the empty ones."""
	lines = (line.strip() for line in raw_output.split("\n"))
	return "\n".join(line for line in lines if line)


class ChatModelClient:
	"""Calls an OpenAI-compatible chat completions endpoint.

	The underlying SDK client is created on first use so the app can start
	(and be tested) without credentials. Automatic retries are disabled; any
	failure surfaces immediately as ModelInvocationFailed.
	"""

	def __init__(self, api_key: str = None, model: str = None, base_url: str = None, timeout: float = 60):
		self.api_key = api_key
		self.model = model
		self.base_url = base_url
		self.timeout = timeout
		self._client = None

	def _get_client(self):
		if self._client is None:
			if not self.api_key:
				raise ModelInvocationFailed('Language model API key is not configured')
			self._client = openai.OpenAI(
				api_key=self.api_key,
				base_url=self.base_url,
				timeout=self.timeout,
				max_retries=0,
			)
		return self._client

	def complete(self, messages: list) -> str:
		client = self._get_client()
		try:
			response = client.chat.completions.create(model=self.model, messages=messages)
		except openai.OpenAIError as exc:
			logger.error("llm_request_failed", model=self.model, error=str(exc))
			raise ModelInvocationFailed(f'Language model request failed: {exc}') from exc

		try:
			content = response.choices[0].message.content
		except (AttributeError, IndexError, TypeError) as exc:
			logger.error("llm_response_malformed", model=self.model)
			raise ModelInvocationFailed('Malformed response from language model') from exc

		cleaned = clean_response(content or '')
		if not cleaned:
			raise ModelInvocationFailed('Language model returned an empty response')
		return cleaned
