import os
from datetime import timedelta

from dotenv import load_dotenv

# Load environment variables from a .env file (optional, for development).
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
	value = os.environ.get(name)
	if value is None:
		return default
	return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _database_url() -> str:
	url = os.environ.get('DATABASE_URL', 'sqlite:///labassist.db')
	# Hosted Postgres providers still hand out the legacy scheme
	if url.startswith('postgres://'):
		url = 'postgresql://' + url[len('postgres://'):]
	return url


class Config:
	"""Application settings read from the environment at import time."""

	SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key')
	JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', SECRET_KEY)
	JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.environ.get('JWT_ACCESS_TOKEN_HOURS', 24)))

	SQLALCHEMY_DATABASE_URI = _database_url()
	SQLALCHEMY_TRACK_MODIFICATIONS = False

	MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_LENGTH', 8 * 1024 * 1024))
	UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'uploads'))

	LLM_API_KEY = os.environ.get('LLM_API_KEY') or os.environ.get('TOGETHER_API_KEY')
	LLM_BASE_URL = os.environ.get('LLM_BASE_URL', 'https://api.together.xyz/v1')
	LLM_MODEL = os.environ.get('LLM_MODEL', 'meta-llama/Llama-3.3-70B-Instruct-Turbo-Free')
	LLM_TIMEOUT_SECONDS = float(os.environ.get('LLM_TIMEOUT_SECONDS', 60))

	OCR_TIMEOUT_SECONDS = float(os.environ.get('OCR_TIMEOUT_SECONDS', 30))
	PDF_RENDER_TIMEOUT_SECONDS = float(os.environ.get('PDF_RENDER_TIMEOUT_SECONDS', 60))

	DIGITAL_TEXT_MIN_CHARS = int(os.environ.get('DIGITAL_TEXT_MIN_CHARS', 30))
	DEFAULT_LANGUAGE = os.environ.get('DEFAULT_LANGUAGE', 'English')

	CHAT_HISTORY_LIMIT = int(os.environ.get('CHAT_HISTORY_LIMIT', 40))
	CHAT_IDLE_TTL_SECONDS = float(os.environ.get('CHAT_IDLE_TTL_SECONDS', 6 * 60 * 60))

	LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
	LOG_JSON = _env_bool('LOG_JSON', True)

	PORT = int(os.environ.get('PORT', 4000))
