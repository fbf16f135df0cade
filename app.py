"""
Lab Report Assistant API - Flask Backend

A Flask API that explains lab reports and medicine labels in plain language:
- Email-only registration and login (JWT-based)
- PDF text extraction with OCR fallback, OCR for photos
- Lab report and medicine summaries from a language model
- Stateful chatbot with a per-user transcript
- Per-user usage counters and activity history

Notes:
- Uses SQLite by default (configurable via DATABASE_URL); Postgres in production
- OCR needs the tesseract binary, PDF page rendering needs poppler
- Chat transcripts live in process memory and are lost on restart
- For production: use HTTPS, rotate secrets and run behind a WSGI server.
"""
import os
import uuid
from datetime import date

import click
import structlog
from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import (JWTManager, create_access_token,
								get_jwt_identity, jwt_required)
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.utils import secure_filename

from config import Config
from conversation import ConversationStore
from errors import NoFile, NotFoundError, ServiceError, ValidationError
from extraction import Pdf2ImageRenderer, TesseractOCR, TextExtractor, media_kind_for
from ledger import REPORT, SCAN, UsageLedger, action_kind_for_type
from llm import ChatModelClient
from logging_config import configure_logging
from models import User, compute_age, db, find_user_by_email
from pipeline import IngestionPipeline
from prompts import CHAT_PREAMBLE

logger = structlog.get_logger(__name__)


# -----------------------------
# Application configuration
# -----------------------------
app = Flask(__name__)
app.config.from_object(Config)
CORS(app, supports_credentials=True)

configure_logging(app.config['LOG_LEVEL'], app.config['LOG_JSON'])

os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

# Initialize extensions
jwt = JWTManager(app)
db.init_app(app)

app.extensions['ingestion_pipeline'] = IngestionPipeline(
	extractor=TextExtractor(
		ocr=TesseractOCR(timeout=app.config['OCR_TIMEOUT_SECONDS']),
		page_renderer=Pdf2ImageRenderer(timeout=app.config['PDF_RENDER_TIMEOUT_SECONDS']),
		min_text_length=app.config['DIGITAL_TEXT_MIN_CHARS'],
	),
	llm=ChatModelClient(
		api_key=app.config['LLM_API_KEY'],
		model=app.config['LLM_MODEL'],
		base_url=app.config['LLM_BASE_URL'],
		timeout=app.config['LLM_TIMEOUT_SECONDS'],
	),
	transcripts=ConversationStore(
		CHAT_PREAMBLE,
		max_messages=app.config['CHAT_HISTORY_LIMIT'] or None,
		idle_ttl=app.config['CHAT_IDLE_TTL_SECONDS'] or None,
	),
	ledger=UsageLedger(),
	default_language=app.config['DEFAULT_LANGUAGE'],
)


# -----------------------------
# Helper Functions
# -----------------------------
def json_body() -> dict:
	data = request.get_json(silent=True)
	return data if isinstance(data, dict) else {}


def json_text(data: dict, key: str) -> str:
	"""String field from a JSON body, stripped; anything else counts as missing."""
	value = data.get(key)
	return value.strip() if isinstance(value, str) else ''


def get_pipeline() -> IngestionPipeline:
	return current_app.extensions['ingestion_pipeline']


def save_file_storage(file) -> str:
	"""Save an uploaded file under a unique name and return its path."""
	orig_name = secure_filename(file.filename)
	ext = os.path.splitext(orig_name)[1].lower() or '.bin'
	saved_path = os.path.join(current_app.config['UPLOAD_FOLDER'], f"{uuid.uuid4()}{ext}")
	file.save(saved_path)
	return saved_path


def parse_health_records(value) -> list:
	"""Accept a single string or a list of strings and return the non-empty notes."""
	if value is None:
		return []
	if isinstance(value, str):
		value = [value]
	if not isinstance(value, (list, tuple)):
		raise ValidationError('healthRecords must be a string or a list of strings')
	return [str(v).strip() for v in value if v is not None and str(v).strip()]


def parse_dob(value) -> date:
	try:
		dob = date.fromisoformat(str(value).strip())
	except ValueError:
		raise ValidationError('dob must be a date in YYYY-MM-DD format') from None
	if dob > date.today():
		raise ValidationError('dob cannot be in the future')
	return dob


def current_user() -> User:
	"""User named by the JWT of the current request."""
	user = find_user_by_email(get_jwt_identity())
	if not user:
		raise NotFoundError('user not found')
	return user


def seed_default_user() -> bool:
	"""Insert the default admin user if the users table is empty."""
	if db.session.query(User).count():
		return False
	dob = date(1990, 1, 1)
	db.session.add(User(
		email='admin@example.com',
		name='Admin',
		dob=dob,
		age=compute_age(dob),
		health_records=['Initial health record'],
	))
	db.session.commit()
	return True


def pipeline_payload(result, message: str) -> dict:
	return {
		'msg': message,
		'llmResponse': result.response_text,
		'source': result.provenance,
		'processingTime': result.processing_time,
		'counters': result.counters,
	}


# -----------------------------
# Authentication routes
# -----------------------------
@app.route('/register', methods=['POST'])
def register():
	"""Register a new user.

	Expected JSON body:
	{"email": "a@b.com", "name": "Alice", "dob": "2000-06-15", "healthRecords": "..."}

	Age is derived from dob once, here. Returns the created user and a JWT.
	"""
	data = json_body()
	email = json_text(data, 'email').lower()
	name = json_text(data, 'name')
	dob_raw = json_text(data, 'dob')
	records = parse_health_records(data.get('healthRecords'))

	if not email or not name or not dob_raw or not records:
		raise ValidationError('email, name, dob and healthRecords are required')

	dob = parse_dob(dob_raw)

	if find_user_by_email(email):
		raise ValidationError('User already exists')

	user = User(email=email, name=name, dob=dob, age=compute_age(dob), health_records=records)
	db.session.add(user)
	try:
		db.session.commit()
	except IntegrityError:
		# Lost a race against a concurrent registration of the same email
		db.session.rollback()
		raise ValidationError('User already exists') from None

	logger.info("user_registered", email=email)
	token = create_access_token(identity=email)
	return jsonify({'msg': 'user created', 'user': user.to_dict(), 'token': token}), 201


@app.route('/login', methods=['POST'])
def login():
	"""Email-only login. Expected JSON body: {"email": "a@b.com"}"""
	data = json_body()
	email = json_text(data, 'email').lower()
	if not email:
		raise ValidationError('email is required')

	user = find_user_by_email(email)
	if not user:
		raise NotFoundError('User not found')

	token = create_access_token(identity=user.email)
	return jsonify({'msg': 'Login successful', 'user': user.to_dict(), 'token': token}), 200


@app.route('/logout', methods=['POST'])
def logout():
	# Tokens are stateless; the client just drops its copy
	return jsonify({'msg': 'Logged out successfully'}), 200


# -----------------------------
# User profile and activity
# -----------------------------
@app.route('/api/user', methods=['GET'])
@jwt_required()
def user_profile():
	"""Profile, usage counters and activity history of the caller."""
	user = current_user()
	activities = get_pipeline().ledger.activities_for(user.email)
	profile = user.to_dict()
	profile['activities'] = [a.to_dict() for a in activities]
	return jsonify({'user': profile}), 200


@app.route('/api/user/activity', methods=['POST'])
@jwt_required()
def record_activity():
	"""Record an action. Expected JSON body: {"type": "labReport" | "medicineScan" | "aiQuery"}"""
	data = json_body()
	kind = action_kind_for_type(data.get('type'))
	user = current_user()
	counters = get_pipeline().ledger.record_action(user.email, kind)
	return jsonify({'msg': 'Activity recorded', 'counters': counters}), 200


@app.route('/api/user/activities', methods=['GET'])
@jwt_required()
def list_activities():
	user = current_user()
	activities = get_pipeline().ledger.activities_for(user.email)
	return jsonify({'activities': [a.to_dict() for a in activities]}), 200


# -----------------------------
# Document and chat endpoints
# -----------------------------
def handle_upload(mode: str):
	"""Shared body of the lab report and medicine endpoints.

	Accepts multipart/form-data with ``file`` (required) and ``language``
	(optional). The saved upload is removed by the pipeline on every outcome.
	"""
	user = current_user()
	upload = request.files.get('file')
	if upload is None or not upload.filename:
		raise NoFile()

	kind = media_kind_for(upload.filename)
	saved_path = save_file_storage(upload)
	result = get_pipeline().run_document(
		user, saved_path, kind, mode, language=request.form.get('language')
	)
	return jsonify(pipeline_payload(result, f'Processed with {result.provenance}')), 200


@app.route('/labreport', methods=['POST'])
@jwt_required()
def lab_report():
	return handle_upload(REPORT)


@app.route('/medicine', methods=['POST'])
@jwt_required()
def medicine():
	return handle_upload(SCAN)


@app.route('/chatbot', methods=['POST'])
@jwt_required()
def chatbot():
	"""Chat with the assistant. Expected JSON body: {"input": "...", "language": "..."}"""
	data = json_body()
	user = current_user()
	result = get_pipeline().run_query(user, data.get('input'), language=data.get('language'))
	return jsonify(pipeline_payload(result, 'Chat response generated')), 200


@app.route('/clear-chat', methods=['POST'])
@jwt_required()
def clear_chat():
	user = current_user()
	get_pipeline().transcripts.reset(user.email)
	return jsonify({'msg': 'Chat history cleared'}), 200


@app.route('/health', methods=['GET'])
def health():
	return jsonify({'status': 'ok'}), 200


# -----------------------------
# CLI
# -----------------------------
@app.cli.command('init-db')
def init_db_command():
	"""Create the tables and seed a default admin user if there are no users."""
	db.create_all()
	if seed_default_user():
		click.echo('Tables created; default admin user inserted.')
	else:
		click.echo('Tables created; users already exist, nothing seeded.')


# -----------------------------
# Error handlers
# -----------------------------
@app.errorhandler(ServiceError)
def service_error(e):
	return jsonify(e.to_dict()), e.status_code


@app.errorhandler(RequestEntityTooLarge)
def too_large(e):
	return jsonify({'msg': 'file too large'}), 413


@app.errorhandler(404)
def not_found(e):
	return jsonify({'msg': 'resource not found'}), 404


@app.errorhandler(405)
def method_not_allowed(e):
	return jsonify({'msg': 'method not allowed'}), 405


@app.errorhandler(500)
def server_error(e):
	logger.error("unhandled_error", error=str(getattr(e, 'original_exception', e)))
	return jsonify({'msg': 'internal server error'}), 500


if __name__ == '__main__':
	# In production, provision tables with `flask --app app init-db` instead.
	with app.app_context():
		db.create_all()

	app.run(host='0.0.0.0', port=app.config['PORT'], debug=False)
