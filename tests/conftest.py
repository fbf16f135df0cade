"""
Shared fixtures for the lab report assistant tests.

The app is imported against an in-memory SQLite database. OCR, PDF parsing,
page rendering and the language model are replaced by fakes so no network,
tesseract or poppler is needed.
"""

import os
import shutil
import tempfile

import pytest

# Set test environment variables BEFORE importing app
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_FOLDER"] = tempfile.mkdtemp(prefix="labassist-uploads-")
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-that-is-long-enough-for-hs256"
os.environ["LOG_JSON"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import date

from flask_jwt_extended import create_access_token

from app import app as flask_application
from conversation import ConversationStore
from extraction import TextExtractor
from ledger import UsageLedger
from models import User, compute_age, db
from pipeline import IngestionPipeline
from prompts import CHAT_PREAMBLE


# ============================================================================
# Fakes
# ============================================================================

class FakeChatModel:
    """Stands in for ChatModelClient; records every request."""

    def __init__(self, reply="Your haemoglobin is slightly low."):
        self.reply = reply
        self.error = None
        self.calls = []

    def complete(self, messages):
        self.calls.append([dict(m) for m in messages])
        if self.error is not None:
            raise self.error
        return self.reply


class FakeParser:
    def __init__(self, text=""):
        self.text = text
        self.error = None
        self.calls = []

    def parse(self, pdf_path):
        self.calls.append(pdf_path)
        if self.error is not None:
            raise self.error
        return self.text


class FakeOCR:
    """Returns queued responses in order, then ``default``."""

    def __init__(self, default="Paracetamol 500 mg tablets"):
        self.default = default
        self.responses = []
        self.error = None
        self.calls = []

    def image_to_text(self, image_path):
        self.calls.append(image_path)
        if self.error is not None:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        return self.default


class FakeRenderer:
    """Writes ``pages`` dummy page images into the scratch folder."""

    def __init__(self, pages=2):
        self.pages = pages
        self.error = None
        self.output_folders = []

    def render(self, pdf_path, output_folder):
        self.output_folders.append(output_folder)
        if self.error is not None:
            raise self.error
        paths = []
        for i in range(self.pages):
            path = os.path.join(output_folder, f"page-{i + 1}.jpg")
            with open(path, "wb") as fh:
                fh.write(b"\xff\xd8\xff")
            paths.append(path)
        return paths


LONG_REPORT_TEXT = (
    "Complete Blood Count\n"
    "Haemoglobin 10.2 g/dL (13.0 - 17.0)\n"
    "WBC 7,400 /uL (4,000 - 11,000)\n"
    "Platelets 250,000 /uL (150,000 - 410,000)"
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fake_llm():
    return FakeChatModel()


@pytest.fixture
def fake_parser():
    return FakeParser(text=LONG_REPORT_TEXT)


@pytest.fixture
def fake_ocr():
    return FakeOCR()


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def extractor(fake_parser, fake_ocr, fake_renderer):
    return TextExtractor(
        digital_parser=fake_parser,
        ocr=fake_ocr,
        page_renderer=fake_renderer,
        min_text_length=30,
    )


@pytest.fixture
def upload_dir():
    folder = flask_application.config["UPLOAD_FOLDER"]
    for name in os.listdir(folder):
        path = os.path.join(folder, name)
        if os.path.isdir(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
    return folder


@pytest.fixture
def flask_app(upload_dir):
    """App with fresh tables for every test."""
    flask_application.config.update(TESTING=True)
    with flask_application.app_context():
        db.create_all()
        yield flask_application
        db.session.remove()
        db.drop_all()


@pytest.fixture
def pipeline(flask_app, extractor, fake_llm, monkeypatch):
    """Pipeline wired with fakes and installed on the app."""
    pipe = IngestionPipeline(
        extractor=extractor,
        llm=fake_llm,
        transcripts=ConversationStore(CHAT_PREAMBLE),
        ledger=UsageLedger(),
        default_language="English",
    )
    monkeypatch.setitem(flask_app.extensions, "ingestion_pipeline", pipe)
    return pipe


@pytest.fixture
def client(flask_app, pipeline):
    return flask_app.test_client()


@pytest.fixture
def user(flask_app):
    dob = date(1990, 3, 12)
    u = User(
        email="priya@example.com",
        name="Priya",
        dob=dob,
        age=compute_age(dob),
        health_records=["Type 2 diabetes", "Allergic to penicillin"],
    )
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def auth_headers(user):
    token = create_access_token(identity=user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_file(tmp_path):
    """Factory writing an upload-like file and returning its path."""
    def _make(name="report.pdf", content=b"%PDF-1.4 fake"):
        path = tmp_path / name
        path.write_bytes(content)
        return str(path)
    return _make
