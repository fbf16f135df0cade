"""Text extraction for uploaded lab reports and medicine photos.

Images go straight to OCR. PDFs are first parsed for an embedded text layer
with pdfplumber; if that yields too little text the pages are rendered to
images with pdf2image and run through tesseract one by one.
"""
import os
import tempfile
from dataclasses import dataclass

import structlog

from errors import ExtractionFailed, UnsupportedMediaKind

logger = structlog.get_logger(__name__)

DIGITAL_PARSE = 'digital-parse'
OCR_FALLBACK = 'ocr-fallback'

DOCUMENT_KINDS = frozenset({'pdf'})
IMAGE_KINDS = frozenset({'jpg', 'jpeg', 'png'})
SUPPORTED_KINDS = DOCUMENT_KINDS | IMAGE_KINDS

# Page texts are joined with a blank line
PAGE_SEPARATOR = '\n\n'


def media_kind_for(filename: str) -> str:
	"""Return the lowercase extension of ``filename`` without the dot ('' if none)."""
	if not filename or '.' not in filename:
		return ''
	return os.path.splitext(filename)[1].lower().lstrip('.')


@dataclass(frozen=True)
class ExtractionResult:
	text: str
	provenance: str


# -----------------------------
# Backends
# -----------------------------
class PdfPlumberParser:
	"""Reads the embedded text layer of a PDF."""

	def parse(self, pdf_path: str) -> str:
		import pdfplumber

		text_parts = []
		with pdfplumber.open(pdf_path) as pdf:
			for page in pdf.pages:
				page_text = page.extract_text()
				if page_text:
					text_parts.append(page_text)
		return "\n".join(text_parts)


class TesseractOCR:
	"""Local tesseract OCR through pytesseract."""

	def __init__(self, lang: str = 'eng', timeout: float = 30):
		self.lang = lang
		# Seconds per image; tesseract is killed and RuntimeError raised past it
		self.timeout = timeout

	def image_to_text(self, image_path: str) -> str:
		import pytesseract
		from PIL import Image

		with Image.open(image_path) as img:
			return pytesseract.image_to_string(img, lang=self.lang, timeout=self.timeout)


class Pdf2ImageRenderer:
	"""Renders PDF pages to JPEG files (requires poppler)."""

	def __init__(self, dpi: int = 200, timeout: float = 60):
		self.dpi = dpi
		self.timeout = timeout

	def render(self, pdf_path: str, output_folder: str) -> list:
		import pdf2image

		return pdf2image.convert_from_path(
			pdf_path,
			dpi=self.dpi,
			output_folder=output_folder,
			fmt='jpeg',
			paths_only=True,
			timeout=self.timeout,
		)


# -----------------------------
# Extractor
# -----------------------------
class TextExtractor:
	"""Turns a stored upload into normalized text plus its provenance.

	Args:
		digital_parser: object with ``parse(path) -> str``
		ocr: object with ``image_to_text(path) -> str``
		page_renderer: object with ``render(pdf_path, output_folder) -> [image paths]``
		min_text_length: digital text is accepted only if its trimmed length
			is strictly greater than this
	"""

	def __init__(self, digital_parser=None, ocr=None, page_renderer=None, min_text_length: int = 30):
		self.digital_parser = digital_parser or PdfPlumberParser()
		self.ocr = ocr or TesseractOCR()
		self.page_renderer = page_renderer or Pdf2ImageRenderer()
		self.min_text_length = min_text_length

	def is_text_sufficient(self, text) -> bool:
		return bool(text) and len(text.strip()) > self.min_text_length

	def extract(self, file_path: str, declared_kind: str) -> ExtractionResult:
		kind = (declared_kind or '').lower().lstrip('.')
		if kind not in SUPPORTED_KINDS:
			raise UnsupportedMediaKind(f'Unsupported file type: {declared_kind or "unknown"}')
		if not file_path or not os.path.isfile(file_path):
			raise ExtractionFailed('Uploaded file is missing')

		if kind in IMAGE_KINDS:
			text = self._ocr_image(file_path)
			logger.info("text_extracted", kind=kind, provenance=OCR_FALLBACK, chars=len(text))
			return ExtractionResult(text=text, provenance=OCR_FALLBACK)

		text = self._digital_text(file_path)
		if self.is_text_sufficient(text):
			logger.info("text_extracted", kind=kind, provenance=DIGITAL_PARSE, chars=len(text))
			return ExtractionResult(text=text.strip(), provenance=DIGITAL_PARSE)

		logger.info("digital_parse_rejected", kind=kind, chars=len((text or '').strip()),
			min_text_length=self.min_text_length)
		text = self._ocr_pdf(file_path)
		logger.info("text_extracted", kind=kind, provenance=OCR_FALLBACK, chars=len(text))
		return ExtractionResult(text=text, provenance=OCR_FALLBACK)

	def _digital_text(self, pdf_path: str) -> str:
		# A broken text layer is treated like an empty one
		try:
			return self.digital_parser.parse(pdf_path) or ''
		except Exception as exc:
			logger.warning("digital_parse_failed", error=str(exc))
			return ''

	def _ocr_image(self, image_path: str) -> str:
		try:
			text = self.ocr.image_to_text(image_path) or ''
		except Exception as exc:
			raise ExtractionFailed(f'OCR failed: {exc}') from exc
		text = text.strip()
		if not text:
			raise ExtractionFailed('No text could be recognized in the image')
		return text

	def _ocr_pdf(self, pdf_path: str) -> str:
		with tempfile.TemporaryDirectory(prefix='pages-') as scratch:
			try:
				page_images = self.page_renderer.render(pdf_path, scratch)
			except Exception as exc:
				raise ExtractionFailed(f'PDF conversion failed: {exc}') from exc

			page_texts = []
			for image_path in page_images:
				try:
					page_texts.append((self.ocr.image_to_text(image_path) or '').strip())
				except Exception as exc:
					raise ExtractionFailed(f'OCR failed: {exc}') from exc

		text = PAGE_SEPARATOR.join(page_texts).strip()
		if not text:
			raise ExtractionFailed('Could not read any text from the PDF')
		return text
