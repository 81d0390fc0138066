# ==============================================================================
# --- PrepStation - Document Extraction ---
# ==============================================================================
#
# Description:  Turns uploaded question papers into plain text. PDFs go through
#               PyPDF2 (with an OCR fallback for scanned papers), images go
#               through Tesseract.
#
# ==============================================================================

import io
import re
import base64
import binascii
import logging
from typing import List, Dict, Any, Optional, Iterable, NamedTuple

from flask import current_app
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError
from pdf2image import convert_from_bytes
from PIL import Image as PILImage
import pytesseract

PDF_MIME_TYPE = 'application/pdf'
_BASE64_RE = re.compile(r'^[A-Za-z0-9+/]*={0,2}$')

_ocr_state: Dict[str, bool] = {"available": False}


class UploadError(ValueError):
    """The client sent a payload that cannot be processed."""


class ExtractionError(Exception):
    """A document could not be turned into text."""


class UploadedFile(NamedTuple):
    name: str
    mimetype: str
    data: bytes


# ==============================================================================
# --- 1. TESSERACT SETUP ---
# ==============================================================================

def configure_tesseract(cmd: Optional[str]) -> bool:
    """Points pytesseract at the Tesseract binary and records whether OCR works."""
    if not cmd:
        logging.error("TESSERACT NOT FOUND. OCR features will be disabled.")
        _ocr_state["available"] = False
        return False
    pytesseract.pytesseract.tesseract_cmd = cmd
    try:
        tesseract_version = pytesseract.get_tesseract_version()
        logging.info(f"Tesseract version {tesseract_version} found and configured.")
        _ocr_state["available"] = True
    except Exception as e:
        logging.error(f"Tesseract found but failed to get version. Error: {e}")
        _ocr_state["available"] = False
    return _ocr_state["available"]


def ocr_available() -> bool:
    return _ocr_state["available"]


# ==============================================================================
# --- 2. UPLOAD HANDLING ---
# ==============================================================================

def is_pdf(file: UploadedFile) -> bool:
    return file.mimetype == PDF_MIME_TYPE


def is_image(file: UploadedFile) -> bool:
    return bool(file.mimetype) and file.mimetype.startswith('image/')


def _check_size(name: str, data: bytes, max_size: int) -> None:
    if len(data) > max_size:
        logging.warning(f"Rejecting {name}: {len(data)} bytes exceeds {max_size}")
        raise UploadError(f"File too large. Maximum size is {max_size // (1024 * 1024)}MB.")


def collect_uploads(files: Any, allowed_types: Iterable[str], max_files: int, max_size: int,
                    empty_message: str = "No files uploaded") -> List[UploadedFile]:
    """Reads every multipart file regardless of its field name.

    `files` is a werkzeug MultiDict of FileStorage objects (``request.files``).
    """
    storages = [storage for key in files for storage in files.getlist(key) if storage and storage.filename]
    if not storages:
        raise UploadError(empty_message)
    if len(storages) > max_files:
        raise UploadError(f"Too many files. Maximum is {max_files} files.")

    return [read_upload(storage, allowed_types, max_size) for storage in storages]


def read_upload(storage: Any, allowed_types: Iterable[str], max_size: int) -> UploadedFile:
    """Validates the type and size of one FileStorage and reads it into memory."""
    mimetype = storage.mimetype or 'application/octet-stream'
    if mimetype not in set(allowed_types):
        logging.warning(f"Rejecting {storage.filename}: type {mimetype} is not allowed")
        raise UploadError("Invalid file type. Only PDF and images are allowed.")
    data = storage.read()
    _check_size(storage.filename, data, max_size)
    logging.info(f"Received file: {storage.filename} ({mimetype}, {len(data)} bytes)")
    return UploadedFile(storage.filename, mimetype, data)


def decode_base64_payload(data: str) -> bytes:
    """Decodes a base64 string, tolerating a data URL prefix."""
    if not isinstance(data, str) or not data:
        raise UploadError("No file data provided")
    clean_data = data.split(',', 1)[1] if ',' in data else data
    clean_data = re.sub(r'\s+', '', clean_data)
    if not _BASE64_RE.match(clean_data):
        raise UploadError("Invalid base64 data")
    try:
        return base64.b64decode(clean_data, validate=True)
    except (binascii.Error, ValueError):
        raise UploadError("Invalid base64 data")


def files_from_json(items: Any, max_files: int, max_size: int) -> List[UploadedFile]:
    """Builds uploads from a JSON list of ``{name, type, data}`` objects."""
    if not isinstance(items, list):
        return []
    if len(items) > max_files:
        raise UploadError(f"Too many files. Maximum is {max_files} files.")
    uploads = []
    for item in items:
        if not isinstance(item, dict) or not item.get('data'):
            logging.info(f"Skipping JSON file entry without data: {item.get('name') if isinstance(item, dict) else item!r}")
            continue
        name = item.get('name') or 'unnamed'
        try:
            data = decode_base64_payload(item['data'])
        except UploadError as e:
            raise UploadError(f"Failed to process file {name}: {e}")
        _check_size(name, data, max_size)
        logging.info(f"Decoded {name}: {len(data)} bytes")
        uploads.append(UploadedFile(name, item.get('type') or '', data))
    return uploads


# ==============================================================================
# --- 3. TEXT EXTRACTION ---
# ==============================================================================

def _ocr_pdf_pages(data: bytes, page_count: int) -> str:
    """Rasterizes a PDF one page at a time and OCRs it.

    Pages with no recognised text are left out. A rasterization failure ends
    the fallback with whatever text was recovered so far.
    """
    full_text = ""
    for page_num in range(1, page_count + 1):
        try:
            pages = convert_from_bytes(data, dpi=current_app.config['OCR_DPI'], fmt='png', first_page=page_num, last_page=page_num)
        except Exception as e:
            logging.error(f"Failed during PDF to image conversion on page {page_num}: {e}")
            break
        for page in pages:
            try:
                page_text = pytesseract.image_to_string(page, lang=current_app.config['OCR_LANGUAGE'])
            except Exception as ocr_err:
                logging.warning(f"OCR error on page {page_num}: {ocr_err}")
                continue
            finally:
                page.close()
            if page_text.strip():
                full_text += f"\n--- PDF Page {page_num} ---\n" + page_text
    return full_text


def extract_text_from_pdf(data: bytes) -> str:
    """Extracts the text layer of a PDF, falling back to OCR for scanned papers.

    Returns an empty string when the document carries no recoverable text.
    """
    try:
        if not isinstance(data, (bytes, bytearray)):
            raise ExtractionError("Invalid buffer provided")
        if len(data) == 0:
            raise ExtractionError("Empty buffer provided")
        header = bytes(data[:8]).decode('ascii', errors='replace')
        if not header.startswith('%PDF'):
            raise ExtractionError("File is not a valid PDF (missing PDF header)")

        logging.info(f"PDF buffer size: {len(data)} bytes, header: {header!r}")
        reader = PdfReader(io.BytesIO(data))
        page_texts = [(page.extract_text() or '') for page in reader.pages]
        text = "\n".join(t for t in page_texts if t.strip()).strip()

        if not text and current_app.config['PDF_OCR_FALLBACK'] and ocr_available():
            logging.info(f"No text layer in {len(reader.pages)} page(s); falling back to OCR.")
            text = _ocr_pdf_pages(data, len(reader.pages)).strip()

        logging.info(f"Extracted text length: {len(text)} characters")
        return text
    except (ExtractionError, PdfReadError) as e:
        logging.error(f"PDF parse error: {e}")
        raise ExtractionError(f"Failed to parse PDF: {e}") from e
    except Exception as e:
        logging.error(f"PDF parse error: {e} (buffer size: {len(data) if isinstance(data, (bytes, bytearray)) else 'n/a'})")
        raise ExtractionError(f"Failed to parse PDF: {e}") from e


def extract_text_from_image(data: bytes) -> str:
    try:
        logging.info(f"Starting OCR on image of {len(data)} bytes")
        with PILImage.open(io.BytesIO(data)) as img:
            text = pytesseract.image_to_string(img, lang=current_app.config['OCR_LANGUAGE'])
        logging.info(f"OCR completed. Extracted text length: {len(text)} characters")
        return text
    except Exception as e:
        logging.error(f"OCR error: {e}")
        raise ExtractionError(f"Failed to extract text from image: {e}") from e


def extract_text_from_images(images: List[bytes]) -> List[str]:
    """OCRs the images one after another, keeping their order."""
    logging.info(f"Processing {len(images)} images...")
    texts = []
    try:
        for i, data in enumerate(images, start=1):
            logging.info(f"Processing image {i}/{len(images)}")
            texts.append(extract_text_from_image(data))
    except ExtractionError as e:
        raise ExtractionError(f"Failed to process images: {e}") from e
    return texts


def combine_texts(texts: Iterable[str], separator: str) -> str:
    """Joins non-empty document texts and caps the result at MAX_CONTEXT_CHARS."""
    combined = separator.join(t.strip() for t in texts if t and t.strip())
    limit = current_app.config['MAX_CONTEXT_CHARS']
    if len(combined) > limit:
        logging.warning(f"Combined text of {len(combined)} characters truncated to {limit}.")
        combined = combined[:limit]
    return combined
