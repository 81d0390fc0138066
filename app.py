# ==============================================================================
# --- PrepStation - Exam Question Prediction Backend ---
# ==============================================================================
#
# Description:  Accepts past question papers (PDF or photographed pages),
#               extracts their text, asks Gemini for the questions most likely
#               to appear next and returns them as a downloadable PDF. Also
#               hosts the study assistant chat endpoint.
#
# ==============================================================================

# --- 1. IMPORTS ---
import io
import os
import shutil
import logging
import traceback
from typing import List, Dict, Optional, Tuple, Any

# --- Third-party library imports ---
from dotenv import load_dotenv
from flask import Flask, request, jsonify, send_file, Response
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

import ai_client
import extraction
from ai_client import AIServiceError
from extraction import UploadError, ExtractionError, UploadedFile
from pdf_report import create_prediction_pdf, create_sample_pdf

# ==============================================================================
# --- 2. CONFIGURATION & INITIALIZATION ---
# ==============================================================================
load_dotenv()


def _env_list(name: str, default: str = "") -> List[str]:
    return [item.strip() for item in os.environ.get(name, default).split(',') if item.strip()]


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Centralized configuration class for the application."""
    API_KEYS: List[str] = _env_list("API_KEYS") or _env_list("GEMINI_API_KEY")
    GEMINI_MODEL: str = os.environ.get("GEMINI_MODEL", "gemini-1.5-flash")
    MAX_AI_RETRIES: int = int(os.environ.get("MAX_AI_RETRIES", 3))
    AI_RETRY_DELAY_SECONDS: float = float(os.environ.get("AI_RETRY_DELAY_SECONDS", 5))
    AI_TEMPERATURE: float = float(os.environ.get("AI_TEMPERATURE", 0.4))
    AI_MAX_OUTPUT_TOKENS: int = int(os.environ.get("AI_MAX_OUTPUT_TOKENS", 8192))
    MAX_CONTEXT_CHARS: int = int(os.environ.get("MAX_CONTEXT_CHARS", 1000000))
    TESSERACT_CMD: Optional[str] = os.environ.get("TESSERACT_CMD") or shutil.which('tesseract')
    OCR_LANGUAGE: str = os.environ.get("OCR_LANGUAGE", "eng")
    OCR_DPI: int = int(os.environ.get("OCR_DPI", 200))
    PDF_OCR_FALLBACK: bool = _env_bool("PDF_OCR_FALLBACK", True)
    MAX_FILE_SIZE: int = int(os.environ.get("MAX_FILE_SIZE", 10 * 1024 * 1024))
    MAX_FILES: int = int(os.environ.get("MAX_FILES", 5))
    MAX_CONTENT_LENGTH: int = int(os.environ.get("MAX_CONTENT_LENGTH", 50 * 1024 * 1024))
    ALLOWED_MIME_TYPES: Tuple[str, ...] = ('application/pdf', 'image/jpeg', 'image/png', 'image/jpg')
    CORS_ORIGINS: List[str] = _env_list("CORS_ORIGINS", "http://localhost:5173,https://prepstation-eight.vercel.app")
    HOST: str = os.environ.get("HOST", "0.0.0.0")
    PORT: int = int(os.environ.get("PORT", 5000))
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")


app = Flask(__name__)
app.config.from_object(Config)
CORS(app, origins=Config.CORS_ORIGINS, expose_headers=['X-Processing-Message', 'Content-Disposition'])
logging.basicConfig(level=Config.LOG_LEVEL, format='%(asctime)s - %(levelname)s - [%(funcName)s] - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')

extraction.configure_tesseract(Config.TESSERACT_CMD)

with app.app_context():
    if ai_client.is_configured():
        logging.info(f"Google AI configured with {len(app.config['API_KEYS'])} key(s).")
    else:
        logging.error("Google AI API key is not configured or is a placeholder. AI features will be disabled.")

# ==============================================================================
# --- 3. ERROR HANDLING ---
# ==============================================================================

def _error(message: str, status: int, **extra: Any) -> Tuple[Response, int]:
    return jsonify({"success": False, "message": message, **extra}), status


@app.errorhandler(UploadError)
@app.errorhandler(ExtractionError)
def handle_bad_document(e: Exception) -> Tuple[Response, int]:
    logging.warning(f"Rejected request to {request.path}: {e}")
    return _error(str(e), 400)


@app.errorhandler(AIServiceError)
def handle_ai_failure(e: AIServiceError) -> Tuple[Response, int]:
    logging.error(f"AI service failure on {request.path}: {e}")
    return _error(str(e), 500)


@app.errorhandler(RequestEntityTooLarge)
def handle_too_large(e: RequestEntityTooLarge) -> Tuple[Response, int]:
    return _error(f"Request too large. Maximum size is {app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)}MB.", 413)


@app.errorhandler(Exception)
def handle_unexpected(e: Exception) -> Tuple[Response, int]:
    if isinstance(e, HTTPException):
        return _error(e.description or e.name, e.code or 500)
    logging.error(f"Unhandled error in {request.path}: {e}\n{traceback.format_exc()}")
    return _error(str(e) or "An unexpected server error occurred.", 500)

# ==============================================================================
# --- 4. HELPER FUNCTIONS FOR API ROUTES ---
# ==============================================================================

def _multipart_uploads(empty_message: str = "No files uploaded") -> List[UploadedFile]:
    return extraction.collect_uploads(request.files, app.config['ALLOWED_MIME_TYPES'], app.config['MAX_FILES'], app.config['MAX_FILE_SIZE'], empty_message)


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _json_uploads(key: str, empty_message: str) -> List[UploadedFile]:
    items = _json_body().get(key)
    if not items or not isinstance(items, list):
        raise UploadError(empty_message)
    logging.info(f"Processing {len(items)} files via base64")
    return extraction.files_from_json(items, app.config['MAX_FILES'], app.config['MAX_FILE_SIZE'])


def _pdf_texts(uploads: List[UploadedFile]) -> Tuple[List[str], int]:
    """Extracts text from every PDF upload; other types are skipped."""
    texts, skipped = [], 0
    for upload in uploads:
        if not extraction.is_pdf(upload):
            logging.info(f"Skipping non-PDF file: {upload.name}, type: {upload.mimetype}")
            skipped += 1
            continue
        try:
            text = extraction.extract_text_from_pdf(upload.data)
        except ExtractionError as e:
            raise ExtractionError(f"Failed to process file {upload.name}: {e}") from e
        if not text:
            logging.warning(f"No text content found in {upload.name}; skipping it.")
            skipped += 1
            continue
        texts.append(text)
        logging.info(f"Successfully processed: {upload.name}")
    return texts, skipped


def _image_texts(uploads: List[UploadedFile]) -> Tuple[List[str], int]:
    images = [upload for upload in uploads if extraction.is_image(upload)]
    if not images:
        raise UploadError("No valid image files found")
    logging.info(f"Valid image files: {len(images)}")
    texts = [text for text in extraction.extract_text_from_images([image.data for image in images]) if text.strip()]
    return texts, len(uploads) - len(texts)


def _send_prediction(combined_text: str, download_name: str, used: int, skipped: int) -> Response:
    logging.info(f"Total extracted text length: {len(combined_text)} characters")
    questions = ai_client.analyze_questions(combined_text)
    pdf_bytes = create_prediction_pdf(questions)
    response = send_file(io.BytesIO(pdf_bytes), download_name=download_name, as_attachment=True, mimetype='application/pdf')
    response.headers['X-Processing-Message'] = f"Predicted questions from {used} document(s); skipped {skipped}."
    return response


def _predict_from_pdfs(uploads: List[UploadedFile]) -> Response:
    texts, skipped = _pdf_texts(uploads)
    if not texts:
        raise UploadError("No PDF files were successfully processed")
    combined = extraction.combine_texts(texts, ' ')
    return _send_prediction(combined, "predicted-questions.pdf", len(texts), skipped)


def _predict_from_images(uploads: List[UploadedFile]) -> Response:
    texts, skipped = _image_texts(uploads)
    combined = extraction.combine_texts(texts, '\n\n')
    if not combined:
        raise UploadError("No text could be extracted from images")
    return _send_prediction(combined, "predicted-questions-from-images.pdf", len(texts), skipped)


def _preview(text: str, length: int = 200) -> str:
    return text[:length] + '...'

# ==============================================================================
# --- 5. API ROUTES ---
# ==============================================================================

@app.route('/')
def home() -> str:
    """A simple endpoint to confirm the backend is running."""
    return "PrepStation backend is running!"


@app.route('/health')
def health_check() -> Tuple[Response, int]:
    """Health check endpoint for monitoring."""
    return jsonify({"status": "ok", "ocr_available": extraction.ocr_available(), "ai_configured": ai_client.is_configured()}), 200


# --- 5a. Question prediction from PDFs ---

@app.route('/api/gemini/predict', methods=['POST'])
@app.route('/api/gemini/predict-multer', methods=['POST'])
def predict_questions() -> Response:
    """Predicts exam questions from uploaded PDF papers."""
    uploads = _multipart_uploads()
    logging.info(f"Uploaded files: {[(u.name, len(u.data)) for u in uploads]}")
    return _predict_from_pdfs(uploads)


@app.route('/api/gemini/predict-base64', methods=['POST'])
def predict_questions_base64() -> Response:
    """Same as /predict, with the PDFs sent as base64 in a JSON body."""
    return _predict_from_pdfs(_json_uploads('files', "No files provided"))


@app.route('/api/gemini/assist', methods=['POST'])
def chat_with_assistant() -> Response:
    """Answers a study question, optionally about an attached image or PDF."""
    prompt = request.form.get('prompt') or _json_body().get('prompt')
    if not prompt or not str(prompt).strip():
        raise UploadError("Prompt is required")

    image, document_text = None, None
    attachment = request.files.get('image')
    if attachment and attachment.filename:
        upload = extraction.read_upload(attachment, app.config['ALLOWED_MIME_TYPES'], app.config['MAX_FILE_SIZE'])
        if extraction.is_pdf(upload):
            document_text = extraction.combine_texts([extraction.extract_text_from_pdf(upload.data)], '')
        else:
            image = upload.data

    response = ai_client.chat(str(prompt), image=image, document_text=document_text)
    return jsonify({"response": response})


# --- 5b. Question prediction from images ---

@app.route('/api/images/extract-text', methods=['POST'])
def extract_text_from_images() -> Response:
    """OCRs uploaded images and returns the text of each."""
    uploads = _multipart_uploads("No images uploaded")
    images = [upload for upload in uploads if extraction.is_image(upload)]
    if not images:
        raise UploadError("No valid image files found")

    texts = extraction.extract_text_from_images([image.data for image in images])
    return jsonify({
        "success": True,
        "message": "Text extraction completed",
        "images_processed": len(images),
        "extracted_texts": [
            {"image_index": i, "filename": image.name, "text_length": len(text), "text_preview": _preview(text), "full_text": text}
            for i, (image, text) in enumerate(zip(images, texts), start=1)
        ],
    })


@app.route('/api/images/predict-questions', methods=['POST'])
def predict_questions_from_images() -> Response:
    """Predicts exam questions from photographed question papers."""
    uploads = _multipart_uploads("No images uploaded")
    logging.info(f"Processing {len(uploads)} images for question prediction")
    return _predict_from_images(uploads)


@app.route('/api/images/predict-questions-base64', methods=['POST'])
def predict_questions_from_images_base64() -> Response:
    return _predict_from_images(_json_uploads('images', "No images provided"))


# --- 5c. Diagnostics ---

@app.route('/api/gemini/test', methods=['GET'])
def test_gemini() -> Response:
    """Checks that the configured Gemini key answers."""
    response = ai_client.chat('Hello, this is a test message.')
    return jsonify({"success": True, "message": "Gemini API is working correctly", "response": _preview(response, 100)})


@app.route('/api/gemini/test-upload', methods=['POST'])
def test_file_upload() -> Response:
    """Echoes what the server received in a multipart request."""
    details = []
    for field in request.files:
        for storage in request.files.getlist(field):
            data = storage.read()
            details.append({"fieldname": field, "originalname": storage.filename, "mimetype": storage.mimetype, "size": len(data)})
    logging.info(f"Upload test received {len(details)} file(s): {details}")
    return jsonify({
        "success": True,
        "message": "File upload test successful",
        "files_count": len(details),
        "file_details": details,
        "content_type": request.headers.get('Content-Type'),
        "body_keys": list(request.form.keys()),
    })


@app.route('/api/gemini/test-base64', methods=['POST'])
def test_base64_pdf() -> Response:
    """Validates a base64 PDF and reports what extraction makes of it."""
    file = _json_body().get('file')
    if not isinstance(file, dict) or not file.get('data'):
        raise UploadError("No file data provided")

    logging.info(f"Testing base64 PDF processing: name={file.get('name')}, type={file.get('type')}, data length={len(file['data'])}")
    buffer = extraction.decode_base64_payload(file['data'])
    header = buffer[:8].decode('ascii', errors='replace')
    if not header.startswith('%PDF'):
        return _error("Invalid PDF file (missing PDF header)", 400, header=header, first_bytes=buffer[:20].hex(), buffer_size=len(buffer))

    text = extraction.extract_text_from_pdf(buffer)
    return jsonify({
        "success": True,
        "message": "PDF processing test successful",
        "file_size": len(buffer),
        "text_length": len(text),
        "text_preview": _preview(text),
    })


@app.route('/api/gemini/test-sample-pdf', methods=['GET'])
def test_sample_pdf() -> Response:
    """Round-trips a generated PDF through the extraction pipeline."""
    pdf_bytes = create_sample_pdf()
    logging.info(f"Created test PDF, size: {len(pdf_bytes)} bytes")
    try:
        text = extraction.extract_text_from_pdf(pdf_bytes)
    except ExtractionError as e:
        return _error(f"PDF processing failed: {e}", 500)
    return jsonify({
        "success": True,
        "message": "PDF processing is working correctly",
        "pdf_size": len(pdf_bytes),
        "text_length": len(text),
        "text_preview": text[:100],
    })


@app.route('/api/images/test', methods=['POST'])
def test_image_processing() -> Response:
    uploads = _multipart_uploads("No images uploaded")
    images = [upload for upload in uploads if extraction.is_image(upload)]
    return jsonify({
        "success": True,
        "message": "Image processing test completed",
        "total_files": len(uploads),
        "image_files": len(images),
        "file_details": [{"name": image.name, "type": image.mimetype, "size": len(image.data)} for image in images],
    })


@app.route('/api/images/test-base64', methods=['POST'])
def test_image_base64() -> Response:
    """OCRs a single base64 image."""
    image = _json_body().get('image')
    if not isinstance(image, dict) or not image.get('data'):
        raise UploadError("No image data provided")

    buffer = extraction.decode_base64_payload(image['data'])
    logging.info(f"Testing base64 image {image.get('name')}: {len(buffer)} bytes")
    text = extraction.extract_text_from_image(buffer)
    return jsonify({
        "success": True,
        "message": "Image OCR test successful",
        "image_size": len(buffer),
        "text_length": len(text),
        "text_preview": _preview(text),
        "full_text": text,
    })

# ==============================================================================
# --- 6. MAIN EXECUTION ---
# ==============================================================================
if __name__ == '__main__':
    if not Config.API_KEYS:
        logging.fatal("AI features disabled due to missing API key.")
    if not extraction.ocr_available():
        logging.fatal("OCR features disabled because Tesseract is not available.")

    from waitress import serve
    logging.info(f"Starting production server with Waitress on http://{Config.HOST}:{Config.PORT}")
    serve(app, host=Config.HOST, port=Config.PORT)
