import io

import pytest
from PIL import Image as PILImage
from reportlab.pdfgen import canvas

import ai_client
import extraction
from app import app as flask_app

PREDICTED = "Here are the predicted questions:\n\n1. Define photosynthesis.\n2. Explain the **Calvin cycle**.\n\n3) What limits the rate of photosynthesis?"


def make_pdf(lines):
    buf = io.BytesIO()
    pdf = canvas.Canvas(buf)
    y = 800
    for line in lines:
        pdf.drawString(72, y, line)
        y -= 20
    pdf.showPage()
    pdf.save()
    return buf.getvalue()


def make_blank_pdf(pages):
    buf = io.BytesIO()
    pdf = canvas.Canvas(buf)
    for _ in range(pages):
        pdf.showPage()
    pdf.save()
    return buf.getvalue()


def make_png(color='white'):
    buf = io.BytesIO()
    PILImage.new('RGB', (40, 20), color).save(buf, 'PNG')
    return buf.getvalue()


@pytest.fixture
def app():
    saved = dict(flask_app.config)
    flask_app.config.update(
        TESTING=True,
        API_KEYS=['test-key'],
        GEMINI_MODEL='gemini-1.5-flash',
        PDF_OCR_FALLBACK=True,
        MAX_FILES=5,
        MAX_FILE_SIZE=10 * 1024 * 1024,
        MAX_CONTEXT_CHARS=1000000,
        MAX_AI_RETRIES=1,
        AI_RETRY_DELAY_SECONDS=0,
    )
    yield flask_app
    flask_app.config.clear()
    flask_app.config.update(saved)


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fake_ai(monkeypatch):
    """Replaces the Gemini call and records every prompt sent to it."""
    prompts = []

    def fake_response(prompt, temperature=None):
        prompts.append(prompt)
        return PREDICTED

    monkeypatch.setattr(ai_client, 'get_ai_response', fake_response)
    return prompts


@pytest.fixture
def fake_ocr(monkeypatch):
    """Makes Tesseract available and returns a fixed text for every image."""
    monkeypatch.setitem(extraction._ocr_state, 'available', True)
    monkeypatch.setattr(extraction.pytesseract, 'image_to_string', lambda img, lang=None: "Q1. State Newton's second law.")
