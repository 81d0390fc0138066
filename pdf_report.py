# ==============================================================================
# --- PrepStation - Prediction PDF Rendering ---
# ==============================================================================

import io
import re
import logging
from typing import List, Union
from xml.sax.saxutils import escape

from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import inch
from reportlab.lib.enums import TA_CENTER

DEFAULT_TITLE = "PrepStation Predicted Questions"

_ENUMERATOR_RE = re.compile(r'^\s*(?:(?:Q(?:uestion)?\s*)?\d{1,3}\s*[\.\):]|[-*•])\s+', re.IGNORECASE)
_BOLD_RE = re.compile(r'\*\*(.+?)\*\*')


def split_questions(questions: Union[str, List[str]]) -> List[str]:
    """Turns model output into one entry per non-blank line, without its original numbering."""
    lines = questions if isinstance(questions, list) else (questions or '').split('\n')
    cleaned = []
    for line in lines:
        if not line or not line.strip():
            continue
        cleaned.append(_ENUMERATOR_RE.sub('', line.strip(), count=1).strip() or line.strip())
    return cleaned


def _to_markup(text: str) -> str:
    """Escapes text for a reportlab Paragraph, keeping markdown bold."""
    return _BOLD_RE.sub(r'<b>\1</b>', escape(text))


def _render(elements: List) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=A4, leftMargin=inch / 2, rightMargin=inch / 2, topMargin=inch / 2, bottomMargin=inch / 2)
    doc.build(elements)
    return buf.getvalue()


def create_prediction_pdf(questions: Union[str, List[str]], title: str = DEFAULT_TITLE) -> bytes:
    """Builds the downloadable PDF of predicted questions and returns its bytes."""
    try:
        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(name='PredictionTitle', parent=styles['Title'], fontSize=20, leading=24, alignment=TA_CENTER)
        question_style = ParagraphStyle(name='Question', parent=styles['Normal'], fontSize=14, leading=18)

        elements = [Paragraph(escape(title), title_style), Spacer(1, 0.2 * inch)]
        items = split_questions(questions)
        for number, line in enumerate(items, start=1):
            elements.append(Paragraph(f"{number}. {_to_markup(line)}", question_style))
            elements.append(Spacer(1, 0.1 * inch))

        pdf_bytes = _render(elements)
        logging.info(f"Rendered prediction PDF with {len(items)} entries ({len(pdf_bytes)} bytes).")
        return pdf_bytes
    except Exception as e:
        logging.error(f"PDF creation failed: {e}")
        raise RuntimeError(f"PDF creation failed: {e}") from e


def create_sample_pdf() -> bytes:
    """A small PDF with known text, used to check the extraction pipeline end to end."""
    styles = getSampleStyleSheet()
    elements = [
        Paragraph("Test PDF Document", styles['Title']),
        Spacer(1, 0.2 * inch),
        Paragraph("This is a test PDF document created for testing the PDF processing functionality.", styles['Normal']),
        Spacer(1, 0.1 * inch),
        Paragraph("It contains sample text that should be extracted by the PDF parser.", styles['Normal']),
    ]
    return _render(elements)
