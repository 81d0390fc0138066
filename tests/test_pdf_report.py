import io

import pytest
from PyPDF2 import PdfReader

from pdf_report import split_questions, create_prediction_pdf, create_sample_pdf


def pdf_text(data):
    return "\n".join(page.extract_text() for page in PdfReader(io.BytesIO(data)).pages)


def test_split_questions_strips_existing_numbering():
    raw = "1. What is entropy?\n\n2) Define enthalpy\n- Explain Carnot efficiency\nQuestion 4: Why is 1.5 kg heavier?"
    assert split_questions(raw) == [
        "What is entropy?",
        "Define enthalpy",
        "Explain Carnot efficiency",
        "Why is 1.5 kg heavier?",
    ]


def test_split_questions_accepts_lists_and_drops_blanks():
    assert split_questions(["  First  ", "", "   ", "Second"]) == ["First", "Second"]
    assert split_questions("") == []


def test_create_prediction_pdf_numbers_each_question():
    data = create_prediction_pdf("1. Define a <b>bond</b> & a yield?\n2. Explain **coupon rate**")
    assert data.startswith(b"%PDF")

    text = pdf_text(data)
    assert "PrepStation Predicted Questions" in text
    assert "1. Define a <b>bond</b>" in text
    assert "2. Explain" in text
    assert "coupon rate" in text
    assert "**" not in text


def test_create_prediction_pdf_with_no_questions_still_renders_title():
    assert "PrepStation Predicted Questions" in pdf_text(create_prediction_pdf(""))


def test_create_prediction_pdf_wraps_failures(monkeypatch):
    import pdf_report

    def boom(elements):
        raise ValueError("layout error")

    monkeypatch.setattr(pdf_report, '_render', boom)
    with pytest.raises(RuntimeError, match="PDF creation failed: layout error"):
        create_prediction_pdf("1. Anything")


def test_sample_pdf_contains_known_text():
    assert "Test PDF Document" in pdf_text(create_sample_pdf())


def test_question_ending_in_colon_keeps_its_number():
    text = pdf_text(create_prediction_pdf("1. Define the following terms:\n2. Explain entropy"))
    assert "1. Define the following terms:" in text
    assert "2. Explain entropy" in text
