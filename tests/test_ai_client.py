from types import SimpleNamespace

import pytest

import ai_client
from ai_client import AIServiceError
from extraction import UploadError
from conftest import make_png


def text_response(text):
    part = SimpleNamespace(text=text)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


@pytest.fixture
def fake_genai(monkeypatch):
    """Stands in for the google-generativeai SDK; `outcomes` maps API key to a reply or an exception."""
    state = SimpleNamespace(outcomes={}, calls=[], key=None)

    def configure(api_key):
        state.key = api_key

    class FakeModel:
        def __init__(self, name):
            self.name = name

        def generate_content(self, prompt, generation_config=None):
            state.calls.append((state.key, self.name, prompt))
            outcome = state.outcomes.get(state.key, "ok")
            if isinstance(outcome, Exception):
                raise outcome
            return text_response(outcome)

    monkeypatch.setattr(ai_client.genai, 'configure', configure)
    monkeypatch.setattr(ai_client.genai, 'GenerativeModel', FakeModel)
    monkeypatch.setattr(ai_client, '_current_key_index', 0)
    monkeypatch.setattr(ai_client.time, 'sleep', lambda seconds: None)
    return state


def test_returns_first_candidate_text(app_ctx, fake_genai):
    fake_genai.outcomes['test-key'] = "1. What is entropy?"
    assert ai_client.get_ai_response("predict") == "1. What is entropy?"
    assert fake_genai.calls == [('test-key', 'gemini-1.5-flash', "predict")]


def test_rotates_to_next_key_on_rate_limit(app_ctx, fake_genai):
    app_ctx.config['API_KEYS'] = ['key-a', 'key-b']
    fake_genai.outcomes['key-a'] = Exception("429 Resource has been exhausted (rate limit)")
    fake_genai.outcomes['key-b'] = "answer"

    assert ai_client.get_ai_response("prompt") == "answer"
    assert [key for key, _, _ in fake_genai.calls] == ['key-a', 'key-b']
    assert ai_client._current_key_index == 1


def test_retries_each_cycle(app_ctx, fake_genai):
    app_ctx.config['MAX_AI_RETRIES'] = 3
    fake_genai.outcomes['test-key'] = Exception("backend unavailable")

    with pytest.raises(AIServiceError, match="Gemini API Error: backend unavailable"):
        ai_client.get_ai_response("prompt")
    assert len(fake_genai.calls) == 3


@pytest.mark.parametrize("raw, friendly", [
    ("API_KEY_INVALID", "Invalid or missing Gemini API key. Please check your .env file."),
    ("You exceeded your current quota", "Gemini API quota exceeded. Please check your usage limits."),
    ("404 model gemini-x is not found", "Gemini model not available. Please check the model name."),
])
def test_errors_are_translated(app_ctx, fake_genai, raw, friendly):
    fake_genai.outcomes['test-key'] = Exception(raw)
    with pytest.raises(AIServiceError) as exc_info:
        ai_client.get_ai_response("prompt")
    assert str(exc_info.value) == friendly


def test_missing_key_fails_without_calling_the_model(app_ctx, fake_genai):
    app_ctx.config['API_KEYS'] = ['YOUR_API_KEY_HERE']
    assert not ai_client.is_configured()
    with pytest.raises(AIServiceError, match="Invalid or missing Gemini API key"):
        ai_client.get_ai_response("prompt")
    assert fake_genai.calls == []


def test_analyze_questions_embeds_content(app_ctx, fake_genai):
    ai_client.analyze_questions("Kirchhoff's laws and Thevenin equivalents")
    prompt = fake_genai.calls[0][2]
    assert "Content: Kirchhoff's laws and Thevenin equivalents" in prompt
    assert "10-15 predicted questions" in prompt


def test_chat_wraps_text_prompt_in_persona(app_ctx, fake_genai):
    ai_client.chat("What is a Laplace transform?", document_text="Unit 3 notes")
    prompt = fake_genai.calls[0][2]
    assert "You are PrepStation" in prompt
    assert "What is a Laplace transform?" in prompt
    assert "Unit 3 notes" in prompt


def test_chat_sends_raw_prompt_with_image(app_ctx, fake_genai):
    ai_client.chat("Solve this", image=make_png())
    prompt = fake_genai.calls[0][2]
    assert isinstance(prompt, list)
    assert prompt[0] == "Solve this"
    assert prompt[1].size == (40, 20)


def test_chat_rejects_unreadable_image(app_ctx, fake_genai):
    with pytest.raises(UploadError):
        ai_client.chat("Solve this", image=b"not an image")
