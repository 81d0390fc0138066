# ==============================================================================
# --- PrepStation - Gemini Client ---
# ==============================================================================
#
# Description:  Thin adapter over google-generativeai with retries and API key
#               rotation, plus the prompts used for question prediction and the
#               study assistant.
#
# ==============================================================================

import io
import time
import logging
from typing import List, Any, Optional, Union

from flask import current_app
from PIL import Image as PILImage, UnidentifiedImageError
import google.generativeai as genai

from extraction import UploadError

_current_key_index: int = 0
_placeholder_keys: List[str] = ["", "YOUR_API_KEY_HERE"]

PREDICTION_PROMPT = """
Analyze the following academic content and predict the most important questions that are likely to appear in exams.
Focus on:
1. Frequently mentioned concepts
2. Key definitions and formulas
3. Important processes and procedures
4. Common problem-solving scenarios

Content: {content}

Please provide 10-15 predicted questions in a clear, numbered format.
"""

ASSISTANT_PROMPT = """
You are PrepStation, an educational AI assistant for university students.
Provide helpful, accurate, and educational responses to academic questions.

Student's question: {question}

Please provide a comprehensive, well-structured response that includes:
- Clear explanations
- Relevant examples when appropriate
- Step-by-step solutions for problems
- Additional context or related concepts

Keep the response educational and suitable for university-level students.
"""


class AIServiceError(Exception):
    """The generative model could not produce a response."""


def _usable_keys() -> List[str]:
    return [k.strip() for k in current_app.config['API_KEYS'] if k and k.strip() not in _placeholder_keys]


def is_configured() -> bool:
    return bool(_usable_keys())


def _friendly_error(error: Exception) -> str:
    """Maps a raw SDK error onto a message that is safe to show to students."""
    message = str(error)
    lowered = message.lower()
    if 'api_key' in lowered or 'api key' in lowered:
        return "Invalid or missing Gemini API key. Please check your .env file."
    if 'quota' in lowered:
        return "Gemini API quota exceeded. Please check your usage limits."
    if 'model' in lowered:
        return "Gemini model not available. Please check the model name."
    return f"Gemini API Error: {message}"


def get_ai_response(prompt: Union[str, List[Any]], temperature: Optional[float] = None) -> str:
    """Gets a text response from Gemini, with retries and key rotation."""
    global _current_key_index
    api_keys = _usable_keys()
    if not api_keys:
        logging.error("AI call attempted but no valid API key is configured.")
        raise AIServiceError("Invalid or missing Gemini API key. Please check your .env file.")

    if temperature is None:
        temperature = current_app.config['AI_TEMPERATURE']
    generation_config = genai.types.GenerationConfig(
        temperature=temperature,
        max_output_tokens=current_app.config['AI_MAX_OUTPUT_TOKENS'],
    )

    max_retries = current_app.config['MAX_AI_RETRIES']
    last_error: Optional[Exception] = None
    for attempt in range(max_retries):
        for i in range(len(api_keys)):
            key_index = (_current_key_index + i) % len(api_keys)
            try:
                logging.info(f"AI call attempt {attempt + 1}, using key index {key_index}...")
                genai.configure(api_key=api_keys[key_index])
                model = genai.GenerativeModel(current_app.config['GEMINI_MODEL'])
                response = model.generate_content(prompt, generation_config=generation_config)

                _current_key_index = key_index
                return response.candidates[0].content.parts[0].text
            except Exception as e:
                last_error = e
                logging.error(f"Exception on AI call with key index {key_index}: {e}")
                if '429' in str(e) or 'rate limit' in str(e).lower():
                    logging.warning(f"Rate limit on key index {key_index}. Trying next key.")
        if attempt + 1 < max_retries:
            delay = current_app.config['AI_RETRY_DELAY_SECONDS']
            logging.warning(f"All API keys failed in attempt cycle {attempt + 1}. Waiting {delay}s.")
            time.sleep(delay)

    logging.error("All AI call attempts with all API keys failed.")
    raise AIServiceError(_friendly_error(last_error) if last_error else "AI service failed to provide a valid response.")


def analyze_questions(text_content: str) -> str:
    """Asks the model for the questions most likely to appear in an exam."""
    logging.info(f"Requesting question prediction for {len(text_content)} characters of content.")
    return get_ai_response(PREDICTION_PROMPT.format(content=text_content))


def chat(prompt: str, image: Optional[bytes] = None, document_text: Optional[str] = None) -> str:
    """Answers a student's question, optionally about an attached image or document.

    With an image the raw prompt is sent alongside it; text-only prompts are
    wrapped in the assistant persona.
    """
    if image is not None:
        try:
            img = PILImage.open(io.BytesIO(image))
        except UnidentifiedImageError:
            raise UploadError("The attached image could not be read.")
        with img:
            img.load()
            return get_ai_response([prompt, img])

    question = prompt
    if document_text:
        question = f"{prompt}\n\nReference material from the attached document:\n---\n{document_text}\n---"
    return get_ai_response(ASSISTANT_PROMPT.format(question=question))
