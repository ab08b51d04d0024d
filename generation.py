"""
Endpoint logic for /api/generate-demo and /api/generate.

Both endpoints are plain functions returning an Outcome (HTTP status + JSON
body) so the web layer only has to parse the form and serialize the result.
The live endpoint takes the model as an argument; tests hand it a fake.
"""
import time
import logging
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import requests
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import generation_types

import gemini
import topics

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024
MIN_QUESTION_LENGTH = 3
ANSWER_TIMEOUT_SECONDS = 30
TOPIC_TIMEOUT_SECONDS = 15

NO_ANSWER = "No answer generated."
UNABLE_TO_ANSWER = (
    "I was unable to generate a detailed answer for your question. "
    "Please try rephrasing your question or using a different image."
)
ANALYSIS_FAILED = (
    "I encountered an issue while analyzing your image. "
    "Please try again with a different image or rephrase your question."
)

NETWORK_ERRORS = (ConnectionError, requests.ConnectionError, google_exceptions.ServiceUnavailable)

ANSWER_PROMPT = """Please analyze the uploaded image carefully and answer this question: "{question}"

Instructions:
- If the image contains relevant information (diagrams, text, charts, formulas, etc.), use it to provide an accurate answer
- Provide a detailed explanation covering all relevant topics mentioned in the image
- If the image is not relevant to the question, explain what you see and why it may not relate to the question
- Be thorough and educational in your response
- If you cannot see the image clearly, mention this limitation

Question: "{question}\""""

TOPIC_PROMPT = """Analyze this question and the uploaded image to identify the main academic subject and related subtopics.

Question: "{question}"

Return ONLY a valid JSON object in this exact format:
{{
  "topic": "Main Subject Name",
  "units": ["Subtopic 1", "Subtopic 2", "Subtopic 3", "Subtopic 4"]
}}

Guidelines:
- Identify the primary academic subject (e.g., Mathematics, Physics, Chemistry, Biology, History, etc.)
- List 3-4 relevant subtopics or units related to the subject
- Keep topic names concise but descriptive
- Ensure the JSON is properly formatted with no additional text"""


@dataclass
class ImageUpload:
    filename: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class Outcome:
    status: int
    body: dict


def utc_timestamp() -> str:
    """ISO-8601 UTC with milliseconds and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def failure(status: int, message: str, details: Optional[dict] = None) -> Outcome:
    body = {
        "success": False,
        "error": message,
        "code": status,
        "timestamp": utc_timestamp(),
    }
    if details:
        body["details"] = details
    return Outcome(status, body)


# ===== Demo =====

def generate_demo(question: Optional[str], image: Optional[ImageUpload], delay: float = 2.0) -> Outcome:
    """Keyword-matched canned answer; never calls out."""
    try:
        if not question or image is None:
            return Outcome(400, {"error": "Question and image are required"})

        if delay > 0:
            time.sleep(delay)

        topic, units, answer = topics.demo_response(question)
        return Outcome(200, {
            "answer": answer,
            "visualization": topics.demo_visualization_url(topic),
            "topic": topic,
            "units": units,
        })
    except Exception:
        logger.exception("Error generating demo answer")
        return Outcome(500, {"error": "Failed to generate answer"})


# ===== Live =====

def validate_live_request(question: Optional[str], image: Optional[ImageUpload],
                          max_bytes: int = MAX_IMAGE_BYTES) -> Optional[Outcome]:
    """First failing check as an Outcome, or None when the request is usable."""
    if not question or image is None:
        return failure(400, "Both question and image are required.")

    if len(question.strip()) < MIN_QUESTION_LENGTH:
        return failure(400, f"Question must be at least {MIN_QUESTION_LENGTH} characters long.")

    if not (image.mime_type or "").startswith("image/"):
        return failure(400, "Invalid file type. Please upload an image file (JPEG, PNG, GIF, WebP).")

    if image.size > max_bytes:
        return failure(413, f"Image file too large. Maximum size is {max_bytes // (1024 * 1024)}MB.")

    if image.size == 0:
        return failure(400, "Failed to process image file. Please try with a different image.")

    return None


def _error_status(err) -> Optional[int]:
    for attr in ("code", "status"):
        value = getattr(err, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return int(value)
    return None


def classify_model_error(err: Exception) -> Optional[Outcome]:
    """
    Map a failed answer-generation call to an endpoint response.
    Returns None for failures that should degrade to a filler answer instead.
    """
    message = str(err)
    status = _error_status(err)

    if isinstance(err, google_exceptions.NotFound) or "404" in message or status == 404:
        return failure(503, "The AI model is temporarily unavailable. Please try again later.")

    if isinstance(err, google_exceptions.ResourceExhausted) or "quota" in message or status == 429:
        return failure(429, "API usage limit exceeded. Please try again later.")

    if isinstance(err, gemini.ModelTimeout) or "timeout" in message:
        return failure(408, "Request timed out. The image might be too complex or large. "
                            "Please try with a smaller image.")

    if isinstance(err, (generation_types.BlockedPromptException, generation_types.StopCandidateException)) \
            or "SAFETY" in message or "blocked" in message:
        return failure(400, "Content was blocked due to safety policies. "
                            "Please try with a different image or question.")

    return None


def generate_live(question: str, image: ImageUpload, model_factory: Callable[[], "gemini.GeminiModel"],
                  answer_timeout: float = ANSWER_TIMEOUT_SECONDS,
                  topic_timeout: float = TOPIC_TIMEOUT_SECONDS,
                  max_bytes: int = MAX_IMAGE_BYTES) -> Outcome:
    rejected = validate_live_request(question, image, max_bytes)
    if rejected is not None:
        return rejected

    try:
        model = model_factory()
    except gemini.ModelUnavailable as e:
        return failure(503, f"{e} Please try again later.")

    part = gemini.image_part(image.mime_type, image.data)

    # Step 1: answer
    try:
        answer = gemini.call_with_timeout(
            model.generate, ANSWER_PROMPT.format(question=question), part,
            timeout=answer_timeout,
            message=f"Request timeout after {answer_timeout:g} seconds",
        ) or NO_ANSWER
        if answer == NO_ANSWER or len(answer) < 10:
            answer = UNABLE_TO_ANSWER
    except Exception as e:
        logger.error("Gemini answer API error: %s", e)
        rejected = classify_model_error(e)
        if rejected is not None:
            return rejected
        answer = ANALYSIS_FAILED

    # Step 2: topic & units
    try:
        raw = gemini.call_with_timeout(
            model.generate, TOPIC_PROMPT.format(question=question), part,
            timeout=topic_timeout,
            message="Topic extraction timeout",
        )
    except Exception as e:
        logger.info("Topic extraction failed: %s", e)
        raw = None
    topic_info = topics.extract_topics(raw, question)

    return Outcome(200, {
        "success": True,
        "answer": answer,
        "visualization": topics.live_visualization_url(topic_info.topic),
        "topic": topic_info.topic,
        "units": topic_info.units,
        "metadata": {
            "imageSize": image.size,
            "imageType": image.mime_type,
            "questionLength": len(question),
            "timestamp": utc_timestamp(),
        },
    })


def unexpected_error(err: Exception, debug: bool = False) -> Outcome:
    """Last-resort classification for anything that escaped the handler."""
    message = str(err)
    status = _error_status(err)

    if isinstance(err, NETWORK_ERRORS) or (isinstance(err, TypeError) and "fetch" in message):
        code, text = 503, "Network error occurred. Please check your internet connection."
    elif "JSON" in message:
        code, text = 400, "Invalid data format received."
    elif "timeout" in message:
        code, text = 408, "Request timed out. Please try again with a smaller image."
    elif status is not None and 400 <= status < 600:
        code, text = status, message or "An unexpected error occurred while processing your request."
    else:
        code, text = 500, "An unexpected error occurred while processing your request."

    details = None
    if debug:
        details = {
            "message": message,
            "name": type(err).__name__,
            "stack": "".join(traceback.format_exception(type(err), err, err.__traceback__)),
        }
    return failure(code, text, details)
