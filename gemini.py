import os
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

import google.generativeai as genai

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_FALLBACK_MODEL = "gemini-1.5-pro"
GENERATION_CONFIG = {
    "temperature": 0.7,
    "top_k": 40,
    "top_p": 0.95,
    "max_output_tokens": 8192,
}

_configured_key = None
# Timed-out calls keep running here; their results are discarded.
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="gemini")


class ModelUnavailable(RuntimeError):
    pass


class ModelTimeout(RuntimeError):
    pass


class EmptyResponse(RuntimeError):
    pass


def ensure_genai(api_key=None):
    """Configure Gemini once per process (again only if the key changes)."""
    global _configured_key
    api_key = api_key or os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise RuntimeError("GEMINI_API_KEY is not set.")
    if api_key != _configured_key:
        genai.configure(api_key=api_key)
        _configured_key = api_key
    return genai


class GeminiModel:
    """Thin wrapper: prompt + image in, first candidate's text out."""

    def __init__(self, model):
        self.model = model

    def generate(self, prompt: str, image: dict) -> str:
        resp = self.model.generate_content([prompt, image])
        return first_candidate_text(resp)


def first_candidate_text(resp) -> str:
    candidates = getattr(resp, "candidates", None)
    if not candidates:
        raise EmptyResponse("No response candidates received from Gemini")
    content = getattr(candidates[0], "content", None)
    parts = getattr(content, "parts", None)
    if not parts:
        raise EmptyResponse("No content parts in response")
    return (getattr(parts[0], "text", "") or "").strip()


def build_model(api_key=None, model_name=None, fallback_name=None) -> GeminiModel:
    """Primary model, or the fallback model if the primary can't be created."""
    ensure_genai(api_key)
    model_name = model_name or os.getenv("GEMINI_MODEL", DEFAULT_MODEL)
    fallback_name = fallback_name or os.getenv("GEMINI_FALLBACK_MODEL", DEFAULT_FALLBACK_MODEL)
    try:
        return GeminiModel(genai.GenerativeModel(model_name, generation_config=GENERATION_CONFIG))
    except Exception as e:
        logger.error("Model initialization error (%s): %s", model_name, e)
    try:
        return GeminiModel(genai.GenerativeModel(fallback_name, generation_config=GENERATION_CONFIG))
    except Exception as e:
        logger.error("Fallback model error (%s): %s", fallback_name, e)
        raise ModelUnavailable("Gemini models are currently unavailable.") from e


def image_part(mime_type: str, data: bytes) -> dict:
    return {"mime_type": mime_type, "data": data}


def call_with_timeout(fn, *args, timeout: float, message: str):
    """Run fn(*args) and give up waiting after `timeout` seconds."""
    future = _executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        raise ModelTimeout(message) from None
