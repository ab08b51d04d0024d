"""
The form-side of the app: validate a submission, send it to one of the two
generation endpoints, and keep the latest result for the results page.
"""
import os
import glob
import json
import time
import uuid
import logging
import tempfile

import requests

from generation import ImageUpload, MAX_IMAGE_BYTES, utc_timestamp

logger = logging.getLogger(__name__)

DEMO_ENDPOINT = "/api/generate-demo"
LIVE_ENDPOINT = "/api/generate"
RESULT_KEY = "answerResult"
RESULT_TTL_SECONDS = 24 * 60 * 60

STATUS_MESSAGES = {
    404: "API endpoint not found. Please check your configuration.",
    401: "API key is invalid or missing. Please check your Gemini API key.",
    403: "API access denied. Please check your API key permissions.",
    429: "Rate limit exceeded. Please try again in a few moments.",
}


class SubmissionError(Exception):
    def __init__(self, title, description):
        super().__init__(description)
        self.title = title
        self.description = description


def validate_submission(question, image, max_bytes=MAX_IMAGE_BYTES):
    if not (question or "").strip():
        raise SubmissionError("Question required", "Please enter a question to continue")
    if image is None:
        raise SubmissionError("Image required", "Please upload an image containing units and topic name")
    if image.size > max_bytes:
        raise SubmissionError("File too large", f"Please select an image smaller than {max_bytes // (1024 * 1024)}MB")
    if not (image.mime_type or "").startswith("image/"):
        raise SubmissionError("Invalid file type", "Please select a valid image file")


def describe_failure(status, body):
    if status in STATUS_MESSAGES:
        return STATUS_MESSAGES[status]
    error = (body or {}).get("error") if isinstance(body, dict) else None
    return error or f"HTTP error! status: {status}"


# ===== Transports =====

class LocalTransport:
    """Calls the endpoint functions in-process. `handlers` maps path -> fn(question, image) -> Outcome."""

    def __init__(self, handlers):
        self.handlers = handlers

    def post(self, endpoint, question, image):
        handler = self.handlers.get(endpoint)
        if handler is None:
            return 404, {"error": f"No endpoint at {endpoint}"}
        outcome = handler(question, image)
        return outcome.status, outcome.body


class HttpTransport:
    """Multipart POST to a running instance of this app."""

    def __init__(self, base_url, timeout=60, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def post(self, endpoint, question, image):
        resp = self.session.post(
            self.base_url + endpoint,
            data={"question": question},
            files={"image": (image.filename or "image", image.data, image.mime_type)},
            timeout=self.timeout,
        )
        try:
            body = resp.json()
        except ValueError:
            body = {}
        return resp.status_code, body


# ===== Result storage =====

class ResultStore:
    """
    Keeps the most recent result. The JSON goes to a temp file and only its
    path is stored in the session, so big answers don't overflow the cookie.
    Files older than `max_age` seconds belong to abandoned sessions and are
    removed on the next save.
    """

    def __init__(self, session, directory=None, max_age=RESULT_TTL_SECONDS):
        self.session = session
        self.directory = directory or tempfile.gettempdir()
        self.max_age = max_age

    def save(self, result):
        try:
            path = os.path.join(self.directory, f"answer-{uuid.uuid4().hex}.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump(result, f)
            previous = self.session.get(RESULT_KEY)
            self.session[RESULT_KEY] = path
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to store result: %s", e)
            return False
        if previous and previous != path:
            try:
                os.remove(previous)
            except OSError:
                pass
        self.prune()
        return True

    def prune(self):
        """Delete stored results older than max_age; returns how many were removed."""
        if not self.max_age:
            return 0
        cutoff = time.time() - self.max_age
        current = self.session.get(RESULT_KEY)
        removed = 0
        for path in glob.glob(os.path.join(self.directory, "answer-*.json")):
            try:
                if path != current and os.path.getmtime(path) < cutoff:
                    os.remove(path)
                    removed += 1
            except OSError:
                continue
        if removed:
            logger.info("Removed %d expired result(s) from %s", removed, self.directory)
        return removed

    def load(self):
        """The stored result, None when there is none. Raises ValueError if unreadable."""
        path = self.session.get(RESULT_KEY)
        if not path:
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None


# ===== Client =====

class AnswerClient:
    def __init__(self, transport, store, max_bytes=MAX_IMAGE_BYTES):
        self.transport = transport
        self.store = store
        self.max_bytes = max_bytes

    def submit(self, question, image: ImageUpload, demo_mode=True):
        validate_submission(question, image, self.max_bytes)
        endpoint = DEMO_ENDPOINT if demo_mode else LIVE_ENDPOINT

        try:
            status, data = self.transport.post(endpoint, question, image)
        except requests.RequestException as e:
            logger.error("Error generating answer: %s", e)
            raise SubmissionError("Error", str(e) or "Failed to generate answer. Please try again.") from e

        if not 200 <= status < 300:
            logger.error("Error generating answer: %s %s", status, data)
            raise SubmissionError("Error", describe_failure(status, data))

        if not isinstance(data, dict) or not data.get("answer") or not data.get("topic"):
            raise SubmissionError("Error", "Invalid response format from server")

        result = dict(data)
        result["originalQuestion"] = question
        result["timestamp"] = utc_timestamp()
        self.store.save(result)
        return result
