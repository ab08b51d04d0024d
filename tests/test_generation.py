import pytest
import requests
from google.api_core import exceptions as google_exceptions

import gemini
import generation
import topics
from generation import ImageUpload
from conftest import FakeModel, PNG_BYTES

TEN_MB = 10 * 1024 * 1024


def _image(data=PNG_BYTES, mime="image/png"):
    return ImageUpload(filename="diagram.png", mime_type=mime, data=data)


def _live(model, question="What force acts on the block?", image=None, **kwargs):
    return generation.generate_live(question, image or _image(), lambda: model, **kwargs)


# ===== Demo =====

def test_demo_requires_question_and_image():
    assert generation.generate_demo("", _image(), delay=0).status == 400
    outcome = generation.generate_demo("math?", None, delay=0)
    assert outcome.status == 400
    assert outcome.body == {"error": "Question and image are required"}


def test_demo_answer_by_keyword():
    outcome = generation.generate_demo("How do I solve this Equation?", _image(), delay=0)
    assert outcome.status == 200
    assert outcome.body["topic"] == "Mathematics"
    assert outcome.body["units"] == ["Algebra", "Equations", "Problem Solving"]
    assert outcome.body["visualization"].endswith("/3b82f6/ffffff?text=Mathematics%20Diagram")
    assert set(outcome.body) == {"answer", "visualization", "topic", "units"}


def test_demo_unexpected_failure_is_500(monkeypatch):
    def boom(question):
        raise RuntimeError("boom")
    monkeypatch.setattr(topics, "demo_response", boom)
    outcome = generation.generate_demo("math", _image(), delay=0)
    assert outcome.status == 500
    assert outcome.body == {"error": "Failed to generate answer"}


# ===== Live: validation =====

def test_short_question_rejected_even_with_valid_image():
    outcome = generation.validate_live_request("  hi  ", _image())
    assert outcome.status == 400
    assert outcome.body["success"] is False
    assert outcome.body["code"] == 400


def test_missing_fields_rejected():
    assert generation.validate_live_request(None, _image()).status == 400
    assert generation.validate_live_request("What is this?", None).status == 400


def test_non_image_rejected():
    outcome = generation.validate_live_request("What is this?", _image(mime="application/pdf"))
    assert outcome.status == 400
    assert "Invalid file type" in outcome.body["error"]


def test_image_size_boundary():
    assert generation.validate_live_request("What is this?", _image(data=bytes(TEN_MB))) is None
    outcome = generation.validate_live_request("What is this?", _image(data=bytes(TEN_MB + 1)))
    assert outcome.status == 413


def test_empty_image_rejected():
    assert generation.validate_live_request("What is this?", _image(data=b"")).status == 400


# ===== Live: generation =====

def test_live_success_body():
    model = FakeModel(topic_reply='```json\n{"topic":"Physics","units":["Mechanics","Energy"]}\n```')
    outcome = _live(model)
    assert outcome.status == 200
    body = outcome.body
    assert body["success"] is True
    assert body["answer"] == model.answer
    assert body["topic"] == "Physics"
    assert body["units"] == ["Mechanics", "Energy"]
    assert body["visualization"] == topics.live_visualization_url("Physics")
    assert body["metadata"]["imageSize"] == len(PNG_BYTES)
    assert body["metadata"]["imageType"] == "image/png"
    assert body["metadata"]["questionLength"] == len("What force acts on the block?")
    assert body["metadata"]["timestamp"].endswith("Z")
    assert model.images[0] == {"mime_type": "image/png", "data": PNG_BYTES}
    assert "What force acts on the block?" in model.prompts[0]
    assert "Return ONLY a valid JSON object" in model.prompts[1]


@pytest.mark.parametrize("reply", ["", "Too short", "No answer generated."])
def test_unusable_answer_replaced(reply):
    outcome = _live(FakeModel(answer=reply))
    assert outcome.status == 200
    assert outcome.body["answer"] == generation.UNABLE_TO_ANSWER


def test_units_truncated_to_six():
    reply = '{"topic": "Physics", "units": ["a", "b", "c", "d", "e", "f", "g", "h"]}'
    outcome = _live(FakeModel(topic_reply=reply))
    assert outcome.body["units"] == ["a", "b", "c", "d", "e", "f"]


def test_malformed_topic_reply_uses_question_keywords():
    outcome = _live(FakeModel(topic_reply="Topic: Chemistry"), question="Name this cell organelle")
    assert outcome.status == 200
    assert outcome.body["topic"] == "Biology"
    assert outcome.body["units"] == topics.FALLBACK_UNITS["Biology"]


def test_deeply_nested_topic_reply_uses_fallback():
    reply = '{"topic": "Art", "units": ' + "[" * 100000 + "]" * 100000 + "}"
    outcome = _live(FakeModel(topic_reply=reply), question="Describe the cell")
    assert outcome.status == 200
    assert outcome.body["topic"] == "Biology"
    assert outcome.body["units"] == topics.FALLBACK_UNITS["Biology"]


def test_topic_call_failure_uses_fallback():
    model = FakeModel(topic_error=RuntimeError("connection reset"))
    outcome = _live(model, question="What formula is this?")
    assert outcome.status == 200
    assert outcome.body["topic"] == "Mathematics"


def test_topic_call_timeout_uses_fallback():
    model = FakeModel(topic_delay=0.5)
    outcome = _live(model, question="Who is in this photo?", topic_timeout=0.05)
    assert outcome.status == 200
    assert outcome.body["topic"] == "General Knowledge"
    assert outcome.body["answer"] == model.answer


# Classified answer-generation failures abort before topic extraction.
@pytest.mark.parametrize("error, status", [
    (google_exceptions.NotFound("models/gemini-x is not found"), 503),
    (google_exceptions.ResourceExhausted("Resource has been exhausted"), 429),
    (RuntimeError("You exceeded your current quota"), 429),
    (RuntimeError("[SAFETY] candidate was blocked"), 400),
])
def test_classified_answer_errors_abort(error, status):
    model = FakeModel(answer_error=error)
    outcome = _live(model)
    assert outcome.status == status
    assert outcome.body["success"] is False
    assert outcome.body["code"] == status
    assert len(model.prompts) == 1


def test_answer_timeout_aborts_with_408():
    model = FakeModel(answer_delay=0.5)
    outcome = _live(model, answer_timeout=0.05)
    assert outcome.status == 408
    assert len(model.prompts) == 1


# Any other answer-generation failure degrades to a filler answer and carries on.
def test_other_answer_errors_fall_back_and_continue():
    model = FakeModel(answer_error=gemini.EmptyResponse("No response candidates received from Gemini"))
    outcome = _live(model)
    assert outcome.status == 200
    assert outcome.body["answer"] == generation.ANALYSIS_FAILED
    assert outcome.body["topic"] == "Physics"
    assert len(model.prompts) == 2


def test_model_unavailable_is_503():
    def factory():
        raise gemini.ModelUnavailable("Gemini models are currently unavailable.")
    outcome = generation.generate_live("What is this?", _image(), factory)
    assert outcome.status == 503


# ===== Outer boundary =====

class _Forbidden(Exception):
    status = 403


@pytest.mark.parametrize("error, status", [
    (ConnectionError("connection refused"), 503),
    (requests.ConnectionError("Max retries exceeded with url: /v1beta/models"), 503),
    (google_exceptions.ServiceUnavailable("failed to connect to all addresses"), 503),
    (ValueError("Unexpected token < in JSON at position 0"), 400),
    (RuntimeError("socket timeout"), 408),
    (_Forbidden("not allowed"), 403),
    (KeyError("question"), 500),
])
def test_unexpected_error_classification(error, status):
    outcome = generation.unexpected_error(error)
    assert outcome.status == status
    assert outcome.body["code"] == status
    assert outcome.body["success"] is False
    assert "details" not in outcome.body


def test_unexpected_error_details_in_development():
    try:
        raise RuntimeError("kaboom")
    except RuntimeError as e:
        outcome = generation.unexpected_error(e, debug=True)
    assert outcome.status == 500
    assert outcome.body["details"]["name"] == "RuntimeError"
    assert outcome.body["details"]["message"] == "kaboom"
    assert "kaboom" in outcome.body["details"]["stack"]
