import io
import threading

import pytest

import app as app_module

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class FakeModel:
    """Stands in for gemini.GeminiModel: first call answers, second call returns topic JSON."""

    def __init__(self, answer="Forces cause objects to accelerate in proportion to their mass.",
                 topic_reply='{"topic": "Physics", "units": ["Mechanics", "Energy"]}',
                 answer_error=None, topic_error=None, answer_delay=0, topic_delay=0):
        self.answer = answer
        self.topic_reply = topic_reply
        self.answer_error = answer_error
        self.topic_error = topic_error
        self.answer_delay = answer_delay
        self.topic_delay = topic_delay
        self.prompts = []
        self.images = []

    def generate(self, prompt, image):
        self.prompts.append(prompt)
        self.images.append(image)
        if len(self.prompts) == 1:
            if self.answer_delay:
                threading.Event().wait(self.answer_delay)
            if self.answer_error is not None:
                raise self.answer_error
            return self.answer
        if self.topic_delay:
            threading.Event().wait(self.topic_delay)
        if self.topic_error is not None:
            raise self.topic_error
        return self.topic_reply


@pytest.fixture
def flask_app(tmp_path, monkeypatch):
    app = app_module.app
    for key, value in {
        "TESTING": True,
        "GEMINI_API_KEY": "test-key",
        "DEMO_DELAY_SECONDS": 0,
        "REDIRECT_DELAY_SECONDS": 0,
        "RESULT_DIR": str(tmp_path),
        "ANSWER_API_BASE_URL": "",
        "APP_ENV": "test",
    }.items():
        monkeypatch.setitem(app.config, key, value)
    return app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def use_model(monkeypatch):
    """Install a FakeModel as the live endpoint's model and return it."""
    def _install(model=None):
        model = model or FakeModel()
        monkeypatch.setattr(app_module, "get_model", lambda: model)
        return model
    return _install


def image_field(data=PNG_BYTES, filename="diagram.png", mime="image/png"):
    return (io.BytesIO(data), filename, mime)
