from google.api_core import exceptions as google_exceptions

from conftest import FakeModel, image_field


def _ask(client, question="How do I solve this equation?", image=True, demo_mode=True, **kwargs):
    data = {"question": question}
    if image:
        data["image"] = image_field()
    if demo_mode:
        data["demo_mode"] = "on"
    return client.post("/ask", data=data, content_type="multipart/form-data", **kwargs)


def test_index_defaults_to_demo_mode(client):
    resp = client.get("/")
    assert resp.status_code == 200
    html = resp.get_data(as_text=True)
    assert 'name="demo_mode" checked' in html
    assert 'accept="image/*"' in html


def test_blank_question_is_rejected(client):
    resp = _ask(client, question="   ", follow_redirects=True)
    assert resp.request.path == "/"
    assert "Question required" in resp.get_data(as_text=True)


def test_missing_image_is_rejected(client):
    resp = _ask(client, image=False, follow_redirects=True)
    assert "Image required" in resp.get_data(as_text=True)


def test_demo_submission_then_results(client):
    resp = _ask(client)
    assert resp.status_code == 200
    html = resp.get_data(as_text=True)
    assert 'http-equiv="refresh"' in html
    assert "/results" in html
    assert "100%" in html

    resp = client.get("/results")
    assert resp.status_code == 200
    html = resp.get_data(as_text=True)
    assert "Mathematics" in html
    assert "In mathematics, this concept involves" in html
    assert "How do I solve this equation?" in html
    assert "Comprehension Level" not in html  # only the answer panel is shown


def test_results_panels(client):
    _ask(client, question="What does this cell diagram show?")

    html = client.get("/results?panel=insights").get_data(as_text=True)
    assert "Quick Tip" in html
    assert "Focus on the fundamentals before moving to advanced applications in Biology." in html

    html = client.get("/results?panel=summary").get_data(as_text=True)
    assert "Comprehension Level" in html
    assert "Life Processes" in html

    html = client.get("/results?view=all").get_data(as_text=True)
    for title in ("Answer", "Visual Explanation", "Key Points", "Insights"):
        assert title in html
    assert 'id="panel-visualization"' in html
    assert 'id="panel-insights"' in html


def test_results_without_submission_redirects(client):
    resp = client.get("/results", follow_redirects=True)
    assert resp.request.path == "/"
    assert "No results found" in resp.get_data(as_text=True)


def test_download_result_card(client):
    _ask(client, question="What is kinetic energy?")
    resp = client.get("/results/download")
    assert resp.status_code == 200
    assert resp.mimetype == "image/png"
    assert resp.data.startswith(b"\x89PNG")
    assert "physics-answer.png" in resp.headers["Content-Disposition"]


def test_feedback(client):
    _ask(client)
    resp = client.post("/results/feedback", data={"helpful": "yes"}, follow_redirects=True)
    assert resp.status_code == 200
    assert "Thanks for your feedback!" in resp.get_data(as_text=True)


def test_live_submission_error_is_flashed(client, use_model):
    use_model(FakeModel(answer_error=google_exceptions.ResourceExhausted("Quota exceeded")))
    resp = _ask(client, demo_mode=False, follow_redirects=True)
    assert resp.request.path == "/"
    html = resp.get_data(as_text=True)
    assert "Rate limit exceeded. Please try again in a few moments." in html
    # the question is kept for another try
    assert "How do I solve this equation?" in html


def test_live_submission_success(client, use_model):
    use_model(FakeModel(topic_reply='{"topic": "Geometry", "units": ["Angles", "Triangles", "Circles"]}'))
    _ask(client, demo_mode=False)
    html = client.get("/results?panel=summary").get_data(as_text=True)
    assert "Geometry" in html
    assert "Triangles" in html
