# app.py
import os
import io
import logging
import tempfile

from dotenv import load_dotenv
load_dotenv(override=False)  # read .env if present, but don't clobber real env

from flask import (
    Flask, request, redirect, url_for, render_template_string,
    session, send_file, flash, jsonify
)
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

import gemini
import generation
import rendering
from client import (
    AnswerClient, ResultStore, LocalTransport, HttpTransport, SubmissionError,
    DEMO_ENDPOINT, LIVE_ENDPOINT, RESULT_TTL_SECONDS,
)


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger("smartanswer")

# ===== Flask app =====
app = Flask(__name__)
app.secret_key = os.getenv("FLASK_SECRET_KEY", os.urandom(16))
app.config.update(
    # Leaves room above the 10MB image limit so oversize images get a proper 413 body.
    MAX_CONTENT_LENGTH=16 * 1024 * 1024,
    MAX_IMAGE_BYTES=generation.MAX_IMAGE_BYTES,
    GEMINI_API_KEY=os.getenv("GEMINI_API_KEY", ""),
    GEMINI_MODEL=os.getenv("GEMINI_MODEL", gemini.DEFAULT_MODEL),
    GEMINI_FALLBACK_MODEL=os.getenv("GEMINI_FALLBACK_MODEL", gemini.DEFAULT_FALLBACK_MODEL),
    DEMO_MODE_DEFAULT=env_bool("DEMO_MODE_DEFAULT", True),
    DEMO_DELAY_SECONDS=env_float("DEMO_DELAY_SECONDS", 2.0),
    ANSWER_TIMEOUT_SECONDS=env_float("ANSWER_TIMEOUT_SECONDS", generation.ANSWER_TIMEOUT_SECONDS),
    TOPIC_TIMEOUT_SECONDS=env_float("TOPIC_TIMEOUT_SECONDS", generation.TOPIC_TIMEOUT_SECONDS),
    REDIRECT_DELAY_SECONDS=env_int("REDIRECT_DELAY_SECONDS", 1),
    ANSWER_API_BASE_URL=os.getenv("ANSWER_API_BASE_URL", ""),
    APP_ENV=os.getenv("APP_ENV", "production"),
    RESULT_DIR=os.path.join(tempfile.gettempdir(), "smartanswer-results"),
    RESULT_TTL_SECONDS=env_int("RESULT_TTL_SECONDS", RESULT_TTL_SECONDS),
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
)
os.makedirs(app.config["RESULT_DIR"], exist_ok=True)

CORS(app, resources={r"/api/*": {
    "origins": "*",
    "methods": ["POST", "OPTIONS"],
    "allow_headers": ["Content-Type"],
    "max_age": 86400,
    "send_wildcard": True,
}})

# ====== Templates ======
HEAD = """
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>SmartAnswer</title>
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  {% if refresh_to %}<meta http-equiv="refresh" content="{{ refresh_delay }};url={{ refresh_to }}" />{% endif %}
  <style>
    :root {
      --bg: #f1f5f9;
      --surface: #ffffff;
      --border: #e2e8f0;
      --text: #0f172a;
      --muted: #64748b;
      --accent: #059669;
      --accent-soft: #d1fae5;
      --blue: #2563eb;
      --err: #dc2626;
      --radius: 14px;
      --shadow: 0 1px 2px rgba(15,23,42,.06), 0 8px 24px rgba(15,23,42,.08);
      --font-sans: Inter, ui-sans-serif, system-ui, -apple-system, Segoe UI, Roboto, Arial;
    }
    @media (prefers-color-scheme: dark) {
      :root { --bg: #020617; --surface: #0f172a; --border: #1e293b; --text: #e2e8f0; --muted: #94a3b8; --accent-soft: #064e3b; }
    }
    * { box-sizing: border-box; }
    body { margin: 0; background: var(--bg); color: var(--text); font: 500 15px/1.6 var(--font-sans); }
    a { color: var(--accent); text-decoration: none; }
    a:hover { text-decoration: underline; }
    .container { max-width: 880px; margin: 0 auto; padding: 40px 20px; }
    .container.wide { max-width: 1200px; }
    header.site { text-align: center; margin-bottom: 32px; }
    header.site h1 { font-size: 40px; margin: 0 0 8px 0; letter-spacing: -.5px; }
    header.site h1 span { color: var(--accent); }
    .subtle { color: var(--muted); }
    .card { background: var(--surface); border: 1px solid var(--border); border-radius: var(--radius); padding: 24px; box-shadow: var(--shadow); }
    .stack > * + * { margin-top: 16px; }
    label { font-weight: 600; display: block; margin-bottom: 6px; }
    textarea, input[type=file] { width: 100%; font: inherit; color: inherit; background: var(--bg); border: 1px solid var(--border); border-radius: 10px; padding: 10px 12px; }
    textarea { min-height: 120px; resize: vertical; }
    .btn { display: inline-flex; align-items: center; gap: 8px; border: 0; border-radius: 10px; padding: 10px 16px; font: 600 14px/1 var(--font-sans); background: var(--accent); color: #fff; cursor: pointer; }
    .btn.ghost { background: transparent; color: var(--text); border: 1px solid var(--border); }
    .btn[disabled] { opacity: .6; cursor: not-allowed; }
    .row { display: flex; flex-wrap: wrap; gap: 10px; align-items: center; }
    .alerts { margin-bottom: 16px; }
    .alert { border: 1px solid var(--border); border-radius: 10px; padding: 10px 14px; margin-bottom: 8px; }
    .alert.ok { border-color: var(--accent); background: var(--accent-soft); }
    .alert.err { border-color: var(--err); background: rgba(220,38,38,.1); }
    .progress { height: 8px; background: var(--border); border-radius: 999px; overflow: hidden; }
    .progress > div { height: 100%; background: var(--accent); width: 0; transition: width .4s ease; }
    .preview { max-height: 220px; border-radius: 10px; border: 1px solid var(--border); }
    .badge { display: inline-block; padding: 3px 10px; border-radius: 999px; font-size: 12px; border: 1px solid var(--border); background: var(--bg); }
    .hero { background: linear-gradient(90deg, #059669, #0d9488); color: #fff; border-radius: var(--radius) var(--radius) 0 0; padding: 20px 24px; }
    .hero h2 { margin: 0 0 8px 0; font-size: 26px; }
    .hero .badge { background: rgba(255,255,255,.2); border-color: transparent; color: #fff; }
    .tabs { display: flex; flex-wrap: wrap; gap: 6px; justify-content: space-between; align-items: center; padding: 12px 24px; border-bottom: 1px solid var(--border); }
    .tabs a.active { background: var(--accent); color: #fff; border-radius: 8px; padding: 4px 10px; }
    .tabs a { padding: 4px 10px; }
    .panels { padding: 24px; display: grid; gap: 20px; }
    .panels.two { grid-template-columns: repeat(2, minmax(0, 1fr)); }
    @media (max-width: 900px) { .panels.two { grid-template-columns: 1fr; } }
    .answer h4 { font-size: 18px; margin: 16px 0 4px 0; padding-bottom: 6px; border-bottom: 1px solid var(--border); }
    .answer p { margin: 6px 0; }
    .answer .bullet { margin-left: 16px; }
    .answer .bullet::before { content: "•"; color: var(--blue); margin-right: 8px; }
    .answer strong { background: rgba(250,204,21,.25); padding: 0 3px; border-radius: 4px; }
    .unit { padding: 10px 12px; border-radius: 10px; background: var(--bg); margin-bottom: 8px; }
    .tip { padding: 14px; border-radius: 10px; border: 1px solid var(--border); margin-bottom: 12px; }
    .tip h4 { margin: 0 0 6px 0; }
    .viz { width: 100%; max-height: 400px; object-fit: contain; border-radius: 10px; border: 1px solid var(--border); }
    footer.footer { color: var(--muted); margin-top: 28px; text-align: center; font-size: 13px; }
  </style>
</head>
<body>
  <main class="container {{ 'wide' if expanded else '' }}" role="main">
    {% with messages = get_flashed_messages(with_categories=true) %}
      {% if messages %}
        <div class="alerts" role="status" aria-live="polite">
          {% for category, message in messages %}
            <div class="alert {{ 'ok' if category=='success' else 'err' }}">{{ message }}</div>
          {% endfor %}
        </div>
      {% endif %}
    {% endwith %}
"""

FOOT = """
    <footer class="footer">
      <span>Built with Flask and Gemini.</span>
      {% if not live_ready %}<span class="badge" title="GEMINI_API_KEY is not set">Demo only</span>{% endif %}
    </footer>
  </main>
</body>
</html>
"""

PAGE = HEAD + """
    <header class="site">
      <h1>Smart<span>Answer</span></h1>
      <p class="subtle">Generate concise answers with visualizations from your questions and topic images</p>
    </header>

    <form id="askForm" class="card stack" method="POST" action="{{ url_for('ask') }}" enctype="multipart/form-data">
      <div>
        <label for="question">Your Question</label>
        <textarea id="question" name="question" placeholder="Enter your question here...">{{ question }}</textarea>
      </div>

      <div>
        <label for="image">Upload Image (with units and topic name)</label>
        <input id="image" type="file" name="image" accept="image/*" />
        <p class="subtle">Images up to {{ max_mb }}MB.</p>
        <img id="preview" class="preview" alt="Preview" hidden />
      </div>

      <div id="progressBox" class="stack" hidden>
        <div class="row" style="justify-content: space-between;">
          <span>Generating answer and visualization</span>
          <span id="progressLabel">0%</span>
        </div>
        <div class="progress"><div id="progressBar"></div></div>
      </div>

      <div class="row">
        <input type="checkbox" id="demo_mode" name="demo_mode" {% if demo_mode %}checked{% endif %} />
        <label for="demo_mode" style="margin: 0;">Demo Mode (works without API keys)</label>
      </div>

      <button class="btn" type="submit">Generate Answer</button>
    </form>
    <script>
      (function () {
        var form = document.getElementById("askForm");
        var input = document.getElementById("image");
        var preview = document.getElementById("preview");
        input.addEventListener("change", function () {
          var file = input.files && input.files[0];
          if (!file) { preview.hidden = true; return; }
          var reader = new FileReader();
          reader.onloadend = function () { preview.src = reader.result; preview.hidden = false; };
          reader.readAsDataURL(file);
        });
        form.addEventListener("submit", function () {
          var box = document.getElementById("progressBox");
          var bar = document.getElementById("progressBar");
          var label = document.getElementById("progressLabel");
          var value = 0;
          box.hidden = false;
          var timer = setInterval(function () {
            if (value >= 95) { clearInterval(timer); return; }
            value = Math.min(95, value + Math.random() * 10 + 5);
            bar.style.width = value + "%";
            label.textContent = Math.round(value) + "%";
          }, 500);
          form.querySelector("button[type=submit]").disabled = true;
        });
      })();
    </script>
""" + FOOT

REDIRECT_PAGE = HEAD + """
    <div class="card stack">
      <h2>Answer ready: {{ topic }}</h2>
      <div class="row" style="justify-content: space-between;">
        <span>Generating answer and visualization</span><span>100%</span>
      </div>
      <div class="progress"><div style="width: 100%;"></div></div>
      <p class="subtle">Taking you to your results&hellip; <a href="{{ refresh_to }}">Continue</a></p>
    </div>
""" + FOOT

RESULTS_PAGE = HEAD + """
    {% macro panel_body(pid) %}
      {% if pid == 'answer' %}
        <div class="answer">
          {% for paragraph in paragraphs %}
            <div>
            {% for line in paragraph %}
              {% if line.kind == 'heading' %}
                <h4>{{ line.text }}</h4>
              {% elif line.kind == 'bullet' %}
                <p class="bullet">{{ line.text }}</p>
              {% elif line.kind == 'emphasis' %}
                <p>{% for kind, text in line.segments %}{% if kind == 'strong' %}<strong>{{ text }}</strong>{% elif kind == 'em' %}<em>{{ text }}</em>{% else %}{{ text }}{% endif %}{% endfor %}</p>
              {% else %}
                <p>{{ line.text }}</p>
              {% endif %}
            {% endfor %}
            </div>
          {% endfor %}
        </div>
        <div class="row subtle">
          <span class="badge">Comprehensive Answer</span>
          <span class="badge">Based on {{ result.topic }}</span>
          <span class="badge">{{ word_count }} words</span>
        </div>
      {% elif pid == 'visualization' %}
        <img class="viz" src="{{ result.visualization }}" alt="Visualization for {{ result.topic }}" />
        <p class="subtle" style="text-align: center;">Visual representation of {{ result.topic }}</p>
      {% elif pid == 'summary' %}
        {% for unit in result.units %}<div class="unit">{{ unit }}</div>{% endfor %}
        <div class="row" style="justify-content: space-between;">
          <span>Comprehension Level</span><span>{{ level }}%</span>
        </div>
        <div class="progress"><div style="width: {{ level }}%;"></div></div>
      {% elif pid == 'insights' %}
        {% for tip in insights %}
          <div class="tip">
            <h4>{{ tip.title }}</h4>
            {% if tip.units %}
              <div class="row">{% for unit in tip.units %}<span class="badge">{{ unit }}</span>{% endfor %}</div>
            {% else %}
              <p class="subtle" style="margin: 0;">{{ tip.text }}</p>
            {% endif %}
          </div>
        {% endfor %}
      {% endif %}
    {% endmacro %}

    <div class="row" style="margin-bottom: 16px;">
      <a class="btn ghost" href="{{ url_for('index') }}">&larr; Back to Form</a>
    </div>

    <section class="card" style="padding: 0;">
      <div class="hero">
        <div class="row" style="justify-content: space-between;">
          <h2>{{ result.topic }}</h2>
          <a style="color: #fff;" href="{{ url_for('results', panel=panel, view=view, expanded=0 if expanded else 1) }}">{{ 'Collapse' if expanded else 'Expand' }}</a>
        </div>
        <div class="row">{% for unit in result.units %}<span class="badge">{{ unit }}</span>{% endfor %}</div>
        {% if result.originalQuestion %}<p style="margin: 10px 0 0 0; opacity: .9;">Q: {{ result.originalQuestion }}</p>{% endif %}
      </div>

      <nav class="tabs" aria-label="Panels">
        <a href="{{ url_for('results', panel=panel, view='single' if show_all else 'all', expanded=1 if expanded else 0) }}">{{ 'Single View' if show_all else 'All Panels' }}</a>
        {% if not show_all %}
          <div class="row">
            <a href="{{ url_for('results', panel=prev_panel, expanded=1 if expanded else 0) }}" aria-label="Previous panel">&lsaquo;</a>
            {% for pid, title in panels %}
              <a class="{{ 'active' if pid == panel else '' }}" href="{{ url_for('results', panel=pid, expanded=1 if expanded else 0) }}">{{ title }}</a>
            {% endfor %}
            <a href="{{ url_for('results', panel=next_panel, expanded=1 if expanded else 0) }}" aria-label="Next panel">&rsaquo;</a>
          </div>
        {% endif %}
      </nav>

      {% if show_all %}
        <div class="panels {{ 'two' if expanded else '' }}">
          {% for pid, title in panels %}
            <div class="card stack" id="panel-{{ pid }}"><h3 style="margin: 0;">{{ title }}</h3>{{ panel_body(pid) }}</div>
          {% endfor %}
        </div>
      {% else %}
        <div class="panels">
          <div class="stack" id="panel-{{ panel }}">{{ panel_body(panel) }}</div>
        </div>
      {% endif %}
    </section>

    <div class="row" style="margin-top: 16px; justify-content: space-between;">
      <div class="row">
        <a class="btn" href="{{ url_for('results_download') }}">Download</a>
        <a class="btn ghost" href="{{ url_for('index') }}">Edit Prompt</a>
      </div>
      <form class="row" method="POST" action="{{ url_for('results_feedback') }}">
        <span class="subtle">Was this helpful?</span>
        <button class="btn ghost" type="submit" name="helpful" value="yes">Yes</button>
        <button class="btn ghost" type="submit" name="helpful" value="no">No</button>
      </form>
    </div>
""" + FOOT


# ===== Helpers =====

def get_model():
    """Gemini model for the live endpoint; genai is configured on first use."""
    return gemini.build_model(
        api_key=app.config["GEMINI_API_KEY"],
        model_name=app.config["GEMINI_MODEL"],
        fallback_name=app.config["GEMINI_FALLBACK_MODEL"],
    )


def _read_upload(field="image"):
    file = request.files.get(field)
    if file is None or not file.filename:
        return None
    return generation.ImageUpload(filename=file.filename, mime_type=file.mimetype or "", data=file.read())


def _form_is_well_formed():
    if request.mimetype == "multipart/form-data":
        return bool(request.mimetype_params.get("boundary"))
    return request.mimetype == "application/x-www-form-urlencoded"


def _debug_errors():
    return app.config["APP_ENV"] == "development"


def _missing_key_outcome():
    return generation.failure(
        500, "Gemini API key is not configured. Please set GEMINI_API_KEY in your environment variables."
    )


def run_demo(question, image):
    return generation.generate_demo(question, image, delay=app.config["DEMO_DELAY_SECONDS"])


def run_live(question, image):
    try:
        if not app.config["GEMINI_API_KEY"]:
            return _missing_key_outcome()
        return generation.generate_live(
            question, image, get_model,
            answer_timeout=app.config["ANSWER_TIMEOUT_SECONDS"],
            topic_timeout=app.config["TOPIC_TIMEOUT_SECONDS"],
            max_bytes=app.config["MAX_IMAGE_BYTES"],
        )
    except Exception as e:
        logger.exception("Unexpected error in live generation")
        return generation.unexpected_error(e, debug=_debug_errors())


def _answer_client():
    base_url = app.config["ANSWER_API_BASE_URL"]
    if base_url:
        transport = HttpTransport(base_url)
    else:
        transport = LocalTransport({DEMO_ENDPOINT: run_demo, LIVE_ENDPOINT: run_live})
    return AnswerClient(transport, _result_store(), max_bytes=app.config["MAX_IMAGE_BYTES"])


def _result_store():
    return ResultStore(session, app.config["RESULT_DIR"], max_age=app.config["RESULT_TTL_SECONDS"])


def _load_result():
    """(result, redirect_response): exactly one is None."""
    try:
        result = _result_store().load()
    except ValueError as e:
        logger.error("Error parsing result data: %s", e)
        flash("Failed to load results. Please try again.", "error")
        return None, redirect(url_for("index"))
    if not result:
        flash("No results found. Please submit a question first.", "error")
        return None, redirect(url_for("index"))
    return result, None


def _page_context(**extra):
    ctx = {"live_ready": bool(app.config["GEMINI_API_KEY"]), "expanded": False, "refresh_to": None}
    ctx.update(extra)
    return ctx


# ===== Pages =====

@app.route("/", methods=["GET"])
def index():
    return render_template_string(
        PAGE,
        question=session.pop("last_question", ""),
        demo_mode=session.get("demo_mode", app.config["DEMO_MODE_DEFAULT"]),
        max_mb=app.config["MAX_IMAGE_BYTES"] // (1024 * 1024),
        **_page_context()
    )


@app.route("/ask", methods=["POST"])
def ask():
    question = request.form.get("question", "")
    demo_mode = "demo_mode" in request.form
    session["demo_mode"] = demo_mode

    try:
        result = _answer_client().submit(question, _read_upload(), demo_mode=demo_mode)
    except SubmissionError as e:
        flash(f"{e.title}: {e.description}", "error")
        session["last_question"] = question
        return redirect(url_for("index"))

    flash("Answer generated successfully", "success")
    return render_template_string(
        REDIRECT_PAGE,
        topic=result["topic"],
        **_page_context(refresh_to=url_for("results"), refresh_delay=app.config["REDIRECT_DELAY_SECONDS"])
    )


@app.route("/results", methods=["GET"])
def results():
    result, bounce = _load_result()
    if bounce is not None:
        return bounce

    panel = rendering.resolve_panel(request.args.get("panel", ""))
    prev_panel, next_panel = rendering.neighbour_panels(panel)
    show_all = request.args.get("view") == "all"
    units = result.get("units") or []
    return render_template_string(
        RESULTS_PAGE,
        result=result,
        paragraphs=rendering.format_answer(result.get("answer", "")),
        word_count=rendering.word_count(result.get("answer", "")),
        insights=rendering.insights(result.get("topic", ""), units),
        level=rendering.comprehension_level(),
        panels=rendering.PANELS,
        panel=panel,
        prev_panel=prev_panel,
        next_panel=next_panel,
        show_all=show_all,
        view="all" if show_all else "single",
        **_page_context(expanded=request.args.get("expanded") == "1")
    )


@app.route("/results/download", methods=["GET"])
def results_download():
    result, bounce = _load_result()
    if bounce is not None:
        return bounce
    png = rendering.render_result_card(result)
    return send_file(
        io.BytesIO(png), mimetype="image/png", as_attachment=True,
        download_name=rendering.download_filename(result.get("topic") or "answer"),
    )


@app.route("/results/feedback", methods=["POST"])
def results_feedback():
    helpful = request.form.get("helpful") == "yes"
    logger.info("Result feedback: helpful=%s", helpful)
    flash("Thanks for your feedback!", "success")
    return redirect(url_for("results"))


# ===== API =====

@app.route("/api/generate-demo", methods=["POST"])
def api_generate_demo():
    outcome = run_demo(request.form.get("question"), _read_upload())
    return jsonify(outcome.body), outcome.status


@app.route("/api/generate", methods=["POST"])
def api_generate():
    if not app.config["GEMINI_API_KEY"]:
        outcome = _missing_key_outcome()
    elif not _form_is_well_formed():
        outcome = generation.failure(400, "Invalid form data format")
    else:
        try:
            question, image = request.form.get("question"), _read_upload()
        except HTTPException:
            raise
        except Exception as e:
            logger.error("Form data parsing error: %s", e)
            outcome = generation.failure(400, "Invalid form data format")
        else:
            outcome = run_live(question, image)
    return jsonify(outcome.body), outcome.status


@app.errorhandler(413)
def request_too_large(e):
    limit_mb = app.config["MAX_IMAGE_BYTES"] // (1024 * 1024)
    if request.path.startswith("/api/"):
        outcome = generation.failure(413, f"Image file too large. Maximum size is {limit_mb}MB.")
        return jsonify(outcome.body), 413
    flash(f"File too large: Please select an image smaller than {limit_mb}MB", "error")
    return redirect(url_for("index"))


# ===== Main =====
if __name__ == "__main__":
    if not app.config["GEMINI_API_KEY"]:
        logger.warning("GEMINI_API_KEY not set; only demo mode will work.")
    app.run(host="0.0.0.0", port=env_int("PORT", 8080), debug=_debug_errors())
