import io
import re
import random
import textwrap
from dataclasses import dataclass, field
from typing import List, Tuple

import topics

PANELS = [
    ("answer", "Answer"),
    ("visualization", "Visual Explanation"),
    ("summary", "Key Points"),
    ("insights", "Insights"),
]
PANEL_IDS = [pid for pid, _ in PANELS]

_BULLET_RE = re.compile(r"^[-•*]\s|^\d+\.\s")
_BULLET_PREFIX_RE = re.compile(r"^(?:[-•*]|\d+\.)\s*")
_HEADING_PREFIX_RE = re.compile(r"^#+\s*")
_EMPHASIS_RE = re.compile(r"(\*\*.*?\*\*|\*.*?\*)")


@dataclass
class Line:
    kind: str  # heading | bullet | emphasis | text
    text: str
    segments: List[Tuple[str, str]] = field(default_factory=list)


def is_heading(line: str) -> bool:
    return line.startswith("#") or (line == line.upper() and 5 < len(line) < 50)


def emphasis_segments(line: str) -> List[Tuple[str, str]]:
    """Split on *em* / **strong** spans. Unmatched asterisks stay as plain text."""
    segments = []
    for part in _EMPHASIS_RE.split(line):
        if not part:
            continue
        if len(part) > 4 and part.startswith("**") and part.endswith("**"):
            segments.append(("strong", part[2:-2]))
        elif len(part) > 2 and part.startswith("*") and part.endswith("*"):
            segments.append(("em", part[1:-1]))
        else:
            segments.append(("plain", part))
    return segments


def classify_line(line: str):
    if not line.strip():
        return None
    if is_heading(line):
        return Line("heading", _HEADING_PREFIX_RE.sub("", line, count=1))
    if _BULLET_RE.match(line):
        return Line("bullet", _BULLET_PREFIX_RE.sub("", line, count=1))
    if "*" in line:
        return Line("emphasis", line, emphasis_segments(line))
    return Line("text", line)


def format_answer(answer: str) -> List[List[Line]]:
    """Paragraphs (split on blank lines) of classified, non-blank lines."""
    paragraphs = []
    for paragraph in (answer or "").split("\n\n"):
        lines = [classify_line(line) for line in paragraph.split("\n")]
        paragraphs.append([ln for ln in lines if ln is not None])
    return paragraphs


def word_count(answer: str) -> int:
    return len((answer or "").split(" "))


def comprehension_level() -> int:
    # Decorative; not derived from anything.
    return random.randint(70, 100)


def insights(topic: str, units: List[str]):
    return [
        {"title": "Quick Tip",
         "text": f"Understanding {topic} requires grasping the relationship between its core concepts."},
        {"title": "Related Topics", "units": list(units[:3])},
        {"title": "Study Focus",
         "text": f"Focus on the fundamentals before moving to advanced applications in {topic}."},
    ]


def resolve_panel(panel_id: str) -> str:
    return panel_id if panel_id in PANEL_IDS else PANEL_IDS[0]


def neighbour_panels(panel_id: str):
    """(previous, next) panel ids, wrapping around."""
    i = PANEL_IDS.index(resolve_panel(panel_id))
    n = len(PANEL_IDS)
    return PANEL_IDS[(i - 1) % n], PANEL_IDS[(i + 1) % n]


def download_filename(topic: str) -> str:
    slug = re.sub(r"\s+", "-", topic).lower()
    return f"{slug}-answer.png"


def render_result_card(result: dict) -> bytes:
    """800x600 PNG: topic, wrapped answer, units."""
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    topic = result.get("topic", "")
    units = result.get("units") or []
    color = "#" + topics.TOPIC_COLORS.get(topic, topics.LIVE_COLOR)

    fig = plt.figure(figsize=(8, 6), dpi=100)
    fig.patch.set_facecolor("#f8fafc")
    ax = fig.add_axes([0, 0, 1, 1])
    ax.set_axis_off()
    ax.set_xlim(0, 800)
    ax.set_ylim(600, 0)

    ax.add_patch(plt.Rectangle((0, 0), 800, 12, color=color))
    ax.text(40, 60, topic, fontsize=18, fontweight="bold", color="#0f172a", va="baseline", parse_math=False)

    y = 100
    for line in textwrap.wrap(result.get("answer", ""), width=88):
        if y > 500:
            ax.text(40, y, "…", fontsize=11, color="#334155", va="baseline", parse_math=False)
            break
        ax.text(40, y, line, fontsize=11, color="#334155", va="baseline", parse_math=False)
        y += 22

    if units:
        ax.text(40, 560, "Units: " + " · ".join(units), fontsize=11, color=color, va="baseline", parse_math=False)

    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=100, facecolor=fig.get_facecolor())
    plt.close(fig)
    return buf.getvalue()
