"""
Subject detection for questions, plus the canned material used by demo mode
and by the live endpoint when Gemini's topic JSON can't be used.
"""
import re
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import quote

logger = logging.getLogger(__name__)

GENERAL_TOPIC = "General Knowledge"
MAX_UNITS = 6

# Ordered: the first topic with a matching keyword wins.
TOPIC_KEYWORDS = [
    ("Mathematics", ("math", "algebra", "equation", "formula")),
    ("Physics", ("physics", "force", "energy")),
    ("Chemistry", ("chemistry", "chemical", "molecule", "reaction", "element")),
    ("Biology", ("biology", "cell", "organism")),
]

DEMO_UNITS = {
    "Mathematics": ["Algebra", "Equations", "Problem Solving"],
    "Physics": ["Mechanics", "Energy", "Forces"],
    "Chemistry": ["Elements", "Reactions", "Compounds"],
    "Biology": ["Cell Biology", "Organisms", "Life Processes"],
    GENERAL_TOPIC: ["Fundamentals", "Concepts", "Applications"],
}

DEMO_ANSWERS = {
    "Mathematics": (
        "In mathematics, this concept involves understanding the relationship between "
        "variables and constants. The key is to identify the pattern and apply the "
        "appropriate mathematical principles to solve the problem systematically."
    ),
    "Physics": (
        "In physics, this phenomenon can be explained through the fundamental laws of "
        "motion and energy conservation. Understanding the underlying principles helps us "
        "predict and analyze the behavior of physical systems."
    ),
    "Chemistry": (
        "In chemistry, this process involves the interaction between different elements or "
        "compounds. The reaction follows specific patterns based on the properties of the "
        "substances involved and the conditions under which they interact."
    ),
    "Biology": (
        "In biology, this concept relates to the fundamental processes of life. Living "
        "organisms have evolved complex systems to maintain homeostasis and respond to their "
        "environment through various biological mechanisms."
    ),
    GENERAL_TOPIC: (
        "This is an interesting question about General Knowledge. The answer involves "
        "understanding the core principles and applying logical reasoning to reach a "
        "comprehensive solution. Key factors to consider include the context, relevant "
        "theories, and practical applications."
    ),
}

FALLBACK_UNITS = {
    "Mathematics": ["Algebra", "Geometry", "Calculus", "Statistics"],
    "Physics": ["Mechanics", "Thermodynamics", "Electromagnetism", "Modern Physics"],
    "Chemistry": ["Atomic Structure", "Chemical Bonds", "Reactions", "Organic Chemistry"],
    "Biology": ["Cell Biology", "Genetics", "Ecology", "Evolution"],
    GENERAL_TOPIC: ["Fundamentals", "Key Concepts", "Applications", "Practice"],
}

TOPIC_COLORS = {
    "Mathematics": "3b82f6",
    "Physics": "ef4444",
    "Chemistry": "10b981",
    "Biology": "f59e0b",
    GENERAL_TOPIC: "8b5cf6",
}
LIVE_COLOR = "10b981"
PLACEHOLDER_URL = "https://via.placeholder.com/600x400/{color}/ffffff?text={text}"

# encodeURIComponent leaves these unescaped
_URI_SAFE = "!~*'()"

_FENCE_RE = re.compile(r"```(?:json)?\n?")
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def classify_question(question: str) -> str:
    """Return the first topic whose keywords appear in the question (case-insensitive)."""
    lowered = (question or "").lower()
    for topic, keywords in TOPIC_KEYWORDS:
        if any(word in lowered for word in keywords):
            return topic
    return GENERAL_TOPIC


def demo_response(question: str):
    """(topic, units, answer) for demo mode."""
    topic = classify_question(question)
    return topic, list(DEMO_UNITS[topic]), DEMO_ANSWERS[topic]


def demo_visualization_url(topic: str) -> str:
    color = TOPIC_COLORS.get(topic, TOPIC_COLORS[GENERAL_TOPIC])
    return PLACEHOLDER_URL.format(color=color, text=quote(f"{topic} Diagram", safe=_URI_SAFE))


def live_visualization_url(topic: str) -> str:
    text = quote(re.sub(r"\s+", "+", topic), safe=_URI_SAFE)
    return PLACEHOLDER_URL.format(color=LIVE_COLOR, text=text)


# ===== Topic/units extraction from model output =====

@dataclass
class TopicInfo:
    topic: str
    units: List[str] = field(default_factory=list)


@dataclass
class ParsedTopics(TopicInfo):
    """Topic and units accepted from the model's JSON."""


@dataclass
class FallbackTopics(TopicInfo):
    """Topic and units derived from the question's keywords."""
    reason: str = ""


class TopicParseError(ValueError):
    pass


def fallback_topics(question: str, reason: str = "") -> FallbackTopics:
    topic = classify_question(question)
    return FallbackTopics(topic=topic, units=list(FALLBACK_UNITS[topic]), reason=reason)


def parse_topic_json(raw: str) -> ParsedTopics:
    """
    Parse Gemini's `{"topic": ..., "units": [...]}` reply.
    Tolerates markdown code fences and chatter around the object.
    Raises TopicParseError (or json.JSONDecodeError) when the shape is wrong.
    """
    text = (raw or "").strip()
    if not text:
        raise TopicParseError("No topic response received")

    text = _FENCE_RE.sub("", text)
    m = _OBJECT_RE.search(text)
    if m:
        text = m.group(0)

    try:
        data = json.loads(text)
    except RecursionError:
        raise TopicParseError("Topic JSON is nested too deeply") from None
    if not isinstance(data, dict):
        raise TopicParseError("Invalid topic object structure")

    topic = data.get("topic")
    if not isinstance(topic, str) or not topic.strip():
        raise TopicParseError("Missing or invalid topic field")

    units = data.get("units")
    if not isinstance(units, list) or not units:
        raise TopicParseError("Missing or invalid units array")

    return ParsedTopics(topic=topic, units=[str(u) for u in units][:MAX_UNITS])


def extract_topics(raw: Optional[str], question: str) -> TopicInfo:
    """Parsed topics when the model reply is usable, keyword fallback otherwise."""
    try:
        return parse_topic_json(raw)
    except ValueError as e:
        logger.info("Topic parsing error: %s", e)
        return fallback_topics(question, reason=str(e))
