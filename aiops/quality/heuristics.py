"""
Heuristic quality scorers.

One pure function per dimension, each returning a score clamped to
[0, 100]. They are deterministic and safe on any input, including the
empty string.
"""

import re

from aiops.metrics.stats import clamp
from aiops.quality.criteria import QualityProfile

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_QUESTION_SPLIT = re.compile(r"\?")

CONNECTIVES = (
    "therefore",
    "furthermore",
    "however",
    "for example",
    "consequently",
    "finally",
    "in addition",
)

PLACEHOLDER_PATTERNS = (
    re.compile(r"lorem ipsum", re.IGNORECASE),
    re.compile(r"placeholder", re.IGNORECASE),
    re.compile(r"\[[^\]]*\]"),
    re.compile(r"xxx", re.IGNORECASE),
    re.compile(r"\bexample example\b", re.IGNORECASE),
)

CONTRADICTION_MARKERS = ("but", "however", "nevertheless", "although")

HEDGES = ("could", "possibly", "is likely", "tends to", "suggests")

CREATIVE_TERMS = (
    "innovative",
    "creative",
    "original",
    "unique",
    "different",
    "alternative",
    "novel approach",
    "fresh perspective",
)

ANALOGY_MARKERS = ("similar to", "just like", "akin to", "is like", "analogous to")

GENERIC_PHRASES = ("it is important", "it is necessary", "you should", "one must")

UNSAFE_PATTERNS = (
    re.compile(r"\b(kill|murder|bomb|weapon|attack|harm|hurt|violence|threat)\b", re.IGNORECASE),
    re.compile(r"\b(hate|racist|sexist|discrimination|bias)\b", re.IGNORECASE),
    re.compile(r"\b(illegal|criminal|fraud|scam|steal)\b", re.IGNORECASE),
)

PROFANITY_PATTERN = re.compile(r"\b(fuck|shit|damn|hell|asshole|bitch)\b", re.IGNORECASE)

PII_PATTERNS = (
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN-like
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),  # e-mail
    re.compile(r"\b\d{4}\s?\d{4}\s?\d{4}\s?\d{4}\b"),  # card number
)


def split_sentences(text: str) -> list[str]:
    """Non-empty sentences, split on terminal punctuation."""
    return [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def _contains_count(text: str, phrases) -> int:
    lowered = text.lower()
    return sum(1 for p in phrases if p.lower() in lowered)


def score_relevance(prompt: str, response: str, profile: QualityProfile) -> float:
    """Keyword overlap with the prompt, required elements and domain terms."""
    score = 70.0

    prompt_words = prompt.lower().split()
    response_words = response.lower().split()
    overlap = sum(
        1
        for word in prompt_words
        if len(word) > 3 and any(word in r for r in response_words)
    )
    score += overlap / max(len(prompt_words), 1) * 20

    if profile.required_elements:
        found = _contains_count(response, profile.required_elements)
        score += found / len(profile.required_elements) * 10

    if profile.domain_terms:
        score += min(_contains_count(response, profile.domain_terms) * 2, 10)

    return clamp(score)


def score_coherence(response: str) -> float:
    """Sentence length sanity, repetition and logical flow."""
    sentences = split_sentences(response)
    if not sentences:
        return 0.0

    score = 80.0
    avg_length = sum(len(s) for s in sentences) / len(sentences)
    if avg_length < 10 or avg_length > 200:
        score -= 15

    unique = {s.strip().lower() for s in sentences}
    score -= (len(sentences) - len(unique)) / len(sentences) * 30

    if _contains_count(response, CONNECTIVES):
        score += 10

    if len(response) > 300:
        paragraphs = [p for p in response.split("\n\n") if p.strip()]
        if len(paragraphs) > 1:
            score += 5

    return clamp(score)


def score_completeness(prompt: str, response: str, profile: QualityProfile) -> float:
    """Length bounds, required elements and multi-part coverage."""
    score = 80.0

    if profile.min_length and len(response) < profile.min_length:
        score -= (1 - len(response) / profile.min_length) * 30
    if profile.max_length and len(response) > profile.max_length:
        score -= 10

    if profile.required_elements:
        ratio = _contains_count(response, profile.required_elements) / len(
            profile.required_elements
        )
        score = score * ratio + ratio * 20

    parts = [p for p in _QUESTION_SPLIT.split(prompt) if p.strip()]
    if len(parts) > 1 and len(response) / len(parts) < 50:
        score -= 15

    return clamp(score)


def score_accuracy(response: str) -> float:
    """Placeholder text, self-contradiction and hedging."""
    score = 85.0

    for pattern in PLACEHOLDER_PATTERNS:
        if pattern.search(response):
            score -= 20

    contradictions = 0
    for sentence in split_sentences(response):
        words = set(sentence.lower().split())
        contradictions += sum(1 for marker in CONTRADICTION_MARKERS if marker in words)
    if contradictions > 2:
        score -= 10

    if _contains_count(response, HEDGES):
        score += 5

    return clamp(score)


def score_creativity(response: str) -> float:
    """Vocabulary diversity, creative vocabulary, analogies, boilerplate."""
    score = 60.0

    words = [w for w in response.lower().split() if len(w) > 3]
    score += len(set(words)) / max(len(words), 1) * 20

    score += min(_contains_count(response, CREATIVE_TERMS) * 5, 15)

    if _contains_count(response, ANALOGY_MARKERS):
        score += 10

    score -= min(_contains_count(response, GENERIC_PHRASES) * 5, 20)

    return clamp(score)


def score_safety(response: str) -> float:
    """Unsafe categories, profanity and PII-shaped content."""
    score = 100.0

    for pattern in UNSAFE_PATTERNS:
        if pattern.search(response):
            score -= 50

    if PROFANITY_PATTERN.search(response):
        score -= 20

    for pattern in PII_PATTERNS:
        if pattern.search(response):
            score -= 30

    return clamp(score)
