"""
Deterministic keyword-based scoring used when the LLM is unavailable or returns
unusable output. Everything here is a pure function of the input text.
"""

from typing import Dict, List, NamedTuple, Tuple
import re

from pydantic import BaseModel, Field

from devpulse.models.schemas import (
    CompetitorMention,
    Comparison,
    FeatureCategory,
    FeatureRequest,
    HeartScores,
    Intent,
    PainPoint,
    SentimentLabel,
)
from devpulse.utils.text import contains_any, term_pattern

HEURISTIC_MODEL = "rule-based-analyzer"

POSITIVE_TERMS = (
    "great", "excellent", "amazing", "awesome", "good", "improved", "better",
    "fast", "efficient", "reliable", "stable", "working", "success", "love",
    "perfect", "outstanding", "fantastic", "helpful", "thanks", "solved",
)

NEGATIVE_TERMS = (
    "doesn't work", "not working", "error", "bug", "crash", "fail", "broken",
    "slow", "problem", "issue", "bad", "terrible", "awful", "horrible",
    "frustrated", "annoying", "useless", "hate", "wrong",
)

URGENT_TERMS = ("urgent", "critical", "blocker", "production down", "outage")

FEATURE_REQUEST_PHRASES = (
    "feature request", "please add", "would be nice", "would love", "wish",
    "support for", "add support", "it would be great", "need a way",
)

ADOPTION_TERMS = ("api", "integration", "implementation", "deploy", "production", "code", "function", "method")

RETENTION_TERMS = ("will use", "plan to", "continue", "keep using", "upgrade", "next version")

SUCCESS_TERMS = ("solved", "working", "fixed", "resolved", "success", "completed")

PROBLEM_TERMS = ("error", "bug", "issue", "problem", "broken")

COMPARISON_PHRASES = ("vs", "versus", "compared to", "better than", "worse than", "switch to", "switched from")

COMPETITOR_TERMS: Dict[str, Tuple[str, ...]] = {
    "OpenAI": ("openai", "chatgpt", "gpt-4o", "gpt-4", "gpt-3.5", "gpt"),
    "Anthropic": ("anthropic", "claude"),
    "Perplexity": ("perplexity",),
    "Grok": ("grok", "xai"),
    "Mistral": ("mistral", "mixtral"),
    "Cohere": ("cohere",),
}

CATEGORY_TERMS: Dict[FeatureCategory, Tuple[str, ...]] = {
    FeatureCategory.PRICING: ("quota", "rate limit", "pricing", "price", "billing", "cost", "expensive"),
    FeatureCategory.PERFORMANCE: ("slow", "latency", "timeout", "lag", "throughput"),
    FeatureCategory.DOCUMENTATION: ("docs", "documentation", "example", "tutorial", "guide"),
    FeatureCategory.INTEGRATION: ("sdk", "library", "integration", "plugin", "langchain"),
    FeatureCategory.SECURITY: ("security", "privacy", "api key", "oauth", "permission"),
    FeatureCategory.MODEL_CAPABILITIES: ("hallucination", "accuracy", "context window", "reasoning", "multimodal"),
    FeatureCategory.CORE_API: ("error", "bug", "crash", "broken", "endpoint", "500", "function calling"),
}

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+|\n+")
def count_terms(text: str, terms) -> int:
    """Case-insensitive, word-boundary occurrence count of all terms."""
    return sum(len(term_pattern(term).findall(text)) for term in terms)


def has_term(text: str, terms) -> bool:
    return contains_any(text, terms)


def _sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_RE.split(text) if s.strip()]


def _first_sentence_with(text: str, terms, limit: int = 200) -> str:
    for sentence in _sentences(text):
        if has_term(sentence, terms):
            return sentence[:limit]
    return text[:limit]


class SentimentScore(NamedTuple):
    score: float
    label: SentimentLabel
    confidence: float
    positive_count: int
    negative_count: int


def label_for_score(score: float, mixed: bool = False) -> SentimentLabel:
    if score > 0.2:
        return SentimentLabel.POSITIVE
    if score < -0.2:
        return SentimentLabel.NEGATIVE
    return SentimentLabel.MIXED if mixed else SentimentLabel.NEUTRAL


def score_sentiment(text: str) -> SentimentScore:
    """
    Keyword sentiment in [-1, 1].

    Negative phrases are removed before positive words are counted so that
    "not working" does not also count as "working".
    """
    negative_count = count_terms(text, NEGATIVE_TERMS)
    stripped = text
    for phrase in NEGATIVE_TERMS:
        if " " in phrase:
            stripped = term_pattern(phrase).sub(" ", stripped)
    positive_count = count_terms(stripped, POSITIVE_TERMS)

    total = positive_count + negative_count
    score = (positive_count - negative_count) / total if total else 0.0
    label = label_for_score(score, mixed=positive_count > 0 and negative_count > 0)
    confidence = min(0.9, max(0.5, total / 10))
    return SentimentScore(round(score, 4), label, confidence, positive_count, negative_count)


def categorize(text: str) -> FeatureCategory:
    for category, terms in CATEGORY_TERMS.items():
        if has_term(text, terms):
            return category
    return FeatureCategory.OTHER


def extract_competitors(text: str) -> List[CompetitorMention]:
    mentions = []
    for competitor, terms in COMPETITOR_TERMS.items():
        if has_term(text, terms):
            mentions.append(CompetitorMention(
                competitor=competitor,
                comparison=Comparison.NEUTRAL,
                context=_first_sentence_with(text, terms),
            ))
    return mentions


def extract_pain_points(text: str, negative_count: int) -> List[PainPoint]:
    if negative_count == 0:
        return []
    severity = min(10, 5 + negative_count + (2 if has_term(text, URGENT_TERMS) else 0))
    pain_points = []
    for category, terms in CATEGORY_TERMS.items():
        if has_term(text, terms):
            pain_points.append(PainPoint(
                description=_first_sentence_with(text, terms),
                category=category,
                severity=severity,
            ))
    if not pain_points:
        pain_points.append(PainPoint(
            description=_first_sentence_with(text, NEGATIVE_TERMS),
            category=FeatureCategory.OTHER,
            severity=severity,
        ))
    return pain_points


def extract_feature_requests(text: str) -> List[FeatureRequest]:
    requests = []
    for sentence in _sentences(text):
        if has_term(sentence, FEATURE_REQUEST_PHRASES):
            requests.append(FeatureRequest(
                description=sentence[:200],
                category=categorize(sentence),
                priority=5,
            ))
    return requests


def classify_intent(text: str, sentiment: SentimentScore, has_competitors: bool) -> Intent:
    if has_term(text, ("bug", "error", "crash", "broken")):
        return Intent.BUG_REPORT
    if has_term(text, FEATURE_REQUEST_PHRASES):
        return Intent.FEATURE_REQUEST
    if has_competitors and has_term(text, COMPARISON_PHRASES):
        return Intent.COMPARISON
    if sentiment.positive_count > sentiment.negative_count:
        return Intent.PRAISE
    if sentiment.negative_count > sentiment.positive_count:
        return Intent.COMPLAINT
    return Intent.QUESTION


def distinct_terms(text: str, terms) -> int:
    """Number of different terms present, ignoring repeats."""
    return sum(1 for term in terms if term_pattern(term).search(text))


def score_heart(text: str) -> HeartScores:
    """
    Keyword HEART scores on a 1-5 scale, neutral 3 where nothing applies.

    Happiness weighs distinct positive against negative terms, engagement grows
    with length, adoption with technical vocabulary, retention with statements of
    continued use, and task success weighs resolution against problem terms.
    """
    positive = distinct_terms(text, POSITIVE_TERMS)
    negative = distinct_terms(text, NEGATIVE_TERMS)
    happiness = 3
    if positive > negative:
        happiness = min(5, 3 + positive - negative)
    elif negative > positive:
        happiness = max(1, 3 - (negative - positive))

    word_count = len(text.split())
    if word_count > 100:
        engagement = 4
    elif word_count > 50:
        engagement = 3
    else:
        engagement = 2

    successes = distinct_terms(text, SUCCESS_TERMS)
    problems = distinct_terms(text, PROBLEM_TERMS)
    task_success = 3
    if successes > problems:
        task_success = min(5, 3 + successes)
    elif problems > successes:
        task_success = max(1, 3 - problems)

    return HeartScores.from_dimensions(
        happiness_csat=happiness,
        engagement=engagement,
        adoption=min(5, 2 + distinct_terms(text, ADOPTION_TERMS)),
        retention=min(5, 3 + distinct_terms(text, RETENTION_TERMS)),
        task_success=task_success,
    )


def derive_priority(pain_points: List[PainPoint], feature_requests: List[FeatureRequest]) -> int:
    """Max severity/priority across sub-records, floor 5, cap 10."""
    values = [p.severity for p in pain_points] + [f.priority for f in feature_requests]
    return min(10, max([5] + values))


class HeuristicAnalysis(BaseModel):
    sentiment_score: float
    sentiment_label: SentimentLabel
    confidence: float
    intent: Intent
    summary: str
    pain_points: List[PainPoint] = Field(default_factory=list)
    feature_requests: List[FeatureRequest] = Field(default_factory=list)
    competitor_mentions: List[CompetitorMention] = Field(default_factory=list)
    priority_score: int
    heart: HeartScores


def summarize(text: str, limit: int = 150) -> str:
    text = " ".join(text.split())
    return text[:limit] + ("..." if len(text) > limit else "")


def analyze(content: str) -> HeuristicAnalysis:
    """Full fallback analysis of one piece of content."""
    sentiment = score_sentiment(content)
    competitors = extract_competitors(content)
    pain_points = extract_pain_points(content, sentiment.negative_count)
    feature_requests = extract_feature_requests(content)
    return HeuristicAnalysis(
        sentiment_score=sentiment.score,
        sentiment_label=sentiment.label,
        confidence=sentiment.confidence,
        intent=classify_intent(content, sentiment, bool(competitors)),
        summary=summarize(content),
        pain_points=pain_points,
        feature_requests=feature_requests,
        competitor_mentions=competitors,
        priority_score=derive_priority(pain_points, feature_requests),
        heart=score_heart(content),
    )
