"""
LLM enrichment of stored feedback items.

Each item is sent to the generative-text service with a fixed JSON schema. The
reply is validated and normalised; anything unusable, and any item beyond the
per-run call ceiling, is scored by the deterministic keyword heuristic instead.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional, Type
import json
import math
import re
import threading
import time
import logging

from devpulse.agents import heuristics
from devpulse.config.settings import Settings
from devpulse.models.errors import (
    NetworkError,
    PipelineError,
    ParseError,
    QuotaExceededError,
    Result,
)
from devpulse.models.schemas import (
    CompetitorMention,
    Comparison,
    EnrichmentResult,
    EnrichmentSource,
    FeatureCategory,
    FeatureRequest,
    HeartScores,
    Intent,
    PainPoint,
    SentimentLabel,
    StoredFeedbackItem,
)
from devpulse.utils.retry import linear_backoff, retry_with_backoff

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("sentiment_score", "sentiment_label", "confidence")

HEART_DIMENSIONS = ("happiness_csat", "engagement", "adoption", "retention", "task_success")


class CircuitBreaker:
    """Caps LLM calls per run and stays open once the quota is exhausted."""

    def __init__(self, ceiling: int):
        self.ceiling = ceiling
        self._lock = threading.Lock()
        self._calls = 0
        self._tripped = False

    @property
    def calls(self) -> int:
        return self._calls

    @property
    def tripped(self) -> bool:
        return self._tripped

    @property
    def available(self) -> bool:
        with self._lock:
            return not self._tripped and self._calls < self.ceiling

    def allow(self) -> bool:
        """Reserve one call; False once the ceiling is reached or the breaker tripped."""
        with self._lock:
            if self._tripped or self._calls >= self.ceiling:
                return False
            self._calls += 1
            return True

    def trip(self, reason: str) -> None:
        with self._lock:
            if not self._tripped:
                logger.warning(f"Enrichment circuit breaker tripped: {reason}")
            self._tripped = True

    def reset(self) -> None:
        with self._lock:
            self._calls = 0
            self._tripped = False


def parse_response(response: str) -> Dict[str, Any]:
    """
    Decode an LLM reply into a JSON object.

    Markdown code fences are stripped first; if the remainder is not valid JSON
    the first {...} block in the text is tried.

    Raises:
        ParseError: No JSON object could be extracted
    """
    cleaned = re.sub(r'```(?:json)?\s*|\s*```', '', response or '').strip()
    try:
        data = json.loads(cleaned)
    except ValueError:
        match = re.search(r'\{.*\}', cleaned, re.DOTALL)
        if not match:
            raise ParseError("LLM reply contains no JSON object")
        try:
            data = json.loads(match.group(0))
        except ValueError as e:
            raise ParseError(f"LLM reply is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise ParseError(f"LLM reply is a JSON {type(data).__name__}, expected an object")
    return data


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _required_number(data: Dict[str, Any], field: str) -> float:
    value = data.get(field)
    if value is None or isinstance(value, bool):
        raise ParseError(f"Missing or invalid field '{field}'")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ParseError(f"Field '{field}' is not numeric: {str(value)[:50]}")
    if not math.isfinite(number):
        raise ParseError(f"Field '{field}' is not finite")
    return number


def _enum_or_default(enum_cls: Type, value: Any, default):
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    return default


def _scale(value: Any, default: int = 5, high: int = 10) -> int:
    """Coerce a 1-10 severity/priority (or 1-high rating), clamping out-of-range values."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(number):
        return default
    return int(_clamp(round(number), 1, high))


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _records(data: Dict[str, Any], field: str) -> List[Dict[str, Any]]:
    value = data.get(field)
    if not isinstance(value, list):
        return []
    return [record for record in value if isinstance(record, dict)]


def _heart(data: Dict[str, Any]) -> Optional[HeartScores]:
    value = data.get("heart")
    if not isinstance(value, dict):
        return None
    return HeartScores.from_dimensions(**{
        name: _scale(value.get(name), default=3, high=5) for name in HEART_DIMENSIONS
    })


def normalize(
    feedback_id: int, data: Dict[str, Any], model: Optional[str] = None
) -> EnrichmentResult:
    """
    Turn a decoded LLM reply into a validated EnrichmentResult.

    Numbers outside their range are clamped; unknown enum values fall back to
    defaults (label derived from the score, intent question, category other,
    comparison neutral, severity and priority 5). Sub-records without a
    description or competitor name are dropped. A missing or malformed
    heart object leaves heart unset; its dimensions default to 3 and are
    clamped to 1-5.

    Raises:
        ParseError: A required field is missing or not numeric
    """
    for field in REQUIRED_FIELDS:
        if field not in data:
            raise ParseError(f"Missing required field '{field}'")

    score = _clamp(_required_number(data, "sentiment_score"), -1.0, 1.0)
    confidence = _clamp(_required_number(data, "confidence"), 0.0, 1.0)
    label = _enum_or_default(SentimentLabel, data.get("sentiment_label"), None)
    if label is None:
        label = heuristics.label_for_score(score)

    pain_points = [
        PainPoint(
            description=_text(record.get("description")),
            category=_enum_or_default(FeatureCategory, record.get("category"), FeatureCategory.OTHER),
            severity=_scale(record.get("severity")),
        )
        for record in _records(data, "pain_points")
        if _text(record.get("description"))
    ]
    feature_requests = [
        FeatureRequest(
            description=_text(record.get("description")),
            category=_enum_or_default(FeatureCategory, record.get("category"), FeatureCategory.OTHER),
            priority=_scale(record.get("priority")),
        )
        for record in _records(data, "feature_requests")
        if _text(record.get("description"))
    ]
    competitor_mentions = [
        CompetitorMention(
            competitor=_text(record.get("competitor")),
            comparison=_enum_or_default(Comparison, record.get("comparison"), Comparison.NEUTRAL),
            context=_text(record.get("context")),
        )
        for record in _records(data, "competitor_mentions")
        if _text(record.get("competitor"))
    ]

    return EnrichmentResult(
        feedback_id=feedback_id,
        sentiment_score=score,
        sentiment_label=label,
        confidence=confidence,
        intent=_enum_or_default(Intent, data.get("intent"), Intent.QUESTION),
        summary=_text(data.get("summary"))[:500],
        pain_points=pain_points,
        feature_requests=feature_requests,
        competitor_mentions=competitor_mentions,
        priority_score=heuristics.derive_priority(pain_points, feature_requests),
        heart=_heart(data),
        source=EnrichmentSource.LLM,
        model=model,
    )


def fallback_result(item: StoredFeedbackItem) -> EnrichmentResult:
    """Score an item with the keyword heuristic."""
    analysis = heuristics.analyze(item.content)
    return EnrichmentResult(
        feedback_id=item.id,
        source=EnrichmentSource.FALLBACK_HEURISTIC,
        model=heuristics.HEURISTIC_MODEL,
        **analysis.model_dump(),
    )


class EnrichmentEngine:
    """Enriches stored feedback items via the LLM with heuristic fallback."""

    def __init__(self, config: Settings, generator, sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            config: Settings with enrichment limits
            generator: Object with generate(prompt) -> str raising classified errors
            sleep: Sleep function (injectable for tests)
        """
        self.config = config
        self.generator = generator
        self.sleep = sleep
        self.breaker = CircuitBreaker(config.enrichment_call_ceiling)
        self.backoff = linear_backoff(config.enrichment_retry_delay_seconds)
        self.model = getattr(generator, "model", None)
        self._stats_lock = threading.Lock()
        self.stats = {"llm": 0, "fallback": 0}

    def reset(self) -> None:
        """Start a new run: close the breaker and zero the counters."""
        self.breaker.reset()
        with self._stats_lock:
            self.stats = {"llm": 0, "fallback": 0}

    def build_prompt(self, item: StoredFeedbackItem) -> str:
        limit = self.config.enrichment_max_content_chars
        content = item.content if len(item.content) <= limit else item.content[:limit] + "..."
        title = item.metadata.get("title") if item.metadata else None
        platform = getattr(item.platform, "value", item.platform)
        title_line = f"Title: {title}\n" if title else ""

        return f"""You are analyzing developer feedback about the {self.config.product_name}.

Platform: {platform}
{title_line}Feedback:
\"\"\"{content}\"\"\"

Task: Extract structured signals from this feedback.

Return ONLY a valid JSON object with exactly these fields:
{{
  "sentiment_score": <number from -1.0 (very negative) to 1.0 (very positive)>,
  "sentiment_label": "positive" | "negative" | "neutral" | "mixed",
  "confidence": <number from 0.0 to 1.0>,
  "intent": "feature_request" | "bug_report" | "praise" | "complaint" | "comparison" | "question",
  "summary": "<one sentence summary>",
  "pain_points": [{{"description": "...", "category": "<category>", "severity": <1-10>}}],
  "feature_requests": [{{"description": "...", "category": "<category>", "priority": <1-10>}}],
  "competitor_mentions": [{{"competitor": "...", "comparison": "better" | "worse" | "same" | "neutral", "context": "..."}}],
  "heart": {{"happiness_csat": <1-5>, "engagement": <1-5>, "adoption": <1-5>, "retention": <1-5>, "task_success": <1-5>}}
}}

Categories: core_api, documentation, pricing, model_capabilities, integration, performance, security, other.
Use empty arrays when nothing applies. HEART ratings are 1 (worst) to 5 (best), 3 when the feedback gives no signal.

Response:"""

    def enrich(self, item: StoredFeedbackItem) -> EnrichmentResult:
        """
        Enrich one stored item.

        Args:
            item: Stored feedback item

        Returns:
            EnrichmentResult tagged llm or fallback_heuristic
        """
        if not self.breaker.allow():
            logger.debug(f"LLM unavailable for item {item.id}, using heuristic")
            return self._fallback(item)

        prompt = self.build_prompt(item)
        outcome = retry_with_backoff(
            lambda: self._generate(prompt),
            max_attempts=self.config.enrichment_max_retries,
            delay_for=self.backoff,
            sleep=self.sleep,
            label=f"enrichment of item {item.id}",
        )

        if isinstance(outcome.error, QuotaExceededError):
            self.breaker.trip(str(outcome.error))
            return self._fallback(item)
        if not outcome.ok:
            logger.warning(f"LLM enrichment failed for item {item.id}: {outcome.error}")
            return self._fallback(item)

        try:
            result = normalize(item.id, parse_response(outcome.value), model=self.model)
        except (ParseError, ValueError, OverflowError) as e:
            logger.warning(f"Unusable LLM reply for item {item.id}: {e}")
            return self._fallback(item)

        if result.heart is None:
            result = result.model_copy(update={"heart": heuristics.score_heart(item.content)})
        self._count("llm")
        return result

    def enrich_batch(self, items: List[StoredFeedbackItem]) -> List[EnrichmentResult]:
        """
        Enrich items in small concurrent batches with a pause between batches.

        Args:
            items: Stored feedback items

        Returns:
            One EnrichmentResult per item, in input order
        """
        results: List[Optional[EnrichmentResult]] = [None] * len(items)
        batch_size = max(1, self.config.enrichment_batch_size)

        for start in range(0, len(items), batch_size):
            if start and self.breaker.available:
                self.sleep(self.config.enrichment_batch_delay_seconds)
            batch = items[start:start + batch_size]

            with ThreadPoolExecutor(max_workers=self.config.enrichment_concurrency) as executor:
                future_to_index = {
                    executor.submit(self.enrich, item): start + offset
                    for offset, item in enumerate(batch)
                }
                for future in as_completed(future_to_index):
                    index = future_to_index[future]
                    try:
                        results[index] = future.result()
                    except Exception as e:
                        logger.error(f"Enrichment of item {items[index].id} crashed: {e}")
                        results[index] = self._fallback(items[index])

            logger.info(f"Enriched {min(start + batch_size, len(items))}/{len(items)} items")

        return results

    def _generate(self, prompt: str) -> Result:
        try:
            return Result.success(self.generator.generate(prompt))
        except PipelineError as e:
            return Result.failure(e)
        except (TimeoutError, OSError) as e:
            return Result.failure(NetworkError(f"LLM call failed: {e}"))
        except Exception as e:
            return Result.failure(NetworkError(f"LLM call failed: {e}", retryable=False))

    def _fallback(self, item: StoredFeedbackItem) -> EnrichmentResult:
        self._count("fallback")
        return fallback_result(item)

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1
