from pydantic import BaseModel, Field, ConfigDict, field_validator
from datetime import datetime, timedelta, timezone, date
from typing import Optional, List, Dict, Any
from enum import Enum


class Platform(str, Enum):
    FORUM = "forum"
    SOCIAL = "social"
    TECHNEWS = "technews"
    ARTICLES = "articles"
    NEWS = "news"


class SentimentLabel(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    MIXED = "mixed"


class Intent(str, Enum):
    FEATURE_REQUEST = "feature_request"
    BUG_REPORT = "bug_report"
    PRAISE = "praise"
    COMPLAINT = "complaint"
    COMPARISON = "comparison"
    QUESTION = "question"


class FeatureCategory(str, Enum):
    CORE_API = "core_api"
    DOCUMENTATION = "documentation"
    PRICING = "pricing"
    MODEL_CAPABILITIES = "model_capabilities"
    INTEGRATION = "integration"
    PERFORMANCE = "performance"
    SECURITY = "security"
    OTHER = "other"


class Comparison(str, Enum):
    BETTER = "better"
    WORSE = "worse"
    SAME = "same"
    NEUTRAL = "neutral"


class EnrichmentSource(str, Enum):
    LLM = "llm"
    FALLBACK_HEURISTIC = "fallback_heuristic"


def _strip_nul(value: Any) -> Any:
    """Remove NUL characters, which PostgreSQL text and JSONB columns reject."""
    if isinstance(value, str):
        return value.replace("\x00", "")
    if isinstance(value, dict):
        return {_strip_nul(key): _strip_nul(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_strip_nul(item) for item in value]
    return value


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CollectionWindow(BaseModel):
    """Recency bounds for a collection run (UTC, inclusive)."""
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @classmethod
    def last_days(cls, days: int, now: Optional[datetime] = None) -> "CollectionWindow":
        end = _as_utc(now) if now else datetime.now(timezone.utc)
        return cls(start=end - timedelta(days=days), end=end)

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= _as_utc(timestamp) <= self.end


class FeedbackItem(BaseModel):
    """A single piece of external developer commentary."""
    model_config = ConfigDict(use_enum_values=True)

    platform: Platform
    content: str
    author: str = "unknown"
    url: str = ""
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("content")
    @classmethod
    def _content_required(cls, value: str) -> str:
        value = _strip_nul(value or "").strip()
        if not value:
            raise ValueError("content must not be empty")
        return value

    @field_validator("author", mode="before")
    @classmethod
    def _author_fallback(cls, value: Any) -> str:
        value = _strip_nul(str(value)) if value is not None else ""
        return value.strip() or "unknown"

    @field_validator("url", "metadata")
    @classmethod
    def _no_nul(cls, value: Any) -> Any:
        return _strip_nul(value)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class StoredFeedbackItem(FeedbackItem):
    """Feedback item as persisted, with its storage id."""
    id: int
    collected_at: Optional[datetime] = None


class PainPoint(BaseModel):
    description: str
    category: FeatureCategory = FeatureCategory.OTHER
    severity: int = Field(5, ge=1, le=10)


class FeatureRequest(BaseModel):
    description: str
    category: FeatureCategory = FeatureCategory.OTHER
    priority: int = Field(5, ge=1, le=10)


class CompetitorMention(BaseModel):
    competitor: str
    comparison: Comparison = Comparison.NEUTRAL
    context: str = ""


class HeartScores(BaseModel):
    """HEART user-experience dimensions, each 1 (worst) to 5 (best)."""
    happiness_csat: int = Field(3, ge=1, le=5)
    engagement: int = Field(3, ge=1, le=5)
    adoption: int = Field(3, ge=1, le=5)
    retention: int = Field(3, ge=1, le=5)
    task_success: int = Field(3, ge=1, le=5)
    overall_score: float = Field(3.0, ge=1.0, le=5.0)

    @classmethod
    def from_dimensions(cls, **dimensions: int) -> "HeartScores":
        """Build scores whose overall_score is the mean of the five dimensions."""
        scores = cls(**dimensions)
        overall = (
            scores.happiness_csat + scores.engagement + scores.adoption
            + scores.retention + scores.task_success
        ) / 5
        return scores.model_copy(update={"overall_score": round(overall, 2)})


class EnrichmentResult(BaseModel):
    """AI-derived signals attached 1:1 to a stored feedback item. Never edited in place."""
    model_config = ConfigDict(frozen=True)

    feedback_id: int
    sentiment_score: float = Field(..., ge=-1.0, le=1.0)
    sentiment_label: SentimentLabel
    confidence: float = Field(..., ge=0.0, le=1.0)
    intent: Intent = Intent.QUESTION
    summary: str = ""
    pain_points: List[PainPoint] = Field(default_factory=list)
    feature_requests: List[FeatureRequest] = Field(default_factory=list)
    competitor_mentions: List[CompetitorMention] = Field(default_factory=list)
    priority_score: int = Field(5, ge=1, le=10)
    source: EnrichmentSource
    heart: Optional[HeartScores] = None
    model: Optional[str] = None
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PlatformResult(BaseModel):
    """Per-platform outcome of one collection run."""
    platform: str
    items_collected: int = 0
    items_stored: int = 0
    success: bool
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DailyAggregate(BaseModel):
    """Per-calendar-day rollup, keyed by date."""
    date: date
    total_feedback: int = 0
    average_sentiment: Optional[float] = None
    active_platforms: int = 0
    critical_issues: int = 0
    last_updated: Optional[datetime] = None


class CollectionRunReport(BaseModel):
    """Summary of one orchestrator invocation."""
    platforms: List[PlatformResult] = Field(default_factory=list)
    total_items_collected: int = 0
    unique_items: int = 0
    new_items_stored: int = 0
    duplicates_skipped: int = 0
    items_enriched: int = 0
    llm_enriched: int = 0
    fallback_enriched: int = 0
    aggregates: List[DailyAggregate] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    partial: bool = False
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[float] = None
