# devpulse/config/settings.py
from pydantic_settings import BaseSettings
from pathlib import Path
from typing import List, Optional

# Get project root (2 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

class Settings(BaseSettings):
    # OpenAI
    openai_api_key: str
    openai_llm_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 30.0

    # PostgreSQL
    postgres_host: str
    postgres_port: int = 5432
    postgres_database: str
    postgres_username: str
    postgres_password: str
    postgres_sslmode: str = "prefer"

    # Product being monitored (used in prompts)
    product_name: str = "Gemini API"

    # HTTP fetch client
    http_timeout_seconds: float = 10.0
    http_max_retries: int = 3
    http_backoff_base_seconds: float = 1.0
    http_backoff_cap_seconds: float = 30.0
    http_user_agent: str = "devpulse/1.0 (developer feedback monitor)"

    # Discussion forum (Discourse)
    forum_base_url: str = "https://discuss.ai.google.dev"
    forum_endpoints: List[str] = [
        "/c/gemini-api/4",
        "/c/gemini-api/4/l/hot",
        "/c/ai-studio/8",
        "/c/ai-studio/8/l/hot",
        "/tags/c/gemini-api/4/api",
        "/tags/c/gemini-api/4/bug",
        "/tags/c/ai-studio/8/bug",
        "/tag/prompt",
    ]
    forum_pacing_seconds: float = 1.0

    # Social link aggregator (Reddit)
    social_base_url: str = "https://www.reddit.com"
    social_communities: List[str] = [
        "GeminiAI",
        "GoogleGeminiAI",
        "GoogleAIStudio",
        "LocalLLaMA",
        "OpenAI",
    ]
    social_listing_limit: int = 25
    social_pacing_seconds: float = 2.0

    # Tech news (Hacker News)
    technews_base_url: str = "https://hacker-news.firebaseio.com/v0"
    technews_story_lists: List[str] = ["topstories", "newstories"]
    technews_max_stories: int = 100
    technews_max_comments: int = 10
    technews_pacing_seconds: float = 0.1

    # Article feed (dev.to)
    articles_base_url: str = "https://dev.to/api"
    articles_tags: List[str] = ["gemini", "googleaistudio", "googlecloud", "llm", "ai"]
    articles_per_page: int = 30
    articles_pacing_seconds: float = 1.0

    # Collection run
    collection_days_back: int = 7
    collector_max_workers: int = 4
    collector_shutdown_grace_seconds: float = 30.0
    run_timeout_seconds: Optional[float] = None
    relevance_terms: List[str] = [
        "gemini",
        "google ai",
        "ai studio",
        "vertex ai",
        "bard",
    ]

    # Enrichment
    enrichment_call_ceiling: int = 50
    enrichment_batch_size: int = 5
    enrichment_concurrency: int = 2
    enrichment_batch_delay_seconds: float = 2.0
    enrichment_max_retries: int = 3
    enrichment_retry_delay_seconds: float = 1.0
    enrichment_max_content_chars: int = 2000
    enrichment_backlog_limit: int = 20

    # Pipeline config
    batch_size: int = 100
    audit_runs: bool = True

    class Config:
        env_file = str(PROJECT_ROOT / ".env")
        case_sensitive = False
