"""
Per-platform source records.

Each collector parses the upstream payload into one of these models and maps it
explicitly to a FeedbackItem; only the fields a platform is known to send are
declared here.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Optional, List


class ForumTopic(BaseModel):
    """Discourse topic from a category or tag listing."""
    model_config = ConfigDict(extra="ignore")

    id: int
    title: str = ""
    slug: str = ""
    excerpt: Optional[str] = None
    created_at: str
    last_posted_at: Optional[str] = None
    reply_count: int = 0
    views: int = 0
    category_id: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    last_poster_username: Optional[str] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _tag_names(cls, value: Any) -> List[str]:
        # newer Discourse versions send tag objects instead of names
        return [tag.get("name", "") if isinstance(tag, dict) else tag for tag in value or []]


class SocialPost(BaseModel):
    """Reddit listing child (children[].data)."""
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = ""
    selftext: str = ""
    author: Optional[str] = None
    score: int = 0
    num_comments: int = 0
    created_utc: float
    permalink: str = ""
    url: Optional[str] = None
    subreddit: str = ""


class TechNewsItem(BaseModel):
    """Hacker News item (story or comment)."""
    model_config = ConfigDict(extra="ignore")

    id: int
    type: str = "story"
    by: Optional[str] = None
    time: int
    title: Optional[str] = None
    text: Optional[str] = None
    url: Optional[str] = None
    score: int = 0
    descendants: int = 0
    kids: List[int] = Field(default_factory=list)
    parent: Optional[int] = None
    deleted: bool = False
    dead: bool = False


class ArticleUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    username: Optional[str] = None
    name: Optional[str] = None


class Article(BaseModel):
    """dev.to article (listing entry or full article)."""
    model_config = ConfigDict(extra="ignore")

    id: int
    title: str = ""
    description: Optional[str] = None
    body_markdown: Optional[str] = None
    url: str = ""
    published_at: Optional[str] = None
    created_at: Optional[str] = None
    public_reactions_count: int = 0
    comments_count: int = 0
    tag_list: List[str] = Field(default_factory=list)
    user: ArticleUser = Field(default_factory=ArticleUser)

    @field_validator("tag_list", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> List[str]:
        # the single-article endpoint returns a comma separated string
        if isinstance(value, str):
            return [tag.strip() for tag in value.split(",") if tag.strip()]
        return value or []
