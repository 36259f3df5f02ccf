"""
Article feed collector (dev.to public API).
"""

from typing import List, Optional
import logging

from pydantic import ValidationError

from devpulse.collectors.base import BaseCollector
from devpulse.models.errors import ParseError, Result
from devpulse.models.schemas import CollectionWindow, FeedbackItem, Platform
from devpulse.models.sources import Article
from devpulse.utils.text import parse_utc_datetime

logger = logging.getLogger(__name__)


class ArticlesCollector(BaseCollector):
    platform = Platform.ARTICLES

    def build_queries(self) -> List[str]:
        return list(self.config.articles_tags)

    def run_query(self, tag: str, window: CollectionWindow) -> Result:
        base_url = self.config.articles_base_url.rstrip("/")
        response = self.fetch(
            f"{base_url}/articles",
            params={"tag": tag, "per_page": self.config.articles_per_page},
        )
        if not response.ok:
            return response
        if not isinstance(response.value, list):
            return Result.failure(ParseError(f"Unexpected payload for tag {tag}"))

        items = []
        for raw in response.value:
            if self.cancelled():
                break
            try:
                article = Article.model_validate(raw)
            except ValidationError as e:
                logger.debug(f"Skipping malformed article: {e}")
                continue

            created = parse_utc_datetime(article.published_at or article.created_at)
            if created is None or not window.contains(created):
                continue

            item = self._to_feedback_item(self._with_body(article), tag, created)
            if item is not None:
                items.append(item)
        return Result.success(items)

    def _with_body(self, article: Article) -> Article:
        """Listings omit the body; fetch the full article, keeping the listing on failure."""
        base_url = self.config.articles_base_url.rstrip("/")
        response = self.fetch(f"{base_url}/articles/{article.id}")
        if not response.ok:
            logger.warning(f"Could not fetch article {article.id}: {response.error}")
            return article
        try:
            return Article.model_validate(response.value)
        except ValidationError as e:
            logger.debug(f"Malformed full article {article.id}: {e}")
            return article

    def _to_feedback_item(self, article: Article, tag: str, created) -> Optional[FeedbackItem]:
        return self.to_item(
            content=article.body_markdown or article.description or article.title,
            author=article.user.username or article.user.name,
            url=article.url,
            timestamp=created,
            metadata={
                "title": article.title,
                "reactions": article.public_reactions_count,
                "comments_count": article.comments_count,
                "tags": article.tag_list,
                "source_id": str(article.id),
                "query_tag": tag,
            },
        )
