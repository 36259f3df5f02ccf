# devpulse/agents/llm_agent.py
import openai
from openai import OpenAI
from typing import List
from devpulse.config.settings import Settings
from devpulse.models.errors import NetworkError, ParseError, QuotaExceededError, RateLimitError
import logging

logger = logging.getLogger(__name__)


class ChatAgent:
    """OpenAI chat client exposing a single generate(prompt) call."""

    def __init__(self, config: Settings):
        self.config = config
        # Retries are driven by the caller so the backoff policy lives in one place
        self.client = OpenAI(
            api_key=config.openai_api_key,
            timeout=config.openai_timeout_seconds,
            max_retries=0,
        )
        self.model = config.openai_llm_model

    def chat(self, messages: List[dict]) -> str:
        """
        Send a list of messages to the OpenAI chat model and get the response.

        Args:
            messages: List of message dicts (e.g., [{"role": "user", "content": "Hello"}])

        Returns:
            The assistant's reply as a string.

        Raises:
            QuotaExceededError: The account has no quota left
            RateLimitError: Rate limited, worth retrying later
            NetworkError: Timeout, connection failure or API error
            ParseError: The reply had no text content
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.2,
            )
        except openai.RateLimitError as e:
            if getattr(e, "code", None) == "insufficient_quota":
                logger.error(f"OpenAI quota exhausted: {e}")
                raise QuotaExceededError(str(e)) from e
            retry_after = None
            if e.response is not None:
                try:
                    retry_after = float(e.response.headers.get("retry-after", ""))
                except ValueError:
                    retry_after = None
            raise RateLimitError(f"OpenAI rate limit: {e}", retry_after=retry_after) from e
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise NetworkError(f"OpenAI connection error: {e}") from e
        except openai.APIStatusError as e:
            raise NetworkError(
                f"OpenAI API error {e.status_code}: {e}", retryable=e.status_code >= 500
            ) from e
        except openai.APIError as e:
            raise NetworkError(f"OpenAI API error: {e}", retryable=False) from e

        if not response.choices or not response.choices[0].message.content:
            raise ParseError("OpenAI returned an empty reply")
        return response.choices[0].message.content

    def generate(self, prompt: str) -> str:
        """
        Send a single prompt to the OpenAI chat model and get the response.

        Args:
            prompt: The user's prompt as a string.

        Returns:
            The assistant's reply as a string.
        """
        messages = [{"role": "user", "content": prompt}]
        return self.chat(messages)
