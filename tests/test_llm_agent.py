"""Unit tests for the ChatAgent class."""
import httpx
import openai
import pytest
from unittest.mock import MagicMock, patch
from devpulse.agents.llm_agent import ChatAgent
from devpulse.models.errors import NetworkError, ParseError, QuotaExceededError, RateLimitError

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _completion(content):
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = content
    return completion


def _rate_limit(code=None, headers=None):
    response = httpx.Response(429, request=REQUEST, headers=headers or {})
    return openai.RateLimitError("rate limited", response=response, body={"code": code, "message": "x"})


class TestChatAgent:
    """Test ChatAgent class."""

    @patch('devpulse.agents.llm_agent.OpenAI')
    def test_agent_initialization(self, mock_openai, mock_config):
        """Test ChatAgent builds the client with timeout and no SDK retries."""
        agent = ChatAgent(mock_config)

        assert agent.model == mock_config.openai_llm_model
        mock_openai.assert_called_once_with(
            api_key="test-api-key",
            timeout=mock_config.openai_timeout_seconds,
            max_retries=0,
        )

    @patch('devpulse.agents.llm_agent.OpenAI')
    def test_generate(self, mock_openai, mock_config):
        """Test generate sends one user message and returns the reply text."""
        create = mock_openai.return_value.chat.completions.create
        create.return_value = _completion('{"sentiment_score": 0}')

        result = ChatAgent(mock_config).generate("Analyze this")

        assert result == '{"sentiment_score": 0}'
        kwargs = create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "Analyze this"}]
        assert kwargs["model"] == mock_config.openai_llm_model

    @patch('devpulse.agents.llm_agent.OpenAI')
    def test_empty_reply_is_parse_error(self, mock_openai, mock_config):
        """Test an empty reply raises ParseError."""
        mock_openai.return_value.chat.completions.create.return_value = _completion(None)

        with pytest.raises(ParseError):
            ChatAgent(mock_config).generate("Analyze this")

    @patch('devpulse.agents.llm_agent.OpenAI')
    def test_insufficient_quota(self, mock_openai, mock_config):
        """Test an insufficient_quota 429 becomes QuotaExceededError."""
        mock_openai.return_value.chat.completions.create.side_effect = _rate_limit("insufficient_quota")

        with pytest.raises(QuotaExceededError):
            ChatAgent(mock_config).generate("Analyze this")

    @patch('devpulse.agents.llm_agent.OpenAI')
    def test_rate_limit(self, mock_openai, mock_config):
        """Test a plain 429 becomes a retryable RateLimitError with Retry-After."""
        mock_openai.return_value.chat.completions.create.side_effect = _rate_limit(
            "rate_limit_exceeded", headers={"retry-after": "7"}
        )

        with pytest.raises(RateLimitError) as exc_info:
            ChatAgent(mock_config).generate("Analyze this")

        assert exc_info.value.retryable
        assert exc_info.value.retry_after == 7.0

    @patch('devpulse.agents.llm_agent.OpenAI')
    def test_timeout(self, mock_openai, mock_config):
        """Test a timeout becomes a retryable NetworkError."""
        mock_openai.return_value.chat.completions.create.side_effect = openai.APITimeoutError(request=REQUEST)

        with pytest.raises(NetworkError) as exc_info:
            ChatAgent(mock_config).generate("Analyze this")

        assert exc_info.value.retryable

    @patch('devpulse.agents.llm_agent.OpenAI')
    def test_bad_request_not_retryable(self, mock_openai, mock_config):
        """Test a 400 becomes a non-retryable NetworkError."""
        response = httpx.Response(400, request=REQUEST)
        mock_openai.return_value.chat.completions.create.side_effect = openai.BadRequestError(
            "bad request", response=response, body=None
        )

        with pytest.raises(NetworkError) as exc_info:
            ChatAgent(mock_config).generate("Analyze this")

        assert not exc_info.value.retryable
