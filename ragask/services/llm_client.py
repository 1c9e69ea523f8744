"""LLM Client for Groq API integration."""
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from groq import AsyncGroq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError
import logging

from ragask.config import PROMPT_MODEL

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from LLM generation."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str


@dataclass
class LLMError:
    """Structured error response from LLM operations."""
    code: str
    message: str
    details: Dict[str, Any]


class LLMClientError(Exception):
    """Custom exception for LLM client errors with structured error information."""

    def __init__(self, error: LLMError):
        self.error = error
        super().__init__(error.message)


class LLMClient:
    """Client for interfacing with Groq API for text generation."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = PROMPT_MODEL,
        max_tokens: int = 1024,
        temperature: float = 0.2,
        timeout: float = 60.0,
    ):
        """
        Initialize LLM client with Groq API key.

        Args:
            api_key: Groq API key
            model: Default prompt model
            max_tokens: Maximum tokens to generate per call
            temperature: Sampling temperature
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ValueError("GROQ_API_KEY must be provided or set in environment")

        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = AsyncGroq(api_key=self.api_key, timeout=timeout, max_retries=0)
        logger.info(f"LLMClient initialized with model: {model}")

    async def complete(self, prompt: str) -> str:
        """Generate a completion and return only its text."""
        response = await self.generate(prompt)
        return response.text

    async def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Generate response using Groq API.

        Args:
            prompt: Complete prompt
            model: Model name (defaults to the client's model)
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse with text, token counts, and latency

        Raises:
            LLMClientError: Structured error with code, message, and details
        """
        model = model or self.model
        start_time = time.time()

        def fail(code: str, message: str, e: Exception, **extra: Any) -> LLMClientError:
            latency_ms = int((time.time() - start_time) * 1000)
            error = LLMError(
                code=code,
                message=message,
                details={
                    "model": model,
                    "latency_ms": latency_ms,
                    "original_error": str(e),
                    **extra,
                },
            )
            logger.error(
                f"{code}: model={model}, latency={latency_ms}ms, error={e}",
                extra={"error_code": error.code, "error_details": error.details},
            )
            return LLMClientError(error)

        try:
            logger.debug(f"Generating response with model: {model}")

            response = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {
                        "role": "user",
                        "content": prompt
                    }
                ],
                max_tokens=max_tokens or self.max_tokens,
                temperature=self.temperature,
            )

            latency_ms = int((time.time() - start_time) * 1000)
            text = response.choices[0].message.content or ""
            tokens_input = response.usage.prompt_tokens if response.usage else 0
            tokens_output = response.usage.completion_tokens if response.usage else 0

            logger.info(
                f"Generated response: model={model}, "
                f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
                f"latency={latency_ms}ms"
            )

            return LLMResponse(
                text=text,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                latency_ms=latency_ms,
                model_used=model
            )

        except RateLimitError as e:
            raise fail(
                "RATE_LIMIT_ERROR",
                "Rate limit exceeded. Please try again in a few moments.",
                e,
                retry_after=60,
            ) from e
        except AuthenticationError as e:
            raise fail("AUTHENTICATION_ERROR", "Authentication failed. Please check your API key.", e) from e
        except APITimeoutError as e:
            raise fail("TIMEOUT_ERROR", "Request timed out. Please try again.", e) from e
        except APIError as e:
            raise fail("API_ERROR", f"Groq API error: {str(e)}", e) from e
        except Exception as e:
            raise fail("UNKNOWN_ERROR", f"Unexpected error: {str(e)}", e) from e
