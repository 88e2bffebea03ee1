"""
Groq API client for the chatbot.

Two call sites:
- SQL generation (temperature 0, short output)
- reply composition (low temperature, longer output)

Returns None on any failure. Callers treat None as "text service
unavailable" and use the deterministic formatter instead. The API key is
never logged.
"""

import logging
import time
from typing import Dict, List, Optional
from groq import Groq, APIError, APITimeoutError, RateLimitError

from medstock.core.config import settings

logger = logging.getLogger(__name__)


class GroqClient:
    """
    Minimal wrapper for Groq chat completions.

    - Model: settings.GROQ_MODEL
    - Timeout: settings.LLM_TIMEOUT_SECONDS
    - Retries: 2 with exponential backoff for timeouts and rate limits
    - Permanent API errors are not retried
    """

    def __init__(self):
        api_key = settings.GROQ_API_KEY
        self.model = settings.GROQ_MODEL

        if not api_key:
            logger.warning(
                "GROQ_API_KEY not found in environment. "
                "Chatbot replies will use the built-in formatter. "
                "Add your key to backend/.env file."
            )
            self.client = None
        else:
            try:
                self.client = Groq(api_key=api_key, timeout=settings.LLM_TIMEOUT_SECONDS)
                logger.info("Groq client initialized successfully")
            except Exception as e:
                logger.error(f"Failed to initialize Groq client: {e}")
                self.client = None

    def is_available(self) -> bool:
        return self.client is not None

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0,
        max_tokens: int = 800,
        max_retries: int = 2,
    ) -> Optional[str]:
        """
        Run one chat completion.

        Args:
            messages: OpenAI-style [{"role", "content"}] list
            temperature: 0 for SQL, ~0.1 for replies
            max_tokens: output cap
            max_retries: retries for transient failures

        Returns:
            Response text, or None on any error or empty response
        """
        if not self.is_available():
            logger.debug("Groq client not available - skipping LLM call")
            return None

        for attempt in range(max_retries + 1):
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    stream=False,
                )

                if response.choices and response.choices[0].message.content:
                    content = response.choices[0].message.content
                    logger.debug(f"LLM response received: {len(content)} chars (attempt {attempt+1})")
                    return content
                logger.warning("LLM returned empty response")
                return None

            except APITimeoutError:
                if attempt < max_retries:
                    wait_time = 0.5 * (2 ** attempt)  # 0.5s, 1s
                    logger.warning(f"Groq timeout, retry {attempt+1}/{max_retries} after {wait_time}s")
                    time.sleep(wait_time)
                else:
                    logger.warning(f"Groq API timeout after {max_retries} retries")
                    return None

            except RateLimitError:
                if attempt < max_retries:
                    wait_time = 1.0 * (2 ** attempt)  # 1s, 2s
                    logger.warning(f"Groq rate limit, retry {attempt+1}/{max_retries} after {wait_time}s")
                    time.sleep(wait_time)
                else:
                    logger.warning("Groq API rate limit exceeded after retries")
                    return None

            except APIError as e:
                logger.error(f"Groq API error (permanent): {e}")
                return None

            except Exception as e:
                logger.error(f"Unexpected error calling Groq: {e}")
                return None

        return None


_groq_client: Optional[GroqClient] = None


def get_groq_client() -> GroqClient:
    """Get or create the shared GroqClient instance."""
    global _groq_client
    if _groq_client is None:
        _groq_client = GroqClient()
    return _groq_client
