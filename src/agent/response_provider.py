"""
Generative response providers

A provider turns a user message plus the recent conversation window into a
reply. The shipped provider calls the Gemini REST API over httpx, behind
the Gemini circuit breaker and the retry helper. Any failure surfaces as
ResponseProviderError; the conversation service decides how to degrade.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx
import pybreaker

from src.config import (
    GEMINI_API_BASE,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    RESPONSE_PROVIDER_TIMEOUT,
)
from src.exceptions import CompanionError, ResponseProviderError
from src.models.progress import ConversationEntry
from src.resilience.circuit_breaker import GEMINI_BREAKER, with_circuit_breaker
from src.resilience.metrics import record_api_call
from src.resilience.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# Sent when the provider cannot produce a reply
FALLBACK_RESPONSE = (
    "I understand you're reaching out, and I want to help. Sometimes technical "
    "issues can interrupt our conversation, but please know that your feelings "
    "and thoughts are important. Would you like to try again, or is there "
    "something specific you'd like to talk about?"
)

SYSTEM_INSTRUCTION = (
    "You are a warm, supportive companion in a wellness app. You are not a "
    "therapist. Talk casually like a caring friend, give practical advice and "
    "answer every part of the user's message."
)

PROVIDER_MAX_RETRIES = 2


class ResponseProvider(ABC):
    """Produces the companion's reply for a chat turn"""

    name: str = "provider"

    @abstractmethod
    async def generate_reply(self, message: str, context: Sequence[ConversationEntry]) -> str:
        """
        Reply to *message*

        Args:
            message: The user's message
            context: Recent turns, oldest first

        Raises:
            ResponseProviderError: No usable reply could be produced
        """


def build_contents(message: str, context: Sequence[ConversationEntry]) -> List[Dict[str, Any]]:
    """Gemini `contents`: alternating user/model turns, oldest first, then the new message"""
    contents = []
    for entry in context:
        contents.append({"role": "user", "parts": [{"text": entry.message}]})
        contents.append({"role": "model", "parts": [{"text": entry.ai_response}]})
    contents.append({"role": "user", "parts": [{"text": message}]})
    return contents


def extract_reply_text(data: Dict[str, Any]) -> str:
    """First candidate's text, or raise if the reply is empty/blocked"""
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        raise ResponseProviderError(
            "Gemini response had no candidates",
            operation="generate_reply",
            context={"prompt_feedback": data.get("promptFeedback") if isinstance(data, dict) else None}
        )

    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
    if not text:
        raise ResponseProviderError("Gemini returned an empty reply", operation="generate_reply")
    return text


@with_circuit_breaker(GEMINI_BREAKER)
async def _call_gemini(
    url: str,
    params: Dict[str, str],
    payload: Dict[str, Any],
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> Dict[str, Any]:
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.post(url, params=params, json=payload)
        response.raise_for_status()
        return response.json()


class GeminiResponseProvider(ResponseProvider):
    """Gemini generateContent over httpx"""

    name = "gemini"

    def __init__(
        self,
        api_key: str = GEMINI_API_KEY,
        model: str = GEMINI_MODEL,
        api_base: str = GEMINI_API_BASE,
        timeout: float = RESPONSE_PROVIDER_TIMEOUT,
        max_retries: int = PROVIDER_MAX_RETRIES,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    async def generate_reply(self, message: str, context: Sequence[ConversationEntry]) -> str:
        if not self.api_key:
            raise ResponseProviderError(
                "GEMINI_API_KEY is not configured",
                operation="generate_reply"
            )

        payload = {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": build_contents(message, context),
        }

        start = time.perf_counter()
        try:
            data = await retry_with_backoff(
                _call_gemini,
                self.url, {"key": self.api_key}, payload, self.timeout, self._transport,
                max_retries=self.max_retries
            )
            text = extract_reply_text(data)
        except CompanionError:
            record_api_call(self.name, False, time.perf_counter() - start)
            raise
        except pybreaker.CircuitBreakerError as e:
            record_api_call(self.name, False, time.perf_counter() - start)
            raise ResponseProviderError(
                "Gemini circuit breaker is open",
                operation="generate_reply",
                cause=e
            )
        except httpx.HTTPStatusError as e:
            record_api_call(self.name, False, time.perf_counter() - start)
            raise ResponseProviderError(
                f"Gemini returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                operation="generate_reply",
                cause=e
            )
        except (httpx.HTTPError, ValueError) as e:
            record_api_call(self.name, False, time.perf_counter() - start)
            raise ResponseProviderError(
                f"Gemini request failed: {type(e).__name__}: {e}",
                operation="generate_reply",
                cause=e
            )

        record_api_call(self.name, True, time.perf_counter() - start)
        logger.debug(f"Gemini reply ({len(text)} chars) with {len(context)} context turns")
        return text
