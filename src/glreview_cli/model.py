"""Gemini model client - turns review prompts into review text.

Thin async wrapper over the `generateContent` REST endpoint.
"""

from __future__ import annotations

import os
from typing import Any

import httpx

from .logging import get_logger

logger = get_logger("model")

DEFAULT_MODEL = "gemini-1.5-flash"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GENERATE_TIMEOUT = 120  # large repository prompts are slow
NO_RESPONSE = "No response generated"

GENERATION_CONFIG = {
    "temperature": 0.1,
    "topK": 32,
    "topP": 1,
    "maxOutputTokens": 8192,
}

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


class ModelError(Exception):
    """Error communicating with the model."""


class GeminiClient:
    """Client for the Gemini generateContent API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        base_url: str = GEMINI_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY")
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _payload(self, prompt: str) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": dict(GENERATION_CONFIG),
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
                for category in SAFETY_CATEGORIES
            ],
        }

    async def generate_content(self, prompt: str) -> str:
        """Send one prompt and return the first candidate's text."""
        if not self.api_key:
            raise ModelError(
                "Gemini API key not configured. Set GEMINI_API_KEY or pass --gemini-key."
            )

        url = f"{self.base_url}/models/{self.model}:generateContent"
        try:
            async with httpx.AsyncClient(timeout=GENERATE_TIMEOUT, transport=self._transport) as client:
                resp = await client.post(url, params={"key": self.api_key}, json=self._payload(prompt))
        except httpx.TimeoutException:
            raise ModelError(f"Model generation timed out after {GENERATE_TIMEOUT}s")
        except httpx.TransportError as e:
            raise ModelError(f"Cannot connect to Gemini API: {e}")

        if resp.status_code != 200:
            raise ModelError(f"Gemini API returned {resp.status_code}: {resp.text[:200]}")

        data = resp.json()
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            logger.warning("Gemini response had no candidate text")
            return NO_RESPONSE

    async def test_connection(self) -> dict[str, Any]:
        """Round-trip a trivial prompt. Never raises."""
        try:
            text = await self.generate_content("Hello, please respond with 'API connection successful'")
        except ModelError as e:
            return {"success": False, "message": str(e)}
        return {"success": True, "message": "Gemini API connection successful", "response": text[:100]}
