"""
Text-generation backends for the gateway.

The gateway only needs "prompt in, text out"; anything that satisfies
TextGenerator can stand in (tests use in-memory fakes).
"""

from __future__ import annotations

import json
import os
import re
import time
from typing import Any, Optional, Protocol

import anthropic

from campaign_lab.experiments.errors import GatewayUnavailable
from infra.logging_config import get_logger

logger = get_logger(__name__)


class TextGenerator(Protocol):
    def generate(self, prompt: str, *, system: str = "") -> str:
        ...


class AnthropicTextGenerator:
    """
    Thin wrapper around the Anthropic SDK.

    The SDK's own retries are switched off (max_retries=0): a failed call
    must fall back immediately instead of being retried.
    """

    def __init__(
        self,
        *,
        model: str,
        timeout_s: float = 20.0,
        max_tokens: int = 2048,
        api_key: Optional[str] = None,
    ) -> None:
        self.model = model
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._client: Optional[anthropic.Anthropic] = None

    @classmethod
    def from_settings(cls, settings) -> AnthropicTextGenerator:
        return cls(model=settings.model, timeout_s=settings.timeout_s, max_tokens=settings.max_tokens)

    def _ensure_client(self) -> anthropic.Anthropic:
        if self._client is None:
            api_key = self._api_key or os.environ.get("ANTHROPIC_API_KEY")
            if not api_key:
                raise GatewayUnavailable("ANTHROPIC_API_KEY is not set")
            self._client = anthropic.Anthropic(
                api_key=api_key,
                timeout=self.timeout_s,
                max_retries=0,
            )
        return self._client

    def generate(self, prompt: str, *, system: str = "") -> str:
        client = self._ensure_client()
        start = time.monotonic()
        response = client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system or anthropic.NOT_GIVEN,
            messages=[{"role": "user", "content": prompt}],
        )
        text = "".join(
            getattr(block, "text", "") for block in (response.content or [])
        )
        logger.debug(
            "generation ok: %d chars in %.1fs", len(text), time.monotonic() - start
        )
        return text


# --- error classification ---

QUOTA = "quota"
NETWORK = "network"
UNEXPECTED = "unexpected"

_QUOTA_NAMES = {"RateLimitError"}
_NETWORK_NAMES = {
    "APIConnectionError",
    "APITimeoutError",
    "InternalServerError",
    "ServiceUnavailableError",
    "OverloadedError",
}
# Status codes quoted in an error message, matched as whole numbers
_QUOTA_STATUS = re.compile(r"\b429\b")
_SERVER_STATUS = re.compile(r"\b5\d\d\b")


def classify_error(exc: BaseException) -> str:
    """Bucket a backend failure as quota, network or unexpected."""
    names = {cls.__name__ for cls in type(exc).__mro__}
    if names & _QUOTA_NAMES:
        return QUOTA
    if names & _NETWORK_NAMES or isinstance(exc, (TimeoutError, ConnectionError)):
        return NETWORK

    status = getattr(exc, "status_code", None)
    if status == 429:
        return QUOTA
    if isinstance(status, int) and status >= 500:
        return NETWORK

    msg = str(exc)
    if "RESOURCE_EXHAUSTED" in msg or _QUOTA_STATUS.search(msg):
        return QUOTA
    if _SERVER_STATUS.search(msg) or "fetch failed" in msg or "timed out" in msg.lower():
        return NETWORK
    return UNEXPECTED


# --- response parsing ---

def extract_json(text: str) -> Any:
    """
    Pull a JSON object/array out of a model reply that may carry code
    fences or preamble. Raises ValueError if nothing parses.
    """
    text = (text or "").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    fenced = re.search(r"```(?:json)?\s*\n?(.*?)```", text, re.DOTALL)
    if fenced:
        try:
            return json.loads(fenced.group(1).strip())
        except json.JSONDecodeError:
            pass

    for start_char, end_char in (("{", "}"), ("[", "]")):
        start_idx = text.find(start_char)
        if start_idx == -1:
            continue
        depth = 0
        for i in range(start_idx, len(text)):
            if text[i] == start_char:
                depth += 1
            elif text[i] == end_char:
                depth -= 1
                if depth == 0:
                    try:
                        return json.loads(text[start_idx : i + 1])
                    except json.JSONDecodeError:
                        break

    raise ValueError(f"no JSON found in response ({len(text)} chars)")
