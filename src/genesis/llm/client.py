from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Iterable

import httpx

from genesis.config import DEFAULT_API_BASE, DEFAULT_MODEL
from genesis.errors import MalformedResponse, MissingCredential, NetworkError, UpstreamError
from genesis.memory import MemoryMessage
from genesis.sessions.schema import Role
from genesis.settings import Settings

logger = logging.getLogger(__name__)

SYSTEM_POLICY = (
    "You are AI Genesis, a helpful assistant. "
    "Reply in the same language the user writes in. "
    "Be honest: if you do not know something or are unsure, say so plainly "
    "instead of guessing, and never invent facts, sources, quotes or links. "
    "Use concise markdown when it helps readability."
)

MIN_OUTPUT_TOKENS = 1
MAX_OUTPUT_TOKENS = 2048
PROBE_MESSAGE = "ping"
PROBE_TEMPERATURE = 0.0
PROBE_MAX_TOKENS = 16

_UPSTREAM_ROLES = {Role.USER: "user", Role.ASSISTANT: "model"}


@dataclass(frozen=True, slots=True)
class GenerationResult:
    text: str
    elapsed_ms: int


def clamp_temperature(value: Any) -> float:
    try:
        temperature = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(temperature):
        return 0.0
    return min(1.0, max(0.0, temperature))


def clamp_max_tokens(value: Any) -> int:
    try:
        tokens = int(value)
    except (TypeError, ValueError, OverflowError):
        return MAX_OUTPUT_TOKENS
    return min(MAX_OUTPUT_TOKENS, max(MIN_OUTPUT_TOKENS, tokens))


def build_contents(messages: Iterable[MemoryMessage]) -> list[dict[str, Any]]:
    contents = []
    for message in messages:
        if not message.text:
            continue
        contents.append(
            {"role": _UPSTREAM_ROLES[Role(message.role)], "parts": [{"text": message.text}]}
        )
    return contents


def extract_text(payload: Any) -> str:
    """Concatenate the non-empty text parts of the first candidate."""
    if not isinstance(payload, dict):
        return ""
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    first = candidates[0] if isinstance(candidates[0], dict) else {}
    content = first.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    texts = [p.get("text") for p in parts if isinstance(p, dict)]
    return "".join(t for t in texts if isinstance(t, str) and t)


def _error_message(response: httpx.Response) -> str:
    fallback = f"request failed (status {response.status_code})"
    try:
        body = response.json()
    except ValueError:
        return fallback
    error = body.get("error") if isinstance(body, dict) else None
    message = error.get("message") if isinstance(error, dict) else None
    return message if isinstance(message, str) and message else fallback


class GenerationClient:
    """Single-attempt client for the Gemini ``generateContent`` endpoint."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_base: str = DEFAULT_API_BASE,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ):
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    @property
    def url(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    def build_payload(
        self, messages: Iterable[MemoryMessage], temperature: Any, max_tokens: Any
    ) -> dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": SYSTEM_POLICY}]},
            "contents": build_contents(messages),
            "generationConfig": {
                "temperature": clamp_temperature(temperature),
                "maxOutputTokens": clamp_max_tokens(max_tokens),
            },
        }

    def generate(self, messages: Iterable[MemoryMessage], settings: Settings) -> GenerationResult:
        return self._request(
            messages,
            api_key=settings.api_key,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )

    def test_key(self, credential: str) -> GenerationResult:
        """Validate ``credential`` with a cheap probe; session state is untouched."""
        return self._request(
            [MemoryMessage(role=Role.USER, text=PROBE_MESSAGE)],
            api_key=credential,
            temperature=PROBE_TEMPERATURE,
            max_tokens=PROBE_MAX_TOKENS,
        )

    def _request(
        self,
        messages: Iterable[MemoryMessage],
        *,
        api_key: str | None,
        temperature: Any,
        max_tokens: Any,
    ) -> GenerationResult:
        api_key = (api_key or "").strip()
        if not api_key:
            raise MissingCredential()

        payload = self.build_payload(messages, temperature, max_tokens)
        logger.debug(
            f"Requesting {self.model} with {len(payload['contents'])} messages "
            f"(temperature={payload['generationConfig']['temperature']}, "
            f"max_tokens={payload['generationConfig']['maxOutputTokens']})"
        )

        started = time.perf_counter()
        try:
            response = self.client.post(self.url, params={"key": api_key}, json=payload)
        except httpx.RequestError as e:
            logger.warning(f"Generation request failed: {type(e).__name__}")
            raise NetworkError(f"Network error: {type(e).__name__}") from e
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        if not response.is_success:
            message = _error_message(response)
            logger.warning(f"Generation request returned HTTP {response.status_code}: {message}")
            raise UpstreamError(response.status_code, message)

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse("Response body is not valid JSON") from e

        text = extract_text(data)
        logger.info(f"Generation finished in {elapsed_ms}ms ({len(text)} chars)")
        return GenerationResult(text=text, elapsed_ms=elapsed_ms)
