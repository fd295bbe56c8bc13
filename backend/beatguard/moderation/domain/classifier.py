"""Text classification through the OpenRouter chat completions API."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass, replace
from time import perf_counter
from typing import Any, Protocol

import httpx

from beatguard.obs import metrics

logger = logging.getLogger(__name__)

HANDLED_LABELS = ("safe", "hate", "harassment", "sexual", "violence")
ABUSE_LABELS = frozenset(HANDLED_LABELS) - {"safe"}
PENDING = "pending"

REASON_RATE_LIMITED = "rate_limited"
REASON_RATE_LIMIT_429 = "rate_limit_429"
REASON_QUOTA_EXCEEDED = "quota_exceeded"
REASON_INVALID_RESPONSE = "invalid_response"
REASON_PARSE_ERROR = "parse_error"
REASON_TIMEOUT = "timeout"
REASON_API_ERROR = "api_error"

MAX_TEXT_CHARS = 2000

SYSTEM_PROMPT = """You are a content moderation system.
Classify the user's text into exactly ONE of these categories:

- safe
- hate
- harassment
- sexual
- violence

Reply ONLY with JSON in this exact format:
{"verdict": "safe|hate|harassment|sexual|violence", "confidence": 0.0}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class Verdict:
    """Outcome of classifying one text blob.

    ``label`` is one of ``HANDLED_LABELS`` or ``pending``; pending verdicts carry a
    ``reason`` and no confidence.
    """

    label: str
    confidence: float | None = None
    reason: str | None = None
    cached: bool = False

    @classmethod
    def pending(cls, reason: str) -> "Verdict":
        return cls(label=PENDING, reason=reason)

    @property
    def is_pending(self) -> bool:
        return self.label == PENDING

    @property
    def is_safe(self) -> bool:
        return self.label == "safe"

    @property
    def is_abusive(self) -> bool:
        return self.label in ABUSE_LABELS

    def as_cached(self) -> "Verdict":
        return replace(self, cached=True)

    def to_json(self) -> str:
        return json.dumps({"verdict": self.label, "confidence": self.confidence})

    @classmethod
    def from_json(cls, raw: str | bytes | None) -> "Verdict | None":
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        return _validated(data)


class TextClassifier(Protocol):
    async def classify(self, text: str) -> Verdict:
        ...


def _validated(data: dict[str, Any]) -> Verdict | None:
    label = data.get("verdict")
    confidence = data.get("confidence")
    if not isinstance(label, str) or label not in HANDLED_LABELS:
        return None
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return None
    if not math.isfinite(confidence):
        return None
    return Verdict(label=label, confidence=min(1.0, max(0.0, float(confidence))))


def _strip_fences(content: str) -> str:
    text = content.strip()
    match = _FENCE_RE.match(text)
    return match.group(1) if match else text


@dataclass
class OpenRouterClassifier(TextClassifier):
    """Classifier gateway with timeout, bounded retry and response validation.

    ``classify`` never raises: every failure resolves to a pending verdict.
    429 and 402 answers are returned immediately, 5xx answers and transport
    failures are retried with linear backoff up to ``max_attempts`` calls.
    """

    http: httpx.AsyncClient
    api_key: str | None
    url: str = "https://openrouter.ai/api/v1/chat/completions"
    model: str = "meta-llama/llama-3.2-3b-instruct:free"
    timeout: float = 45.0
    max_attempts: int = 2
    backoff_seconds: float = 1.0
    max_chars: int = MAX_TEXT_CHARS

    async def classify(self, text: str) -> Verdict:
        try:
            return await self._classify(text)
        except Exception:  # noqa: BLE001 - gateway resolves every failure to a verdict
            logger.exception("Unexpected classifier failure")
            metrics.inc_classifier_call("error")
            return Verdict.pending(REASON_API_ERROR)

    async def _classify(self, text: str) -> Verdict:
        payload = self._payload(text[: self.max_chars])
        last_reason = REASON_API_ERROR
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            start = perf_counter()
            try:
                response = await self.http.post(
                    self.url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key or ''}"},
                    timeout=self.timeout,
                )
            except httpx.TimeoutException:
                last_reason = REASON_TIMEOUT
                metrics.inc_classifier_call("timeout", latency_seconds=perf_counter() - start)
                logger.warning("Classifier request timed out", extra={"attempt": attempt})
            except httpx.HTTPError as exc:
                last_reason = REASON_API_ERROR
                metrics.inc_classifier_call("transport_error", latency_seconds=perf_counter() - start)
                logger.warning(
                    "Classifier transport error",
                    extra={"attempt": attempt, "error": exc.__class__.__name__},
                )
            else:
                latency = perf_counter() - start
                code = response.status_code
                if code == 429:
                    metrics.inc_classifier_call("rate_limited", latency_seconds=latency)
                    logger.warning("Classifier rate limited upstream")
                    return Verdict.pending(REASON_RATE_LIMIT_429)
                if code == 402:
                    metrics.inc_classifier_call("quota_exceeded", latency_seconds=latency)
                    logger.error("Classifier credits exhausted")
                    return Verdict.pending(REASON_QUOTA_EXCEEDED)
                if code >= 500:
                    last_reason = REASON_API_ERROR
                    metrics.inc_classifier_call("server_error", latency_seconds=latency)
                    logger.warning("Classifier server error", extra={"status": code, "attempt": attempt})
                elif code >= 400:
                    metrics.inc_classifier_call("client_error", latency_seconds=latency)
                    logger.error("Classifier rejected request", extra={"status": code})
                    return Verdict.pending(REASON_API_ERROR)
                else:
                    verdict = self._parse(response)
                    metrics.inc_classifier_call(
                        verdict.reason if verdict.is_pending else "ok",
                        latency_seconds=latency,
                    )
                    return verdict
            if attempt < attempts:
                await asyncio.sleep(self.backoff_seconds * attempt)
        logger.error("Classifier retries exhausted", extra={"reason": last_reason, "attempts": attempts})
        return Verdict.pending(last_reason)

    def _payload(self, text: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": text},
            ],
            "temperature": 0,
        }

    def _parse(self, response: httpx.Response) -> Verdict:
        try:
            body = response.json()
            content = body["choices"][0]["message"]["content"]
            result = json.loads(_strip_fences(content))
        except (ValueError, KeyError, IndexError, TypeError, AttributeError):
            logger.warning("Classifier response could not be parsed")
            return Verdict.pending(REASON_PARSE_ERROR)
        if not isinstance(result, dict):
            logger.warning("Classifier response is not an object")
            return Verdict.pending(REASON_PARSE_ERROR)
        verdict = _validated(result)
        if verdict is None:
            logger.warning(
                "Classifier returned an unknown verdict",
                extra={"verdict": str(result.get("verdict"))[:32]},
            )
            return Verdict.pending(REASON_INVALID_RESPONSE)
        return verdict


__all__ = [
    "ABUSE_LABELS",
    "HANDLED_LABELS",
    "MAX_TEXT_CHARS",
    "OpenRouterClassifier",
    "PENDING",
    "REASON_API_ERROR",
    "REASON_INVALID_RESPONSE",
    "REASON_PARSE_ERROR",
    "REASON_QUOTA_EXCEEDED",
    "REASON_RATE_LIMITED",
    "REASON_RATE_LIMIT_429",
    "REASON_TIMEOUT",
    "TextClassifier",
    "Verdict",
]
