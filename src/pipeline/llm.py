from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx

from src.config import Settings
from src.models.normalization import NormalizationGroup, NormalizationResult
from src.pipeline.errors import (
    ConfigurationError,
    GroupingClientError,
    ParseError,
    PermanentAPIError,
    TransientAPIError,
)
from src.pipeline.prompts import grouping_user_prompt

logger = logging.getLogger(__name__)

DEFAULT_GROUP_CONFIDENCE = 0.9

_FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


def _balanced_object_span(text: str) -> str | None:
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json_object(content: str, *, required_key: str | None = None) -> dict[str, Any]:
    """Pull the first JSON object out of free-form model output.

    Tried in order: the first fenced code block, the first balanced ``{...}``
    span, then the whole trimmed text. With ``required_key``, objects whose
    value for that key is not a list are passed over.
    """
    fenced = _FENCED_BLOCK_RE.search(content)
    candidates = [
        fenced.group(1).strip() if fenced else None,
        _balanced_object_span(content),
        content.strip(),
    ]
    for candidate in candidates:
        if not candidate:
            continue
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict):
            continue
        if required_key is None or isinstance(data.get(required_key), list):
            return data
    raise ParseError("Could not parse JSON from AI response")


def _clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_GROUP_CONFIDENCE
    if confidence != confidence:
        return DEFAULT_GROUP_CONFIDENCE
    return min(1.0, max(0.0, confidence))


def parse_grouping_response(content: str) -> NormalizationResult:
    try:
        data = extract_json_object(content, required_key="normalizations")
    except ParseError as exc:
        raise ParseError("AI response has no 'normalizations' list") from exc
    raw_groups: list[Any] = data["normalizations"]

    groups: list[NormalizationGroup] = []
    for raw in raw_groups:
        if not isinstance(raw, dict):
            continue
        canonical = str(raw.get("canonical") or "").strip()
        variants = raw.get("variants")
        if not canonical or not isinstance(variants, list):
            logger.debug("Skipping malformed normalization group: %r", raw)
            continue
        groups.append(
            NormalizationGroup(
                canonical=canonical,
                variants=[str(v) for v in variants if isinstance(v, str) and v.strip()],
                confidence=_clamp_confidence(raw.get("confidence", DEFAULT_GROUP_CONFIDENCE)),
            )
        )
    return NormalizationResult(normalizations=groups)


class SemanticGroupingClient:
    """Chat-completion client that groups name variants under canonical names.

    One instance owns one rate limiter: consecutive requests are spaced by at
    least ``ai_min_request_interval_seconds`` measured from when the previous
    request returned. Rate-limited requests are retried with exponential
    backoff; every other failure is raised immediately.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self.settings = settings
        self._sleep = sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_request_finished: float | None = None
        self.request_count = 0

    @property
    def provider(self) -> str:
        return self.settings.ai_provider

    def is_configured(self) -> bool:
        if not self.settings.ai_api_key():
            return False
        if self.provider == "azure":
            return bool(self.settings.azure_openai_endpoint and self.settings.ai_model)
        return True

    def _configuration_error(self) -> ConfigurationError:
        if self.provider == "azure":
            return ConfigurationError("Azure OpenAI not configured (need endpoint, key, and deployment)")
        return ConfigurationError("OpenAI API key not configured")

    def _build_request(
        self, system_prompt: str, user_prompt: str
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        body: dict[str, Any] = {
            "messages": messages,
            "temperature": self.settings.ai_temperature,
            "max_tokens": self.settings.ai_max_tokens,
        }
        if self.provider == "azure":
            endpoint = (self.settings.azure_openai_endpoint or "").rstrip("/")
            url = (
                f"{endpoint}/openai/deployments/{self.settings.ai_model}/chat/completions"
                f"?api-version={self.settings.azure_openai_api_version}"
            )
            headers = {"api-key": self.settings.azure_openai_api_key or ""}
            return url, headers, body

        url = f"{self.settings.openai_base_url.rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {self.settings.openai_api_key}"}
        body["model"] = self.settings.ai_model
        return url, headers, body

    async def _call_chat_completion(self, *, system_prompt: str, user_prompt: str) -> str:
        url, headers, body = self._build_request(system_prompt, user_prompt)
        async with httpx.AsyncClient(timeout=self.settings.ai_timeout_seconds) as client:
            response = await client.post(url, json=body, headers=headers)
            response.raise_for_status()
        try:
            payload = response.json()
            content = payload["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ParseError("Unexpected chat completion payload") from exc
        if not content:
            raise ParseError("No response content from AI")
        return str(content)

    async def _wait_for_slot(self) -> None:
        interval = self.settings.ai_min_request_interval_seconds
        if self._last_request_finished is None or interval <= 0:
            return
        remaining = interval - (self._clock() - self._last_request_finished)
        if remaining > 0:
            await self._sleep(remaining)

    async def _attempt(self, *, system_prompt: str, user_prompt: str) -> str | GroupingClientError:
        async with self._lock:
            await self._wait_for_slot()
            self.request_count += 1
            try:
                return await self._call_chat_completion(
                    system_prompt=system_prompt, user_prompt=user_prompt
                )
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status in self.settings.ai_rate_limit_status_code_set():
                    return TransientAPIError(f"{self.provider} rate limited ({status})", status_code=status)
                return PermanentAPIError(f"{self.provider} API error: {status}", status_code=status)
            except httpx.HTTPError as exc:
                return PermanentAPIError(f"{self.provider} request failed: {exc!r}")
            except GroupingClientError as exc:
                return exc
            finally:
                self._last_request_finished = self._clock()

    async def complete(self, *, system_prompt: str, user_prompt: str) -> str:
        if not self.is_configured():
            raise self._configuration_error()

        max_attempts = self.settings.ai_max_retries
        outcome: str | GroupingClientError = TransientAPIError("no attempt made")
        for attempt in range(max_attempts):
            outcome = await self._attempt(system_prompt=system_prompt, user_prompt=user_prompt)
            if not isinstance(outcome, TransientAPIError):
                break
            if attempt + 1 < max_attempts:
                delay = self.settings.ai_retry_backoff_base_seconds * (2**attempt)
                logger.warning(
                    "Grouping request rate limited (attempt %d/%d), retrying in %.2fs",
                    attempt + 1,
                    max_attempts,
                    delay,
                    extra={"event_type": "grouping.rate_limited", "ops_payload": {"attempt": attempt + 1}},
                )
                await self._sleep(delay)

        if isinstance(outcome, GroupingClientError):
            raise outcome
        return outcome

    async def group(
        self, system_prompt: str, names: Sequence[str], *, noun: str = "names"
    ) -> NormalizationResult:
        if not names:
            return NormalizationResult()
        content = await self.complete(
            system_prompt=system_prompt,
            user_prompt=grouping_user_prompt(names, noun=noun),
        )
        try:
            return parse_grouping_response(content)
        except ParseError:
            logger.error("Failed to parse AI grouping response: %.500s", content)
            raise
