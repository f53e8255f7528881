from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI, OpenAIError

from ..logging import get_logger


LOG = get_logger("nlu-client")


class NluError(Exception):
    """Any failure talking to the language model: timeout, HTTP, bad JSON, no key."""


@dataclass
class NluConfig:
    api_key: Optional[str]
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None
    timeout_seconds: float = 5.0
    temperature: float = 0.1
    max_tokens: int = 500


_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """If the model wrapped JSON in ``` or ```json fences, return the inner content."""
    match = _FENCE_RE.search(text)
    if match and match.group(1):
        return match.group(1).strip()
    return text.replace("```json", "").replace("```", "").strip()


def _scavenge_json_object(s: str) -> Optional[Dict[str, Any]]:
    start = s.find("{")
    end = s.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(s[start : end + 1])
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def decode_json_object(text: Optional[str]) -> Dict[str, Any]:
    """Decode a model reply into a dict or raise NluError."""
    if not text or not text.strip():
        raise NluError("empty response from model")
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except ValueError:
        data = _scavenge_json_object(cleaned)
        if data is None:
            LOG.debug("Model output not valid JSON; first 300 chars: %r", text[:300])
            raise NluError("model output is not valid JSON")
    if not isinstance(data, dict):
        raise NluError("model output is not a JSON object")
    return data


class NluClient:
    """Chat-completions client constrained to JSON output.

    Talks to any OpenAI-compatible endpoint (OpenAI, OpenRouter) with a hard
    timeout and no retries; every failure surfaces as NluError.
    """

    def __init__(self, config: NluConfig) -> None:
        if not config.api_key:
            raise NluError("NLU API key is not configured")
        self.config = config
        timeout = float(config.timeout_seconds)
        self._http = httpx.Client(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 3.0)),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )
        self._client = OpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            http_client=self._http,
            max_retries=0,
            timeout=timeout,
        )
        LOG.info("NLU client ready (model=%s, timeout=%ss)", config.model, timeout)

    def complete_json(self, system_prompt: str, user_message: str) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]
        t0 = time.perf_counter()
        try:
            completion = self._client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                response_format={"type": "json_object"},
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                timeout=self.config.timeout_seconds,
            )
        except (APIConnectionError, APITimeoutError) as exc:
            LOG.error("Network/timeout while calling NLU model: %s", exc)
            raise NluError(f"NLU request failed: {exc}") from exc
        except APIStatusError as exc:
            body = getattr(getattr(exc, "response", None), "text", None)
            LOG.error("NLU API returned %s. Body preview: %r", getattr(exc, "status_code", "?"), (body[:300] if body else None))
            raise NluError(f"NLU API returned HTTP {getattr(exc, 'status_code', '?')}") from exc
        except OpenAIError as exc:
            LOG.error("NLU call failed: %s", exc)
            raise NluError(str(exc)) from exc

        choice = completion.choices[0] if getattr(completion, "choices", None) else None
        text = choice.message.content if choice and getattr(choice, "message", None) else None
        LOG.info("NLU responded in %.2fs id=%s", time.perf_counter() - t0, getattr(completion, "id", None))
        return decode_json_object(text)

    def close(self) -> None:
        self._http.close()
