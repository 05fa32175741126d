from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any

import httpx

from review_pipeline.core.config import settings
from review_pipeline.core.logging import get_logger, log_event
from review_pipeline.core.metrics import observe_llm_latency

logger = get_logger(__name__)

_SYSTEM_PROMPT = (
    "You are an expert code reviewer.\n"
    "Review the submission described by the user and return JSON only."
)

_RATE_LIMIT_WARNING_REMAINING = 100


class ReviewerError(RuntimeError):
    failure_category = "reviewer_error"


class ReviewerTimeout(ReviewerError):
    failure_category = "reviewer_timeout"


class ReviewerRateLimited(ReviewerError):
    failure_category = "rate_limited"


class InvalidReviewerResponse(ReviewerError):
    failure_category = "invalid_response"


@dataclass(frozen=True)
class ReviewerResponse:
    result: dict[str, Any]
    model: str
    input_tokens: int
    output_tokens: int


class Reviewer:
    def review(self, *, prompt: str, model: str) -> ReviewerResponse:  # pragma: no cover
        raise NotImplementedError


class ChatCompletionsReviewer(Reviewer):
    """Reviewer backed by an OpenAI-compatible `/chat/completions` endpoint (Groq by default)."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        max_tokens: int | None = None,
        client: httpx.Client | None = None,
    ):
        self._url = (base_url or settings.reviewer_base_url).rstrip("/") + "/chat/completions"
        self._api_key = api_key if api_key is not None else settings.reviewer_api_key
        self._timeout = float(timeout_seconds or settings.reviewer_timeout_seconds)
        self._max_tokens = int(max_tokens or settings.reviewer_max_tokens)
        self._client = client

    def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if self._client is not None:
            return self._client.post(self._url, headers=headers, json=payload, timeout=self._timeout)
        return httpx.post(
            self._url, headers=headers, json=payload, timeout=self._timeout, follow_redirects=True
        )

    def review(self, *, prompt: str, model: str) -> ReviewerResponse:
        if not self._api_key:
            raise ReviewerError("Reviewer API key is not configured")

        payload = {
            "model": model,
            "temperature": 0.7,
            "top_p": 0.9,
            "max_tokens": self._max_tokens,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        start = time.monotonic()
        try:
            resp = self._post(payload)
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise ReviewerTimeout(f"Reviewer timed out after {self._timeout}s") from e
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            if code == 429:
                reset_at = e.response.headers.get("x-ratelimit-reset")
                raise ReviewerRateLimited(f"Rate limited by reviewer. Reset at: {reset_at}") from e
            raise ReviewerError(f"Reviewer returned HTTP {code}") from e
        except httpx.HTTPError as e:
            raise ReviewerError(f"Reviewer request failed: {e}") from e
        finally:
            observe_llm_latency(model=model, duration_s=time.monotonic() - start)

        self._check_rate_limit(resp)

        try:
            raw = resp.json()
            content = raw["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise InvalidReviewerResponse("Unexpected reviewer response shape") from e

        result = _parse_json_object(content if isinstance(content, str) else "")
        if not isinstance(result, dict):
            raise InvalidReviewerResponse("Reviewer response did not contain a JSON object")

        usage = raw.get("usage") or {}
        return ReviewerResponse(
            result=result,
            model=str(raw.get("model") or model),
            input_tokens=int(usage.get("prompt_tokens") or 0),
            output_tokens=int(usage.get("completion_tokens") or 0),
        )

    def _check_rate_limit(self, resp: httpx.Response) -> None:
        remaining = resp.headers.get("x-ratelimit-remaining-requests")
        if remaining is None:
            return
        try:
            remaining_n = int(remaining)
        except ValueError:
            return
        if remaining_n <= _RATE_LIMIT_WARNING_REMAINING:
            log_event(
                logger,
                "reviewer.rate_limit.low",
                level=logging.WARNING,
                remaining_requests=remaining_n,
                reset_at=resp.headers.get("x-ratelimit-reset"),
            )


def _parse_json_object(content: str) -> Any:
    c = (content or "").strip()
    if not c:
        return None
    # Strip markdown code fences the model sometimes wraps around JSON.
    c = re.sub(r"```(?:json)?\s*", "", c).strip()
    try:
        return json.loads(c)
    except ValueError:
        pass

    m = re.search(r"\{.*\}", c, re.S)
    if not m:
        return None
    try:
        return json.loads(m.group(0))
    except ValueError:
        return None


def get_reviewer() -> Reviewer:
    return ChatCompletionsReviewer()
