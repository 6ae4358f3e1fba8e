"""OpenRouter chat-completion client used for LLM translation."""

from __future__ import annotations

import http.client
import json
import logging
import socket
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from prompt_codec import EXCERPT_LIMIT, EncodedPrompt, preview
from translation_errors import ApiError, MalformedResponseError, MissingApiKeyError, NetworkError


logger = logging.getLogger("thirdspace.openrouter")

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str


class OpenRouterClient:
    """Performs a single request/response exchange per call; never retries."""

    endpoint = "https://openrouter.ai/api/v1/chat/completions"
    models_endpoint = "https://openrouter.ai/api/v1/models"

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def send(
        self,
        prompt: EncodedPrompt,
        model_id: str,
        api_key: str,
        reasoning_enabled: bool,
    ) -> str:
        """Return the assistant message text for ``prompt``."""

        _check_api_key(api_key)

        body: dict[str, Any] = {
            "model": model_id,
            "messages": [
                {"role": "system", "content": prompt.system_instruction},
                {"role": "user", "content": prompt.user_content},
            ],
        }
        if reasoning_enabled:
            body["reasoning"] = {"enabled": True}

        logger.info(
            "OpenRouter request prepared | model=%s reasoning=%s prompt_len=%d",
            model_id,
            reasoning_enabled,
            len(prompt.system_instruction) + len(prompt.user_content),
        )
        payload = self._request(
            self.endpoint,
            api_key,
            data=json.dumps(body, ensure_ascii=False).encode("utf-8"),
        )

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponseError(
                "Unexpected chat completion structure",
                excerpt=preview(json.dumps(payload, ensure_ascii=False), EXCERPT_LIMIT),
            ) from exc
        if not isinstance(content, str):
            raise MalformedResponseError(
                "Chat completion is missing message content",
                excerpt=preview(json.dumps(payload, ensure_ascii=False), EXCERPT_LIMIT),
            )

        logger.debug(
            "OpenRouter response parsed | response_len=%d preview=%s",
            len(content),
            preview(content, EXCERPT_LIMIT),
        )
        return content

    def fetch_models(self, api_key: str) -> List[ModelInfo]:
        """Return the model catalogue available to ``api_key``."""

        _check_api_key(api_key)

        payload = self._request(self.models_endpoint, api_key)
        try:
            entries = payload["data"]
            models = [ModelInfo(id=str(entry["id"]), name=str(entry.get("name") or entry["id"])) for entry in entries]
        except (KeyError, TypeError, AttributeError) as exc:
            raise MalformedResponseError(
                "Unexpected models response structure",
                excerpt=preview(json.dumps(payload, ensure_ascii=False), EXCERPT_LIMIT),
            ) from exc

        logger.info("Models parsed successfully | count=%d", len(models))
        return models

    def _request(self, url: str, api_key: str, *, data: Optional[bytes] = None) -> Any:
        headers = {
            "Authorization": f"Bearer {api_key.strip()}",
            "Accept": "application/json",
        }
        if data is not None:
            headers["Content-Type"] = "application/json"
        request = urllib.request.Request(
            url,
            data=data,
            headers=headers,
            method="POST" if data is not None else "GET",
        )

        started = time.perf_counter()
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = response.status
                raw = response.read()
        except urllib.error.HTTPError as exc:
            error_body = _read_error_body(exc)
            message = _extract_error_message(error_body)
            logger.error(
                "OpenRouter request failed | status=%s elapsed_ms=%d body=%s",
                exc.code,
                _elapsed_ms(started),
                preview(error_body, EXCERPT_LIMIT),
            )
            raise ApiError(exc.code, message) from exc
        except (socket.timeout, TimeoutError) as exc:
            logger.error("OpenRouter request timed out after %.1fs", self.timeout)
            raise NetworkError(f"Request timed out after {self.timeout:.1f}s") from exc
        except urllib.error.URLError as exc:
            reason = exc.reason
            logger.error("OpenRouter request failed | error=%s elapsed_ms=%d", reason, _elapsed_ms(started))
            if isinstance(reason, (socket.timeout, TimeoutError)):
                raise NetworkError(f"Request timed out after {self.timeout:.1f}s") from exc
            raise NetworkError(f"Network error while contacting OpenRouter: {reason}") from exc
        except OSError as exc:
            logger.error("OpenRouter connection failed | error=%s elapsed_ms=%d", exc, _elapsed_ms(started))
            raise NetworkError(f"Network error while contacting OpenRouter: {exc}") from exc
        except http.client.HTTPException as exc:
            logger.error("OpenRouter connection broken | error=%r elapsed_ms=%d", exc, _elapsed_ms(started))
            raise NetworkError(f"Connection to OpenRouter broke off: {exc!r}") from exc

        text = raw.decode("utf-8", errors="replace")
        if not 200 <= status < 300:
            logger.error("OpenRouter returned status %s | body=%s", status, preview(text, EXCERPT_LIMIT))
            raise ApiError(status, _extract_error_message(text))

        logger.info("OpenRouter response received | status=%s duration_ms=%d", status, _elapsed_ms(started))

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            logger.error("OpenRouter response parse failed | body=%s", preview(text, EXCERPT_LIMIT))
            raise MalformedResponseError(
                "Response body is not valid JSON",
                excerpt=preview(text, EXCERPT_LIMIT),
            ) from exc


def _check_api_key(api_key: str) -> None:
    if not api_key or not api_key.strip():
        raise MissingApiKeyError("API key is empty")
    try:
        api_key.strip().encode("ascii")
    except UnicodeEncodeError as exc:
        raise MissingApiKeyError(
            f"API key contains a character that cannot be sent in a header: {api_key.strip()[exc.start]!r}"
        ) from None


def filter_models(query: str, models: Sequence[ModelInfo], limit: int = 10) -> List[ModelInfo]:
    """Case-insensitive match on id or name, capped at ``limit`` entries."""

    needle = query.strip().lower()
    if not needle:
        return list(models[:limit])
    matches = [model for model in models if needle in model.id.lower() or needle in model.name.lower()]
    return matches[:limit]


def _read_error_body(exc: urllib.error.HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace")
    except Exception:  # pragma: no cover - body is best effort only
        return ""


def _extract_error_message(body: str) -> Optional[str]:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return None


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
