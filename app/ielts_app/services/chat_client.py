"""Client wrapper around an OpenAI-compatible chat completions API."""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import requests
from flask import current_app

from ..config import ProviderSettings
from .errors import MalformedProviderResponse, ProviderUnavailable


class ChatCompletionClient:
    """Lightweight client for structured JSON generation via chat completions.

    The client performs exactly one HTTP request per call. Retry policy, if
    any, belongs to the caller.
    """

    def __init__(self, settings: ProviderSettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self._session = session

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        post = self._session.post if self._session is not None else requests.post
        return post(
            self.settings.api_url,
            json=payload,
            headers={
                'Authorization': f'Bearer {self.settings.api_key}',
                'Content-Type': 'application/json',
            },
            timeout=self.settings.timeout,
        )

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a system/user prompt pair and return the parsed JSON object.

        Raises:
            ProviderUnavailable: missing API key, transport error, timeout or
                non-2xx status.
            MalformedProviderResponse: the reply carries no message content or
                the content is not a JSON object.
        """
        if not self.is_configured:
            current_app.logger.error("Feedback provider not configured - API key missing")
            raise ProviderUnavailable('Feedback provider API key not configured')

        payload = {
            'model': self.settings.model,
            'messages': [
                {'role': 'system', 'content': system_prompt},
                {'role': 'user', 'content': user_prompt},
            ],
            'temperature': self.settings.temperature if temperature is None else temperature,
            'max_tokens': max_tokens,
        }

        try:
            response = self._post(payload)
            response.raise_for_status()
        except requests.exceptions.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            current_app.logger.error("Feedback provider HTTP error: %s - %s", status_code, exc)
            raise ProviderUnavailable(f'Feedback provider returned HTTP {status_code}', status_code) from exc
        except requests.exceptions.Timeout as exc:
            current_app.logger.error(
                "Feedback provider timed out after %ss: %s", self.settings.timeout, exc
            )
            raise ProviderUnavailable('Feedback provider request timed out') from exc
        except requests.exceptions.RequestException as exc:
            current_app.logger.error("Feedback provider request failed: %s", exc)
            raise ProviderUnavailable(f'Feedback provider request failed: {exc}') from exc

        if not 200 <= response.status_code < 300:
            current_app.logger.error("Feedback provider returned non-success status: %s", response.status_code)
            raise ProviderUnavailable(
                f'Feedback provider returned HTTP {response.status_code}', response.status_code
            )

        try:
            data = response.json()
        except ValueError as exc:
            current_app.logger.error("Failed to parse provider response body as JSON: %s", exc)
            raise MalformedProviderResponse('Provider response body is not JSON') from exc

        text = self._extract_message_text(data)
        if not text:
            current_app.logger.error(
                "Provider response contained no message content. Full response: %s",
                str(data)[:500],
            )
            raise MalformedProviderResponse('Provider response has no message content')

        parsed = self._robust_parse_json(text)
        if not isinstance(parsed, dict):
            current_app.logger.error(
                "Provider JSON parsing failed. Text length: %s, First 500 chars: %s",
                len(text),
                text[:500],
            )
            raise MalformedProviderResponse('Provider content is not a JSON object', raw_text=text)
        return parsed

    @staticmethod
    def _extract_message_text(data: Any) -> str:
        """Return ``choices[0].message.content`` or '' when absent."""
        if not isinstance(data, dict):
            return ''
        choices: List[Any] = data.get('choices') or []
        if not choices or not isinstance(choices[0], dict):
            return ''
        message = choices[0].get('message') or {}
        content = message.get('content') if isinstance(message, dict) else None
        return content.strip() if isinstance(content, str) else ''

    @staticmethod
    def _parse_json_response(text: str) -> Optional[Any]:
        """Attempt to parse JSON payload even if wrapped in fences."""
        if not text:
            return None

        text = text.strip()

        # Handle markdown code fences
        if text.startswith("```"):
            parts = text.split("```")
            text = parts[1] if len(parts) > 1 else text
            if text.startswith("json"):
                text = text[4:]
            text = text.strip()

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            current_app.logger.debug("JSON decode error at position %s: %s", e.pos, e.msg)
            return None

    @staticmethod
    def _robust_parse_json(text: str) -> Optional[Any]:
        """Parse JSON, falling back to the first balanced object inside stray prose."""
        parsed = ChatCompletionClient._parse_json_response(text)
        if parsed is not None:
            return parsed

        candidate = ChatCompletionClient._extract_json_object(text)
        if candidate:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                return None
        return None

    @staticmethod
    def _extract_json_object(text: str) -> Optional[str]:
        """Extract the first brace-balanced ``{...}`` substring from text."""
        start = text.find("{")
        if start == -1:
            return None

        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            char = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif char == '\\':
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == '{':
                depth += 1
            elif char == '}':
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        return None
