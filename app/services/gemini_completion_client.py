import asyncio
import json
from collections.abc import Mapping
from http.client import RemoteDisconnected
from typing import Any, Protocol
from urllib import error, parse, request

_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class CompletionServiceError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class CompletionService(Protocol):
    async def complete(self, prompt: str) -> str: ...


class GeminiCompletionClient:
    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: float = 30.0,
        api_base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.api_base_url = api_base_url.rstrip("/")

    async def complete(self, prompt: str) -> str:
        response_payload = await asyncio.to_thread(self._generate, prompt)
        return self._extract_text_response(response_payload)

    def _generate(self, prompt: str) -> dict[str, Any]:
        query = parse.urlencode({"key": self.api_key})
        endpoint = f"{self.api_base_url}/models/{self.model}:generateContent?{query}"
        payload = {
            "system_instruction": {
                "parts": [
                    {
                        "text": (
                            "You are a meeting analyst. Summarize meetings and extract "
                            "actionable follow-ups. Reply with valid JSON only."
                        ),
                    },
                ],
            },
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.1,
                "responseMimeType": "application/json",
            },
        }
        req = request.Request(
            endpoint,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise CompletionServiceError("Gemini API request timed out.", retryable=True) from exc
        except RemoteDisconnected as exc:
            raise CompletionServiceError(
                "Gemini API connection was closed before sending a response.",
                retryable=True,
            ) from exc
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            raise CompletionServiceError(
                f"Gemini API HTTP {exc.code}: {body or 'empty response body'}",
                status_code=exc.code,
                retryable=exc.code in _RETRYABLE_STATUS_CODES,
            ) from exc
        except error.URLError as exc:
            raise CompletionServiceError(
                f"Gemini API connection error: {exc.reason}",
                retryable=True,
            ) from exc

        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise CompletionServiceError("Gemini API returned invalid JSON.") from exc

        if not isinstance(parsed_body, dict):
            raise CompletionServiceError("Gemini API response is not a JSON object.")
        return parsed_body

    def _extract_text_response(self, payload: Mapping[str, Any]) -> str:
        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise CompletionServiceError("Gemini API response missing candidates.")

        first_candidate = candidates[0]
        if not isinstance(first_candidate, Mapping):
            raise CompletionServiceError("Gemini API response candidate is invalid.")

        content = first_candidate.get("content")
        if not isinstance(content, Mapping):
            raise CompletionServiceError("Gemini API response missing content.")

        parts = content.get("parts")
        if not isinstance(parts, list):
            raise CompletionServiceError("Gemini API response missing content parts.")

        chunks: list[str] = []
        for part in parts:
            if not isinstance(part, Mapping):
                continue
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                chunks.append(text.strip())

        if not chunks:
            raise CompletionServiceError("Gemini API response did not include text output.")
        return "\n".join(chunks)
