import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse, urlunparse
import requests


logger = logging.getLogger(__name__)


class LLMServiceError(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class LLMClient:
    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 2,
        post_fn: Optional[Callable[..., Any]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.base_url = _normalize_base_url(base_url)
        self.timeout = timeout
        self.max_retries = max_retries
        self._post = post_fn or requests.post
        self._sleep = sleep_fn or time.sleep

    def generate_json(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        temperature: float = 0.1,
    ) -> Dict[str, Any]:
        provider = self.provider.lower().strip()
        if provider == "openai":
            return self._openai_chat_completion(
                endpoint_path="/v1/chat/completions",
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                schema=schema,
                temperature=temperature,
            )
        if provider == "gemini":
            return self._gemini_generate_content(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                schema=schema,
                temperature=temperature,
            )
        raise ValueError(f"Unsupported provider: {self.provider}")

    def _openai_chat_completion(
        self,
        endpoint_path: str,
        system_prompt: str,
        user_prompt: str,
        schema: Optional[Dict[str, Any]],
        temperature: float,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint_path}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt + _schema_hint(schema)},
            ],
        }
        data = self._post_with_retry(url, headers, payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise LLMServiceError("Malformed chat completion response")
        return _safe_json_parse(content or "{}")

    def _gemini_generate_content(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: Optional[Dict[str, Any]],
        temperature: float,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }
        payload = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_prompt + _schema_hint(schema)}]}],
            "generationConfig": {
                "temperature": temperature,
                "responseMimeType": "application/json",
            },
        }
        data = self._post_with_retry(url, headers, payload)
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            raise LLMServiceError("Empty response from Gemini")
        text = "".join(str(part.get("text", "")) for part in parts)
        if not text.strip():
            raise LLMServiceError("Empty response from Gemini")
        return _safe_json_parse(text)

    def _post_with_retry(self, url: str, headers: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        last_err: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                resp = self._post(url, headers=headers, json=payload, timeout=self.timeout)
                resp.raise_for_status()
                return resp.json()
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
                last_err = exc
                logger.warning(
                    "%s request failed (attempt %d/%d): %s",
                    self.provider,
                    attempt + 1,
                    self.max_retries + 1,
                    exc,
                )
                if attempt < self.max_retries:
                    self._sleep(min(2 ** attempt, 4))
            except requests.exceptions.HTTPError as exc:
                status = getattr(exc.response, "status_code", None)
                raise LLMServiceError(
                    f"{self.provider} request failed with status {status}", status=status
                ) from exc
        if last_err is None:
            raise LLMServiceError(f"{self.provider} request failed without response payload")
        raise last_err


def _schema_hint(schema: Optional[Dict[str, Any]]) -> str:
    if not schema:
        return ""
    return (
        "\n\nReturn JSON only that matches this schema (no markdown):\n"
        + json.dumps(schema, ensure_ascii=False)
    )


def _safe_json_parse(text: str) -> Dict[str, Any]:
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end == -1 or end <= start:
            raise
        return json.loads(text[start : end + 1])


def _normalize_base_url(base_url: str) -> str:
    """Accept root URL, /v1 URL, or full chat completions endpoint and normalize."""
    raw = (base_url or "").strip()
    if not raw:
        return ""

    parsed = urlparse(raw)
    if not parsed.scheme or not parsed.netloc:
        return raw.rstrip("/")

    path = parsed.path.rstrip("/")
    lowered = path.lower()
    chat_suffix = "/chat/completions"
    v1_suffix = "/v1"

    if lowered.endswith(chat_suffix):
        path = path[: -len(chat_suffix)]
        lowered = path.lower()
    if lowered.endswith(v1_suffix):
        path = path[: -len(v1_suffix)]

    normalized = parsed._replace(path=path, params="", query="", fragment="")
    return urlunparse(normalized).rstrip("/")


def build_llm_clients(config) -> List[LLMClient]:
    """Primary client first, then the Gemini fallback when it is configured."""
    clients: List[LLMClient] = []
    if config.llm_provider == "gemini":
        api_key = config.llm_api_key or config.gemini_api_key
        if api_key:
            clients.append(
                LLMClient(
                    provider="gemini",
                    model=config.gemini_model_name,
                    api_key=api_key,
                    base_url=config.gemini_base_url,
                    timeout=config.llm_timeout_seconds,
                    max_retries=config.llm_max_retries,
                )
            )
        return clients
    if config.llm_api_key:
        clients.append(
            LLMClient(
                provider=config.llm_provider,
                model=config.llm_model_name,
                api_key=config.llm_api_key,
                base_url=config.llm_base_url,
                timeout=config.llm_timeout_seconds,
                max_retries=config.llm_max_retries,
            )
        )
    if config.gemini_api_key:
        clients.append(
            LLMClient(
                provider="gemini",
                model=config.gemini_model_name,
                api_key=config.gemini_api_key,
                base_url=config.gemini_base_url,
                timeout=config.llm_timeout_seconds,
                max_retries=config.llm_max_retries,
            )
        )
    return clients
