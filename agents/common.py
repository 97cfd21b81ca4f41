"""Shared helpers for agent functions."""
import json
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional

from orchestrator.errors import BackendUnavailable, GenerationTimeout, MalformedResponse
from orchestrator.settings import build_config, load_section

DEFAULT_MODEL = "gpt-oss-20B"


@dataclass
class LLMConfig:
    base_url: str = "http://localhost:1234/v1"
    api_key: str = ""
    model: str = DEFAULT_MODEL
    temperature: float = 0.6
    max_tokens: int = 0
    timeout_sec: float = 172800.0


_ENV = {
    "base_url": "LLM_BASE_URL",
    "api_key": "LLM_API_KEY",
    "model": "LLM_MODEL",
    "temperature": "LLM_TEMPERATURE",
    "max_tokens": "LLM_MAX_TOKENS",
    "timeout_sec": "LLM_TIMEOUT_SEC",
}


def load_llm_config(path: Optional[str] = None) -> LLMConfig:
    return build_config(LLMConfig, load_section("llm", path), _ENV)


class LLMClient:
    """OpenAI-compatible chat client (LM Studio, vLLM, ...)."""

    def __init__(self, config: Optional[LLMConfig] = None) -> None:
        self.config = config or load_llm_config()
        self.last_raw: Optional[str] = None
        self.last_prompt: Optional[str] = None

    def resolve_model(self, model: Optional[str]) -> str:
        if model and model.strip():
            return model.strip()
        return self.config.model or DEFAULT_MODEL

    def complete(self, prompt: str, model: Optional[str] = None, timeout: Optional[float] = None) -> Any:
        """Send a single user message and return the decoded response body.

        The body is returned as-is; callers pull the text out with
        ``orchestrator.text_normalizer.extract_text``. ``timeout`` can only
        shorten the configured HTTP timeout.
        """
        self.last_prompt = prompt
        http_timeout = self.config.timeout_sec
        if timeout is not None:
            if timeout <= 0:
                raise GenerationTimeout("LLM call has no time left before it starts", label="text generation")
            http_timeout = min(http_timeout, timeout)
        url = self.config.base_url.rstrip("/") + "/chat/completions"
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        payload: Dict[str, Any] = {
            "model": self.resolve_model(model),
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.config.temperature,
        }
        if self.config.max_tokens > 0:
            payload["max_tokens"] = self.config.max_tokens

        req = urllib.request.Request(url, data=json.dumps(payload).encode("utf-8"), headers=headers)
        try:
            with urllib.request.urlopen(req, timeout=http_timeout) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            raise BackendUnavailable(f"LLM HTTP {exc.code} {exc.reason}: {body[:500]}") from exc
        except (urllib.error.URLError, socket.timeout, ConnectionError) as exc:
            raise BackendUnavailable(f"LLM connection failed for {url}: {exc}") from exc
        self.last_raw = raw
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedResponse(f"LLM returned non-JSON body: {raw[:200]!r}") from exc
