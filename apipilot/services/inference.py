# === apipilot/services/inference.py ===
"""Uniform call interface over the AI inference backends.

Every AI call in the service (document analysis, insights, dashboards) goes
through `InferenceDispatcher`. It picks a backend from the project's model hint,
retries transient failures with a linear backoff and turns the raw answer into
a JSON object.
"""
import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

import httpx
import openai
from openai import AsyncOpenAI

from apipilot.core.exceptions import InferenceError, NoStructuredOutput

logger = logging.getLogger(__name__)

OPENAI = "openai"
ANTHROPIC = "anthropic"

CLAUDE_MODEL_MAP = {
    "haiku": "claude-3-5-haiku-20241022",
    "sonnet": "claude-3-5-sonnet-20241022",
}

_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class InferenceBackend(Protocol):
    name: str

    async def infer(self, model_id: str, prompt_text: str, options: Dict[str, Any]) -> str:
        ...


def extract_json(text: Optional[str]) -> Dict[str, Any]:
    """Pull the JSON object out of a model answer.

    Markdown fences are dropped and the widest `{...}` span is parsed.
    Anything else raises NoStructuredOutput.
    """
    if not text:
        raise NoStructuredOutput(raw_text="")

    cleaned = _FENCE.sub("", text)
    match = _JSON_OBJECT.search(cleaned)
    if not match:
        raise NoStructuredOutput(raw_text=text)

    try:
        return json.loads(match.group())
    except json.JSONDecodeError as e:
        raise NoStructuredOutput(f"AI response JSON could not be parsed: {e}", raw_text=text) from e


class OpenAIBackend:
    name = OPENAI

    def __init__(self, api_key: str = "", client: Optional[AsyncOpenAI] = None, timeout: float = 120.0):
        self._api_key = api_key
        self._client = client
        self._timeout = timeout

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise InferenceError("OPENAI_API_KEY is not configured", status_code=401)
            # retries belong to the dispatcher
            self._client = AsyncOpenAI(api_key=self._api_key, max_retries=0, timeout=self._timeout)
        return self._client

    async def infer(self, model_id: str, prompt_text: str, options: Dict[str, Any]) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=model_id,
                messages=[{"role": "user", "content": prompt_text}],
                max_tokens=options.get("max_tokens"),
                temperature=options.get("temperature", 0.4),
            )
        except openai.APIStatusError as e:
            raise InferenceError(f"OpenAI request failed: {e.message}", status_code=e.status_code) from e
        except openai.APIConnectionError as e:
            raise InferenceError(f"OpenAI unreachable: {e}", no_response=True) from e

        if not response.choices or not response.choices[0].message.content:
            raise InferenceError("OpenAI returned an empty response", no_response=True)
        return response.choices[0].message.content


class AnthropicBackend:
    name = ANTHROPIC

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "https://api.anthropic.com",
        version: str = "2023-06-01",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/v1/messages"
        self._version = version
        self._timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport

    async def infer(self, model_id: str, prompt_text: str, options: Dict[str, Any]) -> str:
        if not self._api_key:
            raise InferenceError("ANTHROPIC_API_KEY is not configured", status_code=401)

        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": self._version,
            "content-type": "application/json",
        }
        body = {
            "model": model_id,
            "max_tokens": options.get("max_tokens") or 4096,
            "temperature": options.get("temperature", 0.4),
            "messages": [{"role": "user", "content": prompt_text}],
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=body, headers=headers)
        except httpx.TransportError as e:
            raise InferenceError(f"Anthropic unreachable: {e}", no_response=True) from e

        if response.status_code >= 400:
            raise InferenceError(
                f"Anthropic API error {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )

        blocks = response.json().get("content", [])
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        if not text:
            raise InferenceError("Anthropic returned an empty response", no_response=True)
        return text


class InferenceDispatcher:
    def __init__(
        self,
        backends: Dict[str, InferenceBackend],
        default_backend: str = OPENAI,
        default_model: str = "gpt-4o",
        max_retries: int = 2,
        base_delay: float = 2.0,
        max_tokens: int = 8192,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if default_backend not in backends:
            raise ValueError(f"Default backend '{default_backend}' is not registered")
        self.backends = backends
        self.default_backend = default_backend
        self.default_model = default_model
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_tokens = max_tokens
        self._sleep = sleep

    def resolve(self, provider_hint: Optional[str]) -> Tuple[str, str]:
        """Map a project model hint to (backend name, model id)."""
        hint = (provider_hint or "").strip()
        if hint in CLAUDE_MODEL_MAP and ANTHROPIC in self.backends:
            return ANTHROPIC, CLAUDE_MODEL_MAP[hint]
        if hint.startswith("claude-") and ANTHROPIC in self.backends:
            return ANTHROPIC, hint
        if hint.startswith(("gpt-", "o1", "o3", "o4")) and OPENAI in self.backends:
            return OPENAI, hint
        if hint:
            logger.info(f"Unknown model hint '{hint}', using {self.default_backend}/{self.default_model}")
        return self.default_backend, self.default_model

    async def infer_text(
        self,
        prompt: str,
        content: str,
        provider_hint: Optional[str] = None,
        content_label: str = "Document content",
        temperature: float = 0.4,
        max_tokens: Optional[int] = None,
    ) -> str:
        backend_name, model_id = self.resolve(provider_hint)
        backend = self.backends[backend_name]
        prompt_text = f"{prompt}\n\n{content_label}:\n{content}"
        options = {"temperature": temperature, "max_tokens": max_tokens or self.max_tokens}

        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                logger.info(f"Inference call {backend_name}/{model_id} attempt {attempt}/{attempts}")
                text = await backend.infer(model_id, prompt_text, options)
                if not text or not text.strip():
                    raise InferenceError("AI returned empty response", no_response=True)
                return text
            except InferenceError as e:
                if e.transient and attempt < attempts:
                    wait = self.base_delay * attempt
                    logger.warning(f"{backend_name} unavailable ({e}), retrying in {wait:.1f}s ({attempt}/{self.max_retries})")
                    await self._sleep(wait)
                    continue
                logger.error(f"Inference failed on {backend_name}/{model_id}: {e}")
                raise

        # the loop always returns or raises
        raise InferenceError("Inference retries exhausted")

    async def infer(self, prompt: str, content: str, provider_hint: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        text = await self.infer_text(prompt, content, provider_hint, **kwargs)
        return extract_json(text)
