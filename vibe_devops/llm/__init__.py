"""AI providers - direct HTTP calls to Gemini, Ollama and OpenAI-compatible APIs."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from vibe_devops.config import DEFAULT_API_KEY_PLACEHOLDER, Config
from vibe_devops.exceptions import (
    ConfigurationError,
    ProviderAPIError,
    ProviderError,
    ProviderNotConfiguredError,
)
from vibe_devops.logging import get_logger

log = get_logger(__name__)


GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
OLLAMA_BASE_URL = "http://localhost:11434"
OPENAI_BASE_URL = "https://api.openai.com/v1"


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class GenerateRequest:
    """Either a flat prompt or a list of chat messages."""

    prompt: str = ""
    messages: list[Message] = field(default_factory=list)
    model: str = ""

    def as_prompt(self) -> str:
        prompt = self.prompt.strip()
        if not prompt and self.messages:
            prompt = "\n".join(f"{m.role}: {m.content}" for m in self.messages).strip()
        return prompt

    def as_messages(self) -> list[dict[str, str]]:
        if self.messages:
            return [
                {"role": m.role if m.role in ("system", "assistant") else "user", "content": m.content}
                for m in self.messages
            ]
        if self.prompt:
            return [{"role": "user", "content": self.prompt}]
        return []


@dataclass
class GenerateResponse:
    """Response from a provider."""

    text: str
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)


@dataclass
class StreamChunk:
    """One element of a streamed response; errors travel as values."""

    content: str = ""
    error: BaseException | None = None


class Provider(ABC):
    """Abstract base class for AI providers."""

    name: str = ""

    @abstractmethod
    async def is_configured(self) -> None:
        """Raise ProviderNotConfiguredError when credentials are unusable."""
        pass

    @abstractmethod
    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        pass

    @abstractmethod
    def stream_generate(self, request: GenerateRequest) -> AsyncIterator[str]:
        pass

    async def close(self) -> None:
        pass


def _api_error(label: str, status_code: int, body: str) -> ProviderAPIError:
    return ProviderAPIError(f"{label} API error {status_code}: {body}", status_code=status_code)


class _HTTPProvider(Provider):
    """Shared httpx client lifecycle."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 120.0):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_client:
            await self.client.aclose()


class GeminiProvider(_HTTPProvider):
    """Google Gemini REST provider."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-pro",
        base_url: str = GEMINI_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(client)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    async def is_configured(self) -> None:
        key = (self.api_key or "").strip()
        if not key or key == DEFAULT_API_KEY_PLACEHOLDER:
            raise ProviderNotConfiguredError(self.name, "gemini API key is not configured")
        if not (self.model or "").strip():
            raise ProviderNotConfiguredError(self.name, "gemini model is not configured")

    def _url(self, model: str, method: str) -> str:
        model = (model or self.model).removeprefix("models/")
        return f"{self.base_url}/models/{model}:{method}"

    def _body(self, request: GenerateRequest) -> dict[str, Any]:
        prompt = request.as_prompt()
        if not prompt:
            raise ProviderError("empty prompt")
        return {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Generate a completion."""
        url = self._url(request.model, "generateContent")
        body = self._body(request)
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}

        try:
            log.debug("Calling Gemini", model=self.model, url=url)
            response = await self.client.post(url, json=body, headers=headers)
            if not response.is_success:
                raise _api_error("Gemini", response.status_code, response.text)

            data = response.json()
            text = self._extract_text(data)
            if not text:
                raise ProviderError("gemini returned no content")

            usage_meta = data.get("usageMetadata") or {}
            return GenerateResponse(
                text=text,
                model=self.model,
                usage={
                    "prompt_tokens": int(usage_meta.get("promptTokenCount", 0) or 0),
                    "completion_tokens": int(usage_meta.get("candidatesTokenCount", 0) or 0),
                },
            )
        except ProviderError:
            raise
        except httpx.HTTPError as e:
            raise ProviderAPIError(f"Gemini HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise ProviderError(f"Gemini response decode error: {e}")

    async def stream_generate(self, request: GenerateRequest) -> AsyncIterator[str]:
        """Stream a completion over server-sent events."""
        url = self._url(request.model, "streamGenerateContent")
        body = self._body(request)
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}

        try:
            async with self.client.stream(
                "POST", url, params={"alt": "sse"}, json=body, headers=headers
            ) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise _api_error("Gemini", response.status_code, error_text)

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    try:
                        chunk = json.loads(line[5:].strip())
                    except json.JSONDecodeError:
                        continue
                    text = self._extract_text(chunk)
                    if text:
                        yield text
        except ProviderError:
            raise
        except httpx.HTTPError as e:
            raise ProviderAPIError(f"Gemini streaming error: {e}")


class OllamaProvider(_HTTPProvider):
    """Direct Ollama API provider."""

    name = "ollama"

    def __init__(
        self,
        model: str = "llama3",
        base_url: str = OLLAMA_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(client)
        self.model = model or "llama3"
        self.base_url = (base_url or OLLAMA_BASE_URL).rstrip("/")

    async def is_configured(self) -> None:
        try:
            response = await self.client.get(f"{self.base_url}/api/tags")
        except httpx.HTTPError as e:
            raise ProviderNotConfiguredError(self.name, f"ollama connection failed: {e}")
        if not response.is_success:
            raise ProviderNotConfiguredError(
                self.name, f"ollama connection failed: HTTP {response.status_code}"
            )

    def _body(self, request: GenerateRequest, stream: bool) -> dict[str, Any]:
        return {
            "model": request.model or self.model,
            "messages": request.as_messages(),
            "stream": stream,
        }

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Generate a completion."""
        url = f"{self.base_url}/api/chat"
        try:
            log.debug("Calling Ollama", model=self.model, url=url)
            response = await self.client.post(url, json=self._body(request, stream=False))
            if not response.is_success:
                raise _api_error("Ollama", response.status_code, response.text)

            data = response.json()
            return GenerateResponse(
                text=data.get("message", {}).get("content", ""),
                model=self.model,
                usage={
                    "prompt_tokens": data.get("prompt_eval_count", 0),
                    "completion_tokens": data.get("eval_count", 0),
                },
            )
        except ProviderError:
            raise
        except httpx.HTTPError as e:
            raise ProviderAPIError(f"Ollama HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise ProviderError(f"Ollama response decode error: {e}")

    async def stream_generate(self, request: GenerateRequest) -> AsyncIterator[str]:
        """Stream a completion (newline-delimited JSON)."""
        url = f"{self.base_url}/api/chat"
        try:
            async with self.client.stream("POST", url, json=self._body(request, stream=True)) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise _api_error("Ollama", response.status_code, error_text)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    content = chunk.get("message", {}).get("content")
                    if content:
                        yield content
                    if chunk.get("done"):
                        break
        except ProviderError:
            raise
        except httpx.HTTPError as e:
            raise ProviderAPIError(f"Ollama streaming error: {e}")


class OpenAIProvider(_HTTPProvider):
    """OpenAI-compatible chat completions provider."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = OPENAI_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(client)
        self.api_key = api_key
        self.model = model
        self.base_url = (base_url or OPENAI_BASE_URL).rstrip("/")

    async def is_configured(self) -> None:
        if not (self.api_key or "").strip():
            raise ProviderNotConfiguredError(self.name, "openai API key is not configured")

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Generate a completion."""
        url = f"{self.base_url}/chat/completions"
        body = {"model": request.model or self.model, "messages": request.as_messages()}
        try:
            log.debug("Calling OpenAI", model=self.model, url=url)
            response = await self.client.post(url, json=body, headers=self._headers())
            if not response.is_success:
                raise _api_error("OpenAI", response.status_code, response.text)

            data = response.json()
            choices = data.get("choices") or []
            if not choices:
                raise ProviderError("openai returned no choices")
            usage = data.get("usage") or {}
            return GenerateResponse(
                text=(choices[0].get("message") or {}).get("content") or "",
                model=str(data.get("model") or self.model),
                usage={
                    "prompt_tokens": int(usage.get("prompt_tokens", 0) or 0),
                    "completion_tokens": int(usage.get("completion_tokens", 0) or 0),
                },
            )
        except ProviderError:
            raise
        except httpx.HTTPError as e:
            raise ProviderAPIError(f"OpenAI HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise ProviderError(f"OpenAI response decode error: {e}")

    async def stream_generate(self, request: GenerateRequest) -> AsyncIterator[str]:
        """Stream a completion over server-sent events."""
        url = f"{self.base_url}/chat/completions"
        body = {
            "model": request.model or self.model,
            "messages": request.as_messages(),
            "stream": True,
        }
        try:
            async with self.client.stream("POST", url, json=body, headers=self._headers()) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise _api_error("OpenAI", response.status_code, error_text)

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    payload = line[5:].strip()
                    if payload == "[DONE]":
                        break
                    try:
                        chunk = json.loads(payload)
                    except json.JSONDecodeError:
                        continue
                    for choice in chunk.get("choices") or []:
                        content = (choice.get("delta") or {}).get("content")
                        if content:
                            yield content
        except ProviderError:
            raise
        except httpx.HTTPError as e:
            raise ProviderAPIError(f"OpenAI streaming error: {e}")


async def list_gemini_models(
    api_key: str,
    base_url: str = GEMINI_BASE_URL,
    client: httpx.AsyncClient | None = None,
) -> list[str]:
    """Return Gemini model names that support generateContent."""
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=30.0)
    models: list[str] = []
    page_token = ""
    try:
        while True:
            params = {"pageSize": "100"}
            if page_token:
                params["pageToken"] = page_token
            response = await client.get(
                f"{base_url.rstrip('/')}/models",
                params=params,
                headers={"x-goog-api-key": api_key},
            )
            if not response.is_success:
                raise _api_error("Gemini", response.status_code, response.text)
            data = response.json()
            for item in data.get("models") or []:
                if "generateContent" in (item.get("supportedGenerationMethods") or []):
                    models.append(str(item.get("name", "")))
            page_token = str(data.get("nextPageToken") or "")
            if not page_token:
                break
    except httpx.HTTPError as e:
        raise ProviderAPIError(f"failed to list models: {e}")
    finally:
        if owns_client:
            await client.aclose()
    return models


def create_provider(
    provider: str = "gemini",
    model: str = "",
    api_key: str | None = None,
    base_url: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> Provider:
    """Create a provider.

    Args:
        provider: Provider name (gemini, ollama, openai)
        model: Model name
        api_key: API key where the backend needs one
        base_url: Optional base URL / host override
        client: Optional shared httpx client

    Returns:
        Configured Provider instance
    """
    name = (provider or "").strip().lower()
    if name == "gemini":
        return GeminiProvider(
            api_key=api_key or "",
            model=model or "gemini-pro",
            base_url=base_url or GEMINI_BASE_URL,
            client=client,
        )
    if name == "ollama":
        return OllamaProvider(model=model or "llama3", base_url=base_url or OLLAMA_BASE_URL, client=client)
    if name == "openai":
        return OpenAIProvider(
            api_key=api_key or "",
            model=model or "gpt-4o-mini",
            base_url=base_url or OPENAI_BASE_URL,
            client=client,
        )
    raise ConfigurationError(f"unsupported AI provider: {provider}")


def create_provider_from_config(config: Config) -> Provider:
    """Build the active provider described by `.vibe.yaml`."""
    ai = config.ai
    if ai.provider == "gemini":
        return create_provider("gemini", model=ai.gemini.model, api_key=ai.gemini.api_key)
    if ai.provider == "ollama":
        return create_provider("ollama", model=ai.ollama.model, base_url=ai.ollama.host)
    if ai.provider == "openai":
        return create_provider(
            "openai",
            model=ai.openai.model,
            api_key=ai.openai.api_key,
            base_url=ai.openai.base_url,
        )
    raise ConfigurationError(f"unsupported AI provider: {ai.provider}")
