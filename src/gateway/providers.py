"""Provider adapters for the AI gateway.

Each adapter turns (model, prompt, sampling params, optional images) into one
HTTP call and returns the generated text. Adapters raise ProviderError on any
failure; choosing the next provider is the gateway's job, not theirs.

Supported providers:
- OpenRouter (OpenAI-compatible, vision capable)
- DeepSeek (OpenAI-compatible)
- Groq (OpenAI-compatible)
- Google Gemini (generateContent, v1beta with v1 fallback, vision capable)
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import httpx

from shared.errors import ConfigurationError, ProviderError
from shared.logging import get_logger
from shared.models import ImageAttachment

logger = get_logger(__name__)


class AIProvider(ABC):
    """
    Abstract base class for AI providers.

    A provider only knows how to talk to one vendor API. It never decides
    fallback order, timeouts or which use case it serves.
    """

    name: str = "abstract"
    supports_images: bool = False

    @abstractmethod
    async def generate(
        self,
        model: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        images: Sequence[ImageAttachment] = ()
    ) -> str:
        """
        Generate text for a single prompt.

        Returns:
            Non-empty generated text

        Raises:
            ProviderError: On HTTP errors, network errors or an empty body
        """
        pass

    async def close(self) -> None:
        pass


class HTTPProvider(AIProvider):
    """Base for providers reached over HTTPS with an httpx client."""

    def __init__(
        self,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None
    ) -> None:
        if not api_key:
            raise ConfigurationError(f"API key missing for provider {self.name}")
        self.api_key = api_key
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            # Per-attempt timeout is enforced by the gateway
            self._client = httpx.AsyncClient(timeout=None)
            self._owns_client = True
        return self._client

    async def _post_json(
        self,
        model: str,
        url: str,
        payload: dict[str, Any],
        headers: Optional[dict[str, str]] = None
    ) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Request failed: {type(e).__name__}: {e}",
                provider=self.name,
                model=model
            )

        if response.status_code >= 400:
            raise ProviderError(
                f"HTTP {response.status_code}: {response.text[:500]}",
                provider=self.name,
                model=model,
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError:
            raise ProviderError("Response body is not JSON", provider=self.name, model=model)

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class OpenAICompatibleProvider(HTTPProvider):
    """Chat-completions style API: `choices[0].message.content`."""

    endpoint: str = ""

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _message_content(self, prompt: str, images: Sequence[ImageAttachment]) -> Any:
        if not images:
            return prompt
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for image in images:
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:{image.mime_type};base64,{image.data}"},
            })
        return content

    async def generate(
        self,
        model: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        images: Sequence[ImageAttachment] = ()
    ) -> str:
        if images and not self.supports_images:
            raise ProviderError(
                "Provider does not accept image input",
                provider=self.name,
                model=model
            )

        payload = {
            "model": model,
            "messages": [
                {"role": "user", "content": self._message_content(prompt, images)}
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        data = await self._post_json(model, self.endpoint, payload, self._headers())

        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            text = None

        if not text or not str(text).strip():
            raise ProviderError("Empty response from provider", provider=self.name, model=model)
        return str(text)


class OpenRouterProvider(OpenAICompatibleProvider):
    name = "openrouter"
    endpoint = "https://openrouter.ai/api/v1/chat/completions"
    supports_images = True

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["X-Title"] = "SailMatch"
        return headers


class DeepSeekProvider(OpenAICompatibleProvider):
    name = "deepseek"
    endpoint = "https://api.deepseek.com/chat/completions"


class GroqProvider(OpenAICompatibleProvider):
    name = "groq"
    endpoint = "https://api.groq.com/openai/v1/chat/completions"


class GeminiProvider(HTTPProvider):
    """
    Google Gemini generateContent API.

    Newer models are published on v1beta first and stable ones on v1, so a
    failure on v1beta is retried once on v1 before the model is abandoned.
    """

    name = "gemini"
    supports_images = True
    base_url = "https://generativelanguage.googleapis.com"
    api_versions = ("v1beta", "v1")

    def _payload(
        self,
        prompt: str,
        temperature: float,
        max_tokens: int,
        images: Sequence[ImageAttachment]
    ) -> dict[str, Any]:
        parts: list[dict[str, Any]] = [{"text": prompt}]
        for image in images:
            parts.append({
                "inline_data": {"mime_type": image.mime_type, "data": image.data}
            })
        return {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }

    async def generate(
        self,
        model: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        images: Sequence[ImageAttachment] = ()
    ) -> str:
        payload = self._payload(prompt, temperature, max_tokens, images)
        errors: list[str] = []

        for version in self.api_versions:
            url = f"{self.base_url}/{version}/models/{model}:generateContent?key={self.api_key}"
            try:
                data = await self._post_json(model, url, payload)
                text = self._extract_text(data)
                if not text:
                    raise ProviderError("Empty response from provider", provider=self.name, model=model)
                return text
            except ProviderError as e:
                logger.debug("Gemini API version failed", model=model, version=version, error=str(e))
                errors.append(f"{version}: {e}")

        raise ProviderError(
            "All Gemini API versions failed (" + "; ".join(errors) + ")",
            provider=self.name,
            model=model
        )

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> Optional[str]:
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None
        if not isinstance(text, str) or not text.strip():
            return None
        return text


class MockProvider(AIProvider):
    """
    Scripted provider for tests.

    Responses are consumed in order. An Exception instance in the script is
    raised instead of returned; an exhausted script returns `default`.
    """

    supports_images = True

    def __init__(
        self,
        name: str = "mock",
        responses: Optional[list[Any]] = None,
        default: Optional[str] = "This is a mock response."
    ) -> None:
        self.name = name
        self._responses = list(responses or [])
        self.default = default
        self.call_history: list[dict[str, Any]] = []

    def queue(self, *responses: Any) -> None:
        self._responses.extend(responses)

    async def generate(
        self,
        model: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        images: Sequence[ImageAttachment] = ()
    ) -> str:
        self.call_history.append({
            "model": model,
            "prompt": prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "images": list(images),
        })

        response = self._responses.pop(0) if self._responses else self.default
        if isinstance(response, BaseException):
            raise response
        if not response:
            raise ProviderError("Empty response from provider", provider=self.name, model=model)
        return response


PROVIDER_CLASSES: dict[str, type[HTTPProvider]] = {
    "openrouter": OpenRouterProvider,
    "deepseek": DeepSeekProvider,
    "groq": GroqProvider,
    "gemini": GeminiProvider,
}


def create_provider(
    name: str,
    api_key: str,
    client: Optional[httpx.AsyncClient] = None
) -> AIProvider:
    """
    Factory function to create a provider adapter.

    Raises:
        ConfigurationError: If the provider is not supported
    """
    provider_class = PROVIDER_CLASSES.get(name)
    if not provider_class:
        raise ConfigurationError(
            f"Unsupported AI provider: {name}. "
            f"Supported: {list(PROVIDER_CLASSES.keys())}"
        )

    logger.debug("Creating AI provider", provider=name)
    return provider_class(api_key, client=client)
