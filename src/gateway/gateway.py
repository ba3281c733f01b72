"""AI Gateway - ordered multi-provider fallback.

Every AI call in the system goes through `AIGateway.call_ai`. For the
requested use case the gateway walks the configured (provider, model) pairs
in order, skipping providers without a credential, and returns the first
non-empty answer. Each attempt runs under its own timeout and the whole
chain under an overall deadline. A pair is never retried.
"""

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import GatewayConfig
from shared.errors import AllProvidersFailedError, ConfigurationError, ProviderError
from shared.logging import get_logger
from shared.models import AIRequest, AIResponse, ImageAttachment
from gateway.providers import AIProvider, create_provider

logger = get_logger(__name__)


class AIGateway:
    """
    Single entry point for model calls.

    The gateway holds no mutable configuration: the routing table is an
    immutable GatewayConfig passed in at construction.
    """

    def __init__(
        self,
        config: GatewayConfig,
        providers: Optional[dict[str, AIProvider]] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        """
        Initialize the gateway.

        Args:
            config: Immutable provider/model routing table
            providers: Pre-built adapters by provider name (tests inject mocks)
            http_client: Shared client for adapters the gateway builds itself
        """
        self.config = config
        self._providers: dict[str, AIProvider] = dict(providers or {})
        self._injected = set(self._providers)
        self._http_client = http_client

    def _has_credential(self, provider: str) -> bool:
        return provider in self._injected or self.config.has_credential(provider)

    def _get_provider(self, name: str) -> AIProvider:
        provider = self._providers.get(name)
        if provider is None:
            provider = create_provider(
                name,
                self.config.api_key(name) or "",
                client=self._http_client
            )
            self._providers[name] = provider
        return provider

    async def call_ai(
        self,
        use_case: str,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        image: Optional[ImageAttachment] = None,
        images: Optional[list[ImageAttachment]] = None
    ) -> AIResponse:
        """
        Run a prompt through the use case's fallback chain.

        Args:
            use_case: Named category selecting providers and defaults
            prompt: Full prompt text
            temperature: Explicit sampling temperature (highest priority)
            max_tokens: Explicit output cap (highest priority)
            image: Optional image for vision-capable models
            images: Several images, e.g. a document and a photo to compare

        Returns:
            Text from the first successful pair, with its provider and model

        Raises:
            ConfigurationError: If the use case resolves to no providers at all
            AllProvidersFailedError: If every attempt failed or was skipped
        """
        return await self.complete(AIRequest(
            use_case=use_case,
            prompt=prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            images=([image] if image else []) + list(images or []),
        ))

    async def complete(self, request: AIRequest) -> AIResponse:
        routes = self.config.routes_for(request.use_case)
        if not routes:
            raise ConfigurationError(f"No AI providers configured for use case: {request.use_case}")

        attempts: list[dict[str, Any]] = []
        started = time.monotonic()
        deadline = started + self.config.chain_deadline_seconds

        for route in routes:
            if not self._has_credential(route.provider):
                logger.debug(
                    "Skipping provider without API key",
                    provider=route.provider,
                    use_case=request.use_case
                )
                continue

            for model in route.models:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    attempts.append({
                        "provider": route.provider,
                        "model": model,
                        "error": "Chain deadline exceeded before attempt",
                    })
                    logger.warning(
                        "AI chain deadline exceeded",
                        use_case=request.use_case,
                        deadline_seconds=self.config.chain_deadline_seconds
                    )
                    raise AllProvidersFailedError(request.use_case, attempts)

                timeout = min(self.config.attempt_timeout_seconds, remaining)
                temperature = self.config.resolve_temperature(
                    request.use_case, route, request.temperature
                )
                max_tokens = self.config.resolve_max_tokens(
                    request.use_case, route, request.max_tokens
                )

                logger.info(
                    "AI attempt",
                    use_case=request.use_case,
                    provider=route.provider,
                    model=model,
                    timeout=timeout
                )

                attempt_started = time.monotonic()
                try:
                    provider = self._get_provider(route.provider)
                    text = await asyncio.wait_for(
                        provider.generate(
                            model=model,
                            prompt=request.prompt,
                            temperature=temperature,
                            max_tokens=max_tokens,
                            images=request.images,
                        ),
                        timeout=timeout,
                    )
                except asyncio.TimeoutError:
                    error = f"Timed out after {timeout:.0f}s"
                except ProviderError as e:
                    error = str(e)
                except ConfigurationError as e:
                    error = str(e)
                except Exception as e:
                    error = f"Unexpected {type(e).__name__}: {e}"
                    logger.exception(
                        "AI attempt raised unexpectedly",
                        use_case=request.use_case,
                        provider=route.provider,
                        model=model
                    )
                else:
                    if isinstance(text, str) and text.strip():
                        logger.info(
                            "AI attempt succeeded",
                            use_case=request.use_case,
                            provider=route.provider,
                            model=model,
                            duration_ms=round((time.monotonic() - attempt_started) * 1000, 2)
                        )
                        return AIResponse(text=text, provider=route.provider, model=model)
                    error = "Empty response from provider"

                attempts.append({"provider": route.provider, "model": model, "error": error})
                logger.warning(
                    "AI attempt failed",
                    use_case=request.use_case,
                    provider=route.provider,
                    model=model,
                    error=error
                )

        logger.error(
            "All AI providers failed",
            use_case=request.use_case,
            attempts=len(attempts),
            duration_ms=round((time.monotonic() - started) * 1000, 2)
        )
        raise AllProvidersFailedError(request.use_case, attempts)

    def health(self) -> dict[str, Any]:
        """Which providers hold credentials."""
        names = {route.provider for route in self.config.providers}
        for use_case in self.config.use_cases.values():
            names.update(route.provider for route in use_case.providers)

        return {
            "providers": {name: self._has_credential(name) for name in sorted(names)},
            "use_cases": sorted(self.config.use_cases),
        }

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
