"""AI Gateway - multi-provider model calls with ordered fallback."""

from gateway.gateway import AIGateway
from gateway.providers import AIProvider, MockProvider, create_provider

__all__ = [
    "AIGateway",
    "AIProvider",
    "MockProvider",
    "create_provider",
]
