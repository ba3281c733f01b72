"""Error taxonomy shared by the gateway, the assessment pipeline and the assistant."""

from typing import Any, Optional


class SailMatchError(Exception):
    """Base exception for all AI core errors."""
    pass


class ConfigurationError(SailMatchError):
    """No provider, model or use case is configured for a call."""
    pass


class ProviderError(SailMatchError):
    """A single provider attempt failed (timeout, HTTP error, empty body)."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        status_code: Optional[int] = None
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "error": str(self),
        }


class AllProvidersFailedError(ProviderError):
    """Every configured (provider, model) pair for a use case failed."""

    def __init__(self, use_case: str, attempts: list[dict[str, Any]]) -> None:
        self.use_case = use_case
        self.attempts = attempts

        if attempts:
            details = "; ".join(
                f"{a.get('provider')}/{a.get('model')}: {a.get('error')}"
                for a in attempts
            )
        else:
            details = "no provider attempted"

        super().__init__(f"All AI providers failed for use case: {use_case} ({details})")


class ParseError(SailMatchError):
    """Model output could not be parsed into the expected JSON shape."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class DataIntegrityError(SailMatchError):
    """A row required to proceed is missing from the store."""

    def __init__(self, entity: str, entity_id: Optional[str] = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity} not found" if entity_id is None else f"{entity} '{entity_id}' not found"
        super().__init__(message)


class ToolPermissionError(SailMatchError):
    """A tool call falls outside the caller's access tier."""

    def __init__(self, tool_name: str, reason: str) -> None:
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"Access to tool '{tool_name}' denied: {reason}")
