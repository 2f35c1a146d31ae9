"""Exception hierarchy for the action engine.

Exceptions that correspond to an HTTP outcome carry a ``status_code``
attribute so the error classifier treats them the same way it treats
``httpx.HTTPStatusError`` raised by the commerce backend.
"""

import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from commerce_assistant.services.error_handling import ClassifiedError


class AssistantError(Exception):
    """Base class for all action engine errors."""


class ConfigErrorKind(enum.StrEnum):
    UNREADABLE = "unreadable"
    PARSE = "parse"
    STRUCTURE = "structure"
    DUPLICATE_ID = "duplicate_id"
    DANGLING_DEPENDENCY = "dangling_dependency"
    UNKNOWN_STEP = "unknown_step"
    COMPOSITION_CYCLE = "composition_cycle"
    INVALID_OVERRIDE = "invalid_override"


class ConfigError(AssistantError):
    """The action configuration could not be loaded or built."""

    def __init__(self, kind: ConfigErrorKind, errors: list[str] | None = None) -> None:
        self.kind = kind
        self.errors = errors or []
        detail = "; ".join(self.errors) if self.errors else kind.value
        super().__init__(f"Invalid action configuration ({kind.value}): {detail}")


class HandlerNotFoundError(AssistantError):
    """A ``function`` action names a handler missing from the handler map."""

    def __init__(self, action_id: str, handler: str) -> None:
        self.action_id = action_id
        self.handler = handler
        super().__init__(f"No handler '{handler}' registered for action '{action_id}'")


class ActionNotFoundError(AssistantError):
    status_code = 404

    def __init__(self, action_id: str, mode: str) -> None:
        self.action_id = action_id
        self.mode = mode
        super().__init__(f"Action '{action_id}' is not available in {mode} mode")


class ValidationError(AssistantError):
    """Parameters or input failed validation for an action."""

    status_code = 422

    def __init__(self, action_id: str, errors: list[str]) -> None:
        self.action_id = action_id
        self.errors = errors
        super().__init__(f"Parameter validation failed for '{action_id}': {'; '.join(errors)}")


class AuthenticationRequiredError(AssistantError):
    status_code = 401

    def __init__(self, action_id: str) -> None:
        self.action_id = action_id
        super().__init__(f"Authentication required for action '{action_id}'")


class PermissionDeniedError(AssistantError):
    status_code = 403

    def __init__(self, action_id: str, missing: list[str]) -> None:
        self.action_id = action_id
        self.missing = missing
        super().__init__(
            f"Missing permissions for action '{action_id}': {', '.join(sorted(missing))}"
        )


class RateLimitExceededError(AssistantError):
    status_code = 429

    def __init__(self, action_id: str, limit: str) -> None:
        self.action_id = action_id
        self.limit = limit
        super().__init__(f"Rate limit {limit} exceeded for action '{action_id}'")


class StreamConnectionError(AssistantError):
    """The streaming client gave up after exhausting its connection retries."""

    def __init__(self, classified: "ClassifiedError", attempts: int) -> None:
        self.classified = classified
        self.attempts = attempts
        super().__init__(
            f"Stream failed after {attempts} attempt(s): {classified.technical_message}"
        )
