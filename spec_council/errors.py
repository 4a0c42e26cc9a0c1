"""Exception hierarchy and user-facing error descriptions."""

from dataclasses import dataclass


class SpecCouncilError(Exception):
    """Base class for all pipeline errors."""


class InputValidationError(SpecCouncilError):
    """Raised for malformed caller input. Never retried."""

    def __init__(self, category: str, message: str) -> None:
        self.category = category
        super().__init__(f"VALIDATION: {message}")


class AuthorizationError(SpecCouncilError):
    """Raised when credentials are missing or rejected. Never retried."""


class OperationCancelledError(SpecCouncilError):
    """Raised when a cancellation token fires before or during an operation."""

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message)


class StageFailedError(SpecCouncilError):
    """Raised when a stage handler cannot produce any usable output."""

    def __init__(self, stage: str, round_number: int, message: str) -> None:
        self.stage = stage
        self.round_number = round_number
        super().__init__(f"Stage '{stage}' failed in round {round_number}: {message}")


class SessionStateError(SpecCouncilError):
    """Raised when a sequencer operation is not legal in the current state."""


@dataclass(frozen=True)
class UserMessage:
    category: str
    title: str
    message: str
    retryable: bool


def describe_error(exc: BaseException) -> UserMessage:
    """Map an exception to a short category-specific message for the host UI.

    The full error stays in the logs; this is only what a user should see.
    """
    if isinstance(exc, InputValidationError):
        return UserMessage(exc.category, "Invalid input", str(exc).removeprefix("VALIDATION: "), False)
    if isinstance(exc, OperationCancelledError):
        return UserMessage("cancelled", "Cancelled", "The run was cancelled.", False)
    if isinstance(exc, AuthorizationError):
        return UserMessage("auth", "Authentication required", "Check your API keys and try again.", False)

    text = str(exc).lower()
    status = getattr(exc, "status", None)

    if status == 429 or "rate limit" in text or "429" in text or "too many requests" in text:
        return UserMessage("rate_limit", "Rate limit", "Rate limit reached, please wait a moment.", True)
    if isinstance(exc, TimeoutError) or "timeout" in text or "timed out" in text or "504" in text:
        return UserMessage("timeout", "Timed out", "The request took too long. Please try again.", True)
    if "network" in text or "connection" in text:
        return UserMessage("network", "Connection error", "Could not reach the model provider.", True)
    if status in (401, 403) or "unauthorized" in text or "401" in text or "403" in text:
        return UserMessage("auth", "Authentication required", "Check your API keys and try again.", False)
    if (status is not None and status >= 500) or any(code in text for code in ("500", "502", "503")) \
            or "unavailable" in text:
        return UserMessage("server", "Provider error", "The model provider had a problem. Try again later.", True)
    if isinstance(exc, StageFailedError):
        return UserMessage("stage", "Stage failed", str(exc), True)
    return UserMessage("unknown", "Unexpected error", "Something went wrong. The session can be resumed.", True)
