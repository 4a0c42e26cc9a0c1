"""Tests for describe_error in spec_council/errors.py."""

import pytest

from spec_council.errors import (
    AuthorizationError,
    InputValidationError,
    OperationCancelledError,
    StageFailedError,
    describe_error,
)
from spec_council.providers.base import ProviderError


@pytest.mark.parametrize(
    ("exc", "category", "retryable"),
    [
        (InputValidationError("prompt_too_short", "Prompt must be at least 10 characters"), "prompt_too_short", False),
        (OperationCancelledError(), "cancelled", False),
        (AuthorizationError("bad key"), "auth", False),
        (ProviderError("claude", "slow down", status=429), "rate_limit", True),
        (RuntimeError("Too Many Requests"), "rate_limit", True),
        (TimeoutError(), "timeout", True),
        (RuntimeError("gateway returned 504"), "timeout", True),
        (ConnectionError("connection reset by peer"), "network", True),
        (ProviderError("openai", "nope", status=401), "auth", False),
        (ProviderError("gemini", "boom", status=503), "server", True),
        (RuntimeError("service unavailable"), "server", True),
        (StageFailedError("research", 1, "all 5 agents failed"), "stage", True),
        (ValueError("what happened"), "unknown", True),
    ],
)
def test_describe_error_categories(exc, category, retryable):
    message = describe_error(exc)
    assert message.category == category
    assert message.retryable is retryable
    assert message.title and message.message


def test_validation_message_drops_prefix():
    message = describe_error(InputValidationError("invalid_depth", "Unknown depth profile: extreme"))
    assert message.message == "Unknown depth profile: extreme"


def test_stage_failure_message_names_the_stage():
    message = describe_error(StageFailedError("voting", 2, "all 3 agents failed"))
    assert message.message == "Stage 'voting' failed in round 2: all 3 agents failed"
