"""Startup ping of every configured completion provider."""

import asyncio
import logging
import time

from spec_council.fanout import fan_out
from spec_council.providers.base import CompletionProvider

logger = logging.getLogger(__name__)

_PING = [
    {"role": "system", "content": "You are a connectivity probe."},
    {"role": "user", "content": "Reply with the word OK only."},
]
_TIMEOUT_SEC = 15.0


def _ping_job(name: str, provider: CompletionProvider):
    async def ping() -> float:
        start = time.monotonic()
        await asyncio.wait_for(provider.complete(_PING, temperature=0.0, max_tokens=16), timeout=_TIMEOUT_SEC)
        elapsed = time.monotonic() - start
        logger.debug("Provider %s (%s) answered in %.2fs", name, provider.model_string(), elapsed)
        return elapsed

    return ping


async def run_health_checks(
    providers: dict[str, CompletionProvider],
) -> dict[str, tuple[bool, str]]:
    """Ping all providers concurrently with a tiny completion.

    Returns {provider name: (ok, error message)}; the message is "" for healthy providers.
    A provider that does not answer within the timeout counts as failed.
    """
    outcome = await fan_out({name: _ping_job(name, p) for name, p in providers.items()})
    report = {name: (True, "") for name in outcome.results}
    report.update({name: (False, error) for name, error in outcome.failures.items()})
    return {name: report[name] for name in providers}
