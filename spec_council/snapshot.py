"""Session snapshots: serialize, validate against a fixed schema, discard if invalid.

The schema is the dataclasses in `spec_council.models`, validated with a
pydantic TypeAdapter, plus range and consistency checks pydantic cannot
express from the type hints alone.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from spec_council.depth import DEPTH_CONFIGS
from spec_council.models import STAGE_ORDER, DialogueEntry, Round, Stage

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass(frozen=True)
class SessionSnapshot:
    user_input: str
    depth: str
    dialogue: tuple[DialogueEntry, ...]
    rounds: tuple[Round, ...]
    current_stage: Stage
    paused: bool
    version: int = SNAPSHOT_VERSION


_ADAPTER = TypeAdapter(SessionSnapshot)


def _check_ranges(snapshot: SessionSnapshot) -> None:
    """Raise ValueError on anything out of range or inconsistent."""
    if snapshot.version != SNAPSHOT_VERSION:
        raise ValueError(f"unsupported snapshot version {snapshot.version}")
    if snapshot.depth not in DEPTH_CONFIGS:
        raise ValueError(f"unknown depth {snapshot.depth!r}")
    if snapshot.current_stage not in STAGE_ORDER:
        raise ValueError(f"unknown stage {snapshot.current_stage!r}")

    for expected, round_ in enumerate(snapshot.rounds, start=1):
        if round_.number != expected:
            raise ValueError(f"round {round_.number} out of sequence (expected {expected})")
        for vote in round_.votes:
            if not 0 <= vote.confidence <= 100:
                raise ValueError(f"vote confidence out of range: {vote.confidence}")
        for response in round_.challenge_responses:
            if not 0 <= response.risk_score <= 10:
                raise ValueError(f"risk score out of range: {response.risk_score}")
        for resolution in round_.resolutions:
            if not -100 <= resolution.confidence_change <= 100:
                raise ValueError(f"confidence change out of range: {resolution.confidence_change}")
        for question in round_.questions:
            if not 1 <= question.priority <= 10:
                raise ValueError(f"question priority out of range: {question.priority}")
        if round_.review is not None and not 0 <= round_.review.overall_score <= 100:
            raise ValueError(f"review score out of range: {round_.review.overall_score}")
        challenge_ids = {c.id for c in round_.challenges}
        for response in round_.challenge_responses:
            if response.challenge_id not in challenge_ids:
                raise ValueError(f"response references unknown challenge {response.challenge_id}")

    if snapshot.rounds and snapshot.rounds[-1].stage != snapshot.current_stage:
        raise ValueError("current stage does not match the last round")


def dump_snapshot(snapshot: SessionSnapshot) -> dict[str, Any]:
    """JSON-compatible dict for the host to persist."""
    return _ADAPTER.dump_python(snapshot, mode="json")


def load_snapshot(payload: dict[str, Any] | str | bytes) -> SessionSnapshot | None:
    """Validate a persisted snapshot. Invalid payloads are logged and discarded (None)."""
    try:
        if isinstance(payload, (str, bytes)):
            snapshot = _ADAPTER.validate_json(payload)
        else:
            snapshot = _ADAPTER.validate_python(payload)
        _check_ranges(snapshot)
    except ValidationError as exc:
        logger.warning("Discarding invalid snapshot: %d schema errors", exc.error_count())
        logger.debug("Snapshot validation errors: %s", exc)
        return None
    except ValueError as exc:
        logger.warning("Discarding invalid snapshot: %s", exc)
        return None
    return snapshot


def save_snapshot(snapshot: SessionSnapshot, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(dump_snapshot(snapshot), indent=2, ensure_ascii=False), encoding="utf-8")
    logger.debug("Snapshot saved to %s", path)
    return path


def read_snapshot(path: Path) -> SessionSnapshot | None:
    """Load a snapshot file. A missing or invalid file yields None."""
    if not path.exists():
        logger.info("No snapshot at %s", path)
        return None
    return load_snapshot(path.read_bytes())
