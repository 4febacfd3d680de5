"""Rate-limit detection from agent output text."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

logger = logging.getLogger(__name__)

_LEGACY_EPOCH_PATTERN = re.compile(r"Claude AI usage limit reached\|(\d{10,13})")
_RESETS_AT_HOUR_PATTERN = re.compile(
    r"limit reached.*?resets\s*(\d{1,2})([ap]m)",
    re.IGNORECASE,
)
_CAUSE_PATTERN = re.compile(r"([^.]*limit reached[^.]*)", re.IGNORECASE)

# Epoch values below this are seconds, at or above it milliseconds.
_EPOCH_MILLISECONDS_THRESHOLD = 1_000_000_000_000


@dataclass(slots=True)
class RateLimitSignal:
    """Parsed rate-limit hit."""

    reset_at: datetime | None
    cause: str | None
    matched_rule: str | None

    @property
    def has_reset_time(self) -> bool:
        return self.reset_at is not None

    def to_event_details(self) -> dict[str, object]:
        return {
            "reset_at": self.reset_at.isoformat() if self.reset_at is not None else None,
            "cause": self.cause,
            "matched_rule": self.matched_rule,
        }


def detect_rate_limit(text: str, *, now: datetime) -> RateLimitSignal | None:
    """Return a signal if the text mentions a rate limit, else None.

    ``now`` must be timezone-aware; the "resets 3pm" form is resolved against
    its wall-clock date and timezone.
    """

    reset_at, matched_rule = _extract_reset_time(text, now=now)
    cause = extract_cause_message(text)
    if reset_at is None and cause is None:
        return None
    return RateLimitSignal(reset_at=reset_at, cause=cause, matched_rule=matched_rule)


def extract_reset_time(text: str, *, now: datetime) -> datetime | None:
    reset_at, _ = _extract_reset_time(text, now=now)
    return reset_at


def extract_cause_message(text: str) -> str | None:
    """Short human-readable phrase around "limit reached", for operators."""

    match = _CAUSE_PATTERN.search(text)
    if match is None:
        return None
    cause = match.group(1).strip()
    return cause or None


def _extract_reset_time(text: str, *, now: datetime) -> tuple[datetime | None, str | None]:
    legacy = _LEGACY_EPOCH_PATTERN.search(text)
    if legacy is not None:
        return _from_epoch(int(legacy.group(1))), "legacy_epoch"

    hourly = _RESETS_AT_HOUR_PATTERN.search(text)
    if hourly is not None:
        reset_at = _next_wall_clock_hour(
            hour=int(hourly.group(1)),
            meridiem=hourly.group(2).lower(),
            now=now,
        )
        if reset_at is not None:
            return reset_at, "resets_at_hour"
    return None, None


def _from_epoch(value: int) -> datetime:
    milliseconds = value if value >= _EPOCH_MILLISECONDS_THRESHOLD else value * 1000
    return datetime.fromtimestamp(milliseconds / 1000, tz=UTC)


def _next_wall_clock_hour(*, hour: int, meridiem: str, now: datetime) -> datetime | None:
    if hour < 1 or hour > 12:
        return None
    if meridiem == "am":
        hour_24 = 0 if hour == 12 else hour
    else:
        hour_24 = 12 if hour == 12 else hour + 12

    candidate = now.replace(hour=hour_24, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class RateLimitMessageLog:
    """Distinct rate-limit cause phrases kept on disk for diagnostics."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def record(self, message: str) -> bool:
        """Add a message; return True if it was not seen before."""

        normalized = message.strip()
        if not normalized:
            return False
        messages = set(self.read())
        if normalized in messages:
            return False
        messages.add(normalized)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(sorted(messages), ensure_ascii=False, indent=2),
            "utf-8",
        )
        return True

    def read(self) -> list[str]:
        if not self.path.exists():
            return []
        try:
            payload = json.loads(self.path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            logger.warning("Ignoring unreadable rate-limit message log %s: %s", self.path, error)
            return []
        if not isinstance(payload, list):
            return []
        return sorted({str(item) for item in payload})
