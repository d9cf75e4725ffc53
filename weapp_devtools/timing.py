"""
Clock helpers shared by logging, event capture and the DevTools polling loops.

Durations and deadlines use the monotonic clock; timestamps that leave the process use UTC wall time.
"""
from __future__ import annotations

import time
from datetime import datetime, timezone

_STARTED_MONOTONIC = time.monotonic()
_STARTED_WALL = time.time()


def _utc_iso(dt: datetime) -> str:
	return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def uptime_seconds() -> float:
	return time.monotonic() - _STARTED_MONOTONIC


def now_utc_timestamp() -> float:
	"""UNIX timestamp in seconds, stamped on captured console and exception events."""
	return time.time()


def now_utc_iso() -> str:
	"""e.g. 2025-08-25T12:34:56.789Z"""
	return _utc_iso(datetime.now(timezone.utc))


def process_start_utc_iso() -> str:
	return _utc_iso(datetime.fromtimestamp(_STARTED_WALL, tz=timezone.utc))


class Deadline:
	"""A point `seconds` from now on the monotonic clock, for poll-until-ready loops."""

	def __init__(self, seconds: float):
		self.seconds = seconds
		self._at = time.monotonic() + seconds

	def __repr__(self) -> str:
		return f'Deadline({self.seconds}s, remaining={self.remaining():.2f}s)'

	def remaining(self) -> float:
		return max(0.0, self._at - time.monotonic())

	@property
	def expired(self) -> bool:
		return time.monotonic() >= self._at
