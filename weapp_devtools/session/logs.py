from __future__ import annotations

import base64
import dataclasses
import json
import logging
import math
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import PurePath
from typing import Any

from pydantic import BaseModel

from weapp_devtools.timing import now_utc_timestamp

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 1000


def to_serializable(value: Any) -> Any:
	"""Convert an arbitrary event payload into a JSON-safe value.

	Scalars pass through, binary payloads become base64 text, containers are walked
	recursively and anything unrecognised falls back to str().
	"""
	if value is None or isinstance(value, (str, bool, int)):
		return value
	if isinstance(value, float):
		return value if math.isfinite(value) else str(value)
	if isinstance(value, (bytes, bytearray, memoryview)):
		return base64.b64encode(bytes(value)).decode('ascii')
	if isinstance(value, (datetime, date)):
		return value.isoformat()
	if isinstance(value, Enum):
		return to_serializable(value.value)
	if isinstance(value, PurePath):
		return str(value)
	if isinstance(value, BaseModel):
		return to_serializable(value.model_dump())
	if dataclasses.is_dataclass(value) and not isinstance(value, type):
		return to_serializable(dataclasses.asdict(value))
	if isinstance(value, Mapping):
		return {str(key): to_serializable(item) for key, item in value.items()}
	if isinstance(value, (list, tuple, set, frozenset, deque)):
		return [to_serializable(item) for item in value]
	if _is_page_like(value):
		summary = {'path': value.path}
		query = getattr(value, 'query', None)
		if query is not None:
			summary['query'] = to_serializable(query)
		return summary
	return str(value)


def _is_page_like(value: Any) -> bool:
	return isinstance(getattr(value, 'path', None), str)


@dataclass
class LogEntry:
	"""One console or exception event observed on the active session."""

	kind: str
	message: str
	data: Any = None
	timestamp: float = field(default_factory=now_utc_timestamp)

	def to_dict(self) -> dict[str, Any]:
		return {'type': self.kind, 'message': self.message, 'timestamp': self.timestamp, 'data': self.data}


def _safe_serialize(event: Any) -> Any:
	try:
		return to_serializable(event)
	except Exception as e:
		logger.debug(f'Falling back to str() for unserializable event {type(event).__name__}: {e}')
		try:
			return str(event)
		except Exception:
			return f'<unprintable {type(event).__name__}>'


def _message_from(event: Any, serialized: Any, key: str) -> str:
	if isinstance(event, Mapping):
		text = event.get(key)
		if isinstance(text, str):
			return text
		# DevTools console events carry their arguments in `args`, like console.log(...)
		console_args = event.get('args')
		if isinstance(console_args, (list, tuple)) and console_args:
			return ' '.join(a if isinstance(a, str) else json.dumps(to_serializable(a), ensure_ascii=False) for a in console_args)
	else:
		text = getattr(event, key, None)
		if isinstance(text, str):
			return text
	if isinstance(serialized, str):
		return serialized
	return json.dumps(serialized, ensure_ascii=False, default=str)


class LogBuffer:
	"""Bounded, ordered record of events. When full, the oldest entry is dropped first."""

	def __init__(self, capacity: int = MAX_LOG_ENTRIES):
		if capacity < 1:
			raise ValueError('LogBuffer capacity must be at least 1')
		self.capacity = capacity
		self._entries: deque[LogEntry] = deque(maxlen=capacity)

	def __len__(self) -> int:
		return len(self._entries)

	def append(self, entry: LogEntry) -> None:
		self._entries.append(entry)

	def entries(self) -> list[LogEntry]:
		"""Copy of the buffered entries, oldest first. Mutating the list does not touch the buffer."""
		return list(self._entries)

	def clear(self) -> None:
		self._entries.clear()

	def capture_console(self, event: Any) -> LogEntry:
		serialized = _safe_serialize(event)
		kind = event.get('type') if isinstance(event, Mapping) else getattr(event, 'type', None)
		try:
			message = _message_from(event, serialized, 'text')
		except Exception:
			message = str(serialized)
		entry = LogEntry(kind=kind if isinstance(kind, str) and kind else 'log', message=message, data=serialized)
		self.append(entry)
		return entry

	def capture_exception(self, event: Any) -> LogEntry:
		serialized = _safe_serialize(event)
		try:
			message = _message_from(event, serialized, 'message')
		except Exception:
			message = str(serialized)
		entry = LogEntry(kind='exception', message=message, data=serialized)
		self.append(entry)
		return entry
