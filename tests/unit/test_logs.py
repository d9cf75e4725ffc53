import json
from datetime import datetime, timezone
from pathlib import PurePosixPath

import pytest

from weapp_devtools.session import MAX_LOG_ENTRIES, LogBuffer, LogEntry, to_serializable


def test_buffer_evicts_oldest_first():
	buffer = LogBuffer()
	for i in range(MAX_LOG_ENTRIES + 1):
		buffer.capture_console({'type': 'log', 'text': f'line {i}'})
	entries = buffer.entries()
	assert len(entries) == MAX_LOG_ENTRIES
	assert [e.message for e in entries] == [f'line {i}' for i in range(1, MAX_LOG_ENTRIES + 1)]


def test_small_capacity():
	buffer = LogBuffer(capacity=2)
	for text in ('a', 'b', 'c'):
		buffer.append(LogEntry(kind='log', message=text))
	assert [e.message for e in buffer.entries()] == ['b', 'c']


def test_capacity_must_be_positive():
	with pytest.raises(ValueError):
		LogBuffer(capacity=0)


def test_entries_returns_a_copy():
	buffer = LogBuffer()
	buffer.capture_console({'text': 'hello'})
	snapshot = buffer.entries()
	snapshot.clear()
	assert len(buffer) == 1
	buffer.clear()
	assert buffer.entries() == []


def test_console_kind_defaults_to_log():
	entry = LogBuffer().capture_console({'args': ['a', {'b': 1}]})
	assert entry.kind == 'log'
	assert entry.message == 'a {"b": 1}'


def test_exception_entries():
	entry = LogBuffer().capture_exception({'message': 'boom', 'stack': 'trace'})
	assert entry.kind == 'exception'
	assert entry.message == 'boom'
	assert entry.to_dict()['type'] == 'exception'


def test_non_mapping_events_are_stringified():
	entry = LogBuffer().capture_console('plain text event')
	assert entry.message == 'plain text event'
	assert entry.data == 'plain text event'


def test_unserializable_event_falls_back_to_str():
	class Broken:
		def __iter__(self):
			raise RuntimeError('no')

		@property
		def path(self):
			raise RuntimeError('no path')

		def __str__(self):
			return 'broken event'

	entry = LogBuffer().capture_exception(Broken())
	assert entry.kind == 'exception'
	assert entry.data == 'broken event'


def test_serialization_is_json_safe():
	value = {
		'raw': b'\x89PNG',
		'nested': {'when': datetime(2024, 1, 2, tzinfo=timezone.utc), 'items': (1, 2.5, float('nan'))},
		'file': PurePosixPath('/tmp/shot.png'),
		1: {'x'},
	}
	result = to_serializable(value)
	assert result['raw'] == 'iVBORw=='
	assert result['nested']['when'] == '2024-01-02T00:00:00+00:00'
	assert result['nested']['items'] == [1, 2.5, 'nan']
	assert result['file'] == '/tmp/shot.png'
	assert result['1'] == ['x']
	json.dumps(result)


def test_page_like_objects_are_summarized():
	class Page:
		path = 'pages/index/index'
		query = {'id': '7'}

	assert to_serializable(Page()) == {'path': 'pages/index/index', 'query': {'id': '7'}}


def test_entry_timestamps_are_set():
	entry = LogEntry(kind='log', message='x')
	assert entry.timestamp > 0
	assert set(entry.to_dict()) == {'type', 'message', 'timestamp', 'data'}
