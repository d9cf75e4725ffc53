"""
Websocket client for the WeChat DevTools automation port.

Requests are `{"id", "method", "params"}` frames answered by `{"id", "result"}` or
`{"id", "error": {"message"}}`. Frames without an id are notifications and are fanned
out to the callbacks registered with `on(method, callback)`.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from weapp_devtools.exceptions import AutomatorError

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0

Listener = Callable[[Any], None]


class Connection:
	def __init__(self, websocket: ClientConnection, endpoint: str, request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
		self.endpoint = endpoint
		self.request_timeout = request_timeout
		self._websocket = websocket
		self._ids = itertools.count(1)
		self._pending: dict[int, asyncio.Future] = {}
		self._listeners: defaultdict[str, list[Listener]] = defaultdict(list)
		self._closed = False
		self._reader = asyncio.create_task(self._read_loop(), name=f'weapp-devtools-reader:{endpoint}')

	@classmethod
	async def open(cls, endpoint: str, open_timeout: float = 10.0, request_timeout: float = DEFAULT_REQUEST_TIMEOUT) -> Connection:
		websocket = await connect(endpoint, open_timeout=open_timeout, max_size=None)
		return cls(websocket, endpoint, request_timeout=request_timeout)

	@property
	def closed(self) -> bool:
		return self._closed

	def __repr__(self) -> str:
		return f'Connection({self.endpoint!r}, pending={len(self._pending)}, closed={self._closed})'

	def on(self, method: str, callback: Listener) -> None:
		self._listeners[method].append(callback)

	def off(self, method: str, callback: Listener) -> None:
		callbacks = self._listeners.get(method)
		if callbacks and callback in callbacks:
			callbacks.remove(callback)

	def remove_all_listeners(self) -> None:
		self._listeners.clear()

	async def send(self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None) -> Any:
		if self._closed:
			raise AutomatorError(f'Cannot call {method}: connection to {self.endpoint} is closed')

		message_id = next(self._ids)
		future: asyncio.Future = asyncio.get_running_loop().create_future()
		self._pending[message_id] = future
		try:
			await self._websocket.send(json.dumps({'id': message_id, 'method': method, 'params': params or {}}))
			return await asyncio.wait_for(future, timeout or self.request_timeout)
		except TimeoutError as e:
			raise AutomatorError(f'Timed out waiting for {method} after {timeout or self.request_timeout}s') from e
		except ConnectionClosed as e:
			raise AutomatorError(f'Connection closed while calling {method}: {e}') from e
		finally:
			self._pending.pop(message_id, None)

	async def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		try:
			await self._websocket.close()
		finally:
			if self._reader is not asyncio.current_task():
				self._reader.cancel()
				try:
					await self._reader
				except asyncio.CancelledError:
					pass
			self._fail_pending(AutomatorError(f'Connection to {self.endpoint} was closed'))

	async def _read_loop(self) -> None:
		try:
			async for raw in self._websocket:
				try:
					self._dispatch(raw)
				except Exception as e:
					logger.warning(f'Dropping frame from {self.endpoint} that could not be dispatched: {type(e).__name__}: {e}')
		except ConnectionClosed as e:
			logger.debug(f'DevTools websocket {self.endpoint} closed: {e}')
		finally:
			self._closed = True
			self._fail_pending(AutomatorError(f'Connection to {self.endpoint} was closed'))

	def _dispatch(self, raw: str | bytes) -> None:
		try:
			message = json.loads(raw)
		except ValueError:
			logger.warning(f'Ignoring malformed frame from {self.endpoint}: {raw!r:.200}')
			return

		if not isinstance(message, dict):
			logger.warning(f'Ignoring non-object frame from {self.endpoint}: {raw!r:.200}')
			return

		message_id = message.get('id')
		if message_id is not None:
			future = self._pending.get(message_id)
			if future is None or future.done():
				return
			error = message.get('error')
			if error:
				detail = error.get('message') if isinstance(error, dict) else str(error)
				future.set_exception(AutomatorError(detail or 'unknown DevTools error'))
			else:
				future.set_result(message.get('result'))
			return

		method = message.get('method')
		for callback in list(self._listeners.get(method, ())):
			try:
				callback(message.get('params'))
			except Exception as e:
				logger.warning(f'Listener for {method} failed: {type(e).__name__}: {e}')

	def _fail_pending(self, error: Exception) -> None:
		for future in self._pending.values():
			if not future.done():
				future.set_exception(error)
		self._pending.clear()
