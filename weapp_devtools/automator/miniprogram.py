from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import psutil

from weapp_devtools.automator.connection import Connection
from weapp_devtools.exceptions import AutomatorError
from weapp_devtools.timing import Deadline

logger = logging.getLogger(__name__)

# public event category -> DevTools notification
EVENT_METHODS = {
	'console': 'App.logAdded',
	'exception': 'App.exceptionThrown',
}

WAIT_POLL_INTERVAL = 0.2
DEFAULT_WAIT_TIMEOUT = 5.0


class Element:
	def __init__(self, connection: Connection, page_id: Any, element_id: Any, tag_name: str | None = None):
		self._connection = connection
		self.page_id = page_id
		self.id = element_id
		self.tag_name = tag_name

	def __repr__(self) -> str:
		return f'Element<{self.tag_name or "?"}#{self.id}>'

	async def _send(self, method: str, **params: Any) -> Any:
		return await self._connection.send(method, {'elementId': self.id, 'pageId': self.page_id, **params})

	async def get_element(self, selector: str) -> Element | None:
		result = await self._send('Element.getElement', selector=selector)
		return _element_from(self._connection, self.page_id, result)

	async def get_elements(self, selector: str) -> list[Element]:
		result = await self._send('Element.getElements', selector=selector) or {}
		return [e for e in (_element_from(self._connection, self.page_id, item) for item in result.get('elements', [])) if e]

	async def tap(self) -> None:
		await self._send('Element.tap')

	async def input(self, value: str | int | float) -> None:
		await self._send('Element.triggerEvent', type='input', detail={'value': value})

	async def call_method(self, method: str, *args: Any) -> Any:
		result = await self._send('Element.callMethod', method=method, args=list(args)) or {}
		return result.get('result')

	async def data(self, path: str | None = None) -> Any:
		result = await self._send('Element.getData', path=path) or {}
		return result.get('data')

	async def set_data(self, data: dict[str, Any]) -> None:
		await self._send('Element.setData', data=data)

	async def _properties(self, *names: str) -> list[Any]:
		result = await self._send('Element.getDOMProperties', names=list(names)) or {}
		return result.get('properties', [None] * len(names))

	async def size(self) -> dict[str, Any]:
		width, height = await self._properties('offsetWidth', 'offsetHeight')
		return {'width': width, 'height': height}

	async def text(self) -> str | None:
		(value,) = await self._properties('innerText')
		return value

	async def value(self) -> Any:
		(value,) = await self._properties('value')
		return value

	async def wxml(self) -> str | None:
		result = await self._send('Element.getWXML', type='inner') or {}
		return result.get('wxml')

	async def outer_wxml(self) -> str | None:
		result = await self._send('Element.getWXML', type='outer') or {}
		return result.get('wxml')


def _element_from(connection: Connection, page_id: Any, payload: dict[str, Any] | None) -> Element | None:
	if not payload or payload.get('elementId') is None:
		return None
	return Element(connection, page_id, payload['elementId'], payload.get('tagName'))


class Page:
	def __init__(self, connection: Connection, page_id: Any, path: str, query: dict[str, Any] | None = None):
		self._connection = connection
		self.id = page_id
		self.path = path
		self.query = query or {}

	def __repr__(self) -> str:
		return f'Page<{self.path}>'

	async def _send(self, method: str, **params: Any) -> Any:
		return await self._connection.send(method, {'pageId': self.id, **params})

	async def get_element(self, selector: str) -> Element | None:
		result = await self._send('Page.getElement', selector=selector)
		return _element_from(self._connection, self.id, result)

	async def get_elements(self, selector: str) -> list[Element]:
		result = await self._send('Page.getElements', selector=selector) or {}
		return [e for e in (_element_from(self._connection, self.id, item) for item in result.get('elements', [])) if e]

	async def wait_for(self, condition: str | int | float, timeout: float = DEFAULT_WAIT_TIMEOUT) -> None:
		"""Sleep for `condition` milliseconds, or poll until an element matches the `condition` selector."""
		if isinstance(condition, (int, float)):
			await asyncio.sleep(condition / 1000)
			return

		deadline = Deadline(timeout)
		while True:
			if await self.get_element(condition) is not None:
				return
			if deadline.expired:
				raise AutomatorError(f'Timed out after {timeout}s waiting for selector "{condition}" on {self.path}')
			await asyncio.sleep(WAIT_POLL_INTERVAL)

	async def data(self, path: str | None = None) -> Any:
		result = await self._send('Page.getData', path=path) or {}
		return result.get('data')

	async def set_data(self, data: dict[str, Any]) -> None:
		await self._send('Page.setData', data=data)

	async def call_method(self, method: str, *args: Any) -> Any:
		result = await self._send('Page.callMethod', method=method, args=list(args)) or {}
		return result.get('result')


class MiniProgram:
	"""A live automation session against one Mini Program project in WeChat DevTools."""

	def __init__(self, connection: Connection, process: asyncio.subprocess.Process | None = None):
		self.connection = connection
		self.process = process
		self._subscriptions: list[tuple[str, Callable[[Any], None]]] = []
		self._enable_log_task: asyncio.Task | None = None

	def __repr__(self) -> str:
		pid = f' pid={self.process.pid}' if self.process else ''
		return f'MiniProgram<{self.connection.endpoint}{pid}>'

	def on(self, event: str, callback: Callable[[Any], None]) -> None:
		"""Subscribe to `console` or `exception` events emitted by the Mini Program."""
		method = EVENT_METHODS.get(event)
		if method is None:
			raise ValueError(f'Unknown Mini Program event {event!r}, expected one of {sorted(EVENT_METHODS)}')
		self.connection.on(method, callback)
		self._subscriptions.append((method, callback))
		if self._enable_log_task is None:
			self._enable_log_task = asyncio.get_running_loop().create_task(self._enable_log())

	async def _enable_log(self) -> None:
		try:
			await self.connection.send('App.enableLog')
		except AutomatorError as e:
			logger.debug(f'App.enableLog failed, console events may be missing: {e}')

	def remove_all_listeners(self) -> None:
		for method, callback in self._subscriptions:
			self.connection.off(method, callback)
		self._subscriptions.clear()

	async def current_page(self) -> Page | None:
		result = await self.connection.send('App.getCurrentPage')
		if not result or not result.get('path'):
			return None
		return Page(self.connection, result.get('pageId'), result['path'], result.get('query'))

	async def page_stack(self) -> list[Page]:
		result = await self.connection.send('App.getPageStack') or {}
		return [Page(self.connection, item.get('pageId'), item['path'], item.get('query')) for item in result.get('pageStack', [])]

	async def call_wx_method(self, method: str, *args: Any) -> Any:
		result = await self.connection.send('App.callWxMethod', {'method': method, 'args': list(args)}) or {}
		return result.get('result')

	async def _change_route(self, method: str, url: str | None = None) -> Page | None:
		await self.call_wx_method(method, {'url': url} if url is not None else {})
		return await self.current_page()

	async def navigate_to(self, url: str) -> Page | None:
		return await self._change_route('navigateTo', url)

	async def redirect_to(self, url: str) -> Page | None:
		return await self._change_route('redirectTo', url)

	async def re_launch(self, url: str) -> Page | None:
		return await self._change_route('reLaunch', url)

	async def switch_tab(self, url: str) -> Page | None:
		return await self._change_route('switchTab', url)

	async def navigate_back(self) -> Page | None:
		return await self._change_route('navigateBack')

	async def system_info(self) -> Any:
		return await self.call_wx_method('getSystemInfoSync')

	async def screenshot(self, path: str | Path | None = None) -> str | None:
		"""Capture the simulator viewport. Returns base64 PNG data, or writes it to `path` and returns None."""
		result = await self.connection.send('App.captureScreenshot') or {}
		data = result.get('data')
		if not data:
			raise AutomatorError('DevTools returned no screenshot data')
		if path is None:
			return data
		target = Path(path)
		target.parent.mkdir(parents=True, exist_ok=True)
		await asyncio.to_thread(target.write_bytes, base64.b64decode(data))
		return None

	async def disconnect(self) -> None:
		"""Drop the websocket but leave DevTools and the project running."""
		self.remove_all_listeners()
		await self.connection.close()

	async def close(self) -> None:
		"""Close the project in DevTools and stop the CLI process this session spawned."""
		try:
			await self.connection.send('Tool.close', timeout=5.0)
		except AutomatorError as e:
			# DevTools often drops the socket before acknowledging Tool.close
			logger.debug(f'Tool.close was not acknowledged: {e}')
		finally:
			try:
				await self.disconnect()
			finally:
				await terminate_process_tree(self.process)


async def terminate_process_tree(process: asyncio.subprocess.Process | None, timeout: float = 5.0) -> None:
	"""Terminate a spawned CLI process and its children, killing whatever outlives `timeout`."""
	if process is None or process.returncode is not None:
		return
	try:
		parent = psutil.Process(process.pid)
		children = parent.children(recursive=True)
	except psutil.NoSuchProcess:
		return

	for proc in (*children, parent):
		try:
			proc.terminate()
		except psutil.NoSuchProcess:
			pass

	_, alive = await asyncio.to_thread(psutil.wait_procs, [*children, parent], timeout=timeout)
	for proc in alive:
		try:
			logger.warning(f'⏱️ DevTools CLI process pid={proc.pid} did not terminate gracefully, force killing')
			proc.kill()
		except psutil.NoSuchProcess:
			pass
	await process.wait()
