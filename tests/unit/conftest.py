"""
In-memory stand-ins for a DevTools automation session.
"""

from typing import Any

import pytest

from weapp_devtools.exceptions import AutomatorError
from weapp_devtools.session import SessionManager


class FakeElement:
	def __init__(self, tag_name: str = 'view', text: str | None = None, children: dict[str, list['FakeElement']] | None = None):
		self.tag_name = tag_name
		self._text = text
		self.children = children or {}
		self.taps = 0
		self.inputs: list[Any] = []
		self.component_data: dict[str, Any] = {}

	async def get_element(self, selector: str):
		found = self.children.get(selector) or []
		return found[0] if found else None

	async def get_elements(self, selector: str):
		return list(self.children.get(selector) or [])

	async def tap(self):
		self.taps += 1

	async def input(self, value):
		self.inputs.append(value)

	async def text(self):
		return self._text

	async def value(self):
		raise AutomatorError('value is not supported on this element')

	async def outer_wxml(self):
		return f'<{self.tag_name}>{self._text or ""}</{self.tag_name}>'

	async def wxml(self):
		return self._text or ''

	async def size(self):
		return {'width': 100, 'height': 40}

	async def data(self, path=None):
		return self.component_data if path is None else self.component_data.get(path)

	async def set_data(self, data):
		self.component_data.update(data)

	async def call_method(self, method, *args):
		return {'called': method, 'args': list(args)}


class FakePage:
	def __init__(self, path: str = 'pages/index/index', query: dict | None = None, elements: dict[str, FakeElement] | None = None):
		self.path = path
		self.query = query or {}
		self.elements = elements or {}
		self.page_data: dict[str, Any] = {'count': 1}
		self.waits: list[Any] = []

	async def get_element(self, selector):
		return self.elements.get(selector)

	async def wait_for(self, condition):
		self.waits.append(condition)
		if isinstance(condition, str) and condition not in self.elements:
			raise AutomatorError(f'Timed out waiting for selector "{condition}"')

	async def data(self, path=None):
		return self.page_data if path is None else self.page_data.get(path)

	async def set_data(self, data):
		self.page_data.update(data)

	async def call_method(self, method, *args):
		return {'called': method, 'args': list(args)}


class FakeHandle:
	def __init__(self, page: FakePage | None = None):
		self.page = page
		self.listeners: dict[str, list] = {}
		self.closed = 0
		self.disconnected = 0
		self.fail_close = False
		self.navigations: list[tuple[str, str | None]] = []
		self.wx_calls: list[tuple[str, tuple]] = []
		self.screenshot_data: str | None = 'iVBORw0KGgo='

	def on(self, event, callback):
		self.listeners.setdefault(event, []).append(callback)

	def remove_all_listeners(self):
		self.listeners.clear()

	def emit(self, event, payload):
		for callback in list(self.listeners.get(event, [])):
			callback(payload)

	async def current_page(self):
		return self.page

	async def page_stack(self):
		return [self.page] if self.page else []

	async def close(self):
		self.closed += 1
		if self.fail_close:
			raise RuntimeError('devtools went away')

	async def disconnect(self):
		self.disconnected += 1

	async def system_info(self):
		return {'platform': 'devtools'}

	async def call_wx_method(self, method, *args):
		self.wx_calls.append((method, args))
		return {'errMsg': f'{method}:ok'}

	async def screenshot(self, path=None):
		return None if path else self.screenshot_data

	async def _route(self, kind, url):
		self.navigations.append((kind, url))
		if url is not None:
			self.page = FakePage(path=url.split('?')[0].lstrip('/'))
		return self.page

	async def navigate_to(self, url):
		return await self._route('navigateTo', url)

	async def redirect_to(self, url):
		return await self._route('redirectTo', url)

	async def re_launch(self, url):
		return await self._route('reLaunch', url)

	async def switch_tab(self, url):
		return await self._route('switchTab', url)

	async def navigate_back(self):
		return await self._route('navigateBack', None)


class FakeAutomator:
	def __init__(self, page: FakePage | None = None):
		self.page = page if page is not None else FakePage()
		self.handles: list[FakeHandle] = []
		self.calls: list[tuple[str, Any]] = []
		self.fail_with: Exception | None = None

	async def _open(self, kind, config):
		self.calls.append((kind, config))
		if self.fail_with is not None:
			raise self.fail_with
		handle = FakeHandle(self.page)
		self.handles.append(handle)
		return handle

	async def launch(self, config):
		return await self._open('launch', config)

	async def connect(self, config):
		return await self._open('connect', config)


@pytest.fixture
def automator() -> FakeAutomator:
	return FakeAutomator()


@pytest.fixture
def manager(automator) -> SessionManager:
	return SessionManager(automator=automator, env={})


@pytest.fixture
def page(automator) -> FakePage:
	"""A page with a `.submit` button and a `card` component holding `.title` and two `.row` children."""
	button = FakeElement('button', text='Submit')
	card = FakeElement(
		'card',
		children={
			'.title': [FakeElement('text', text='Hello')],
			'.row': [FakeElement('view', text='a'), FakeElement('view', text='b')],
		},
	)
	automator.page = FakePage(elements={'.submit': button, 'card': card})
	return automator.page
