import asyncio
import base64
import json

import pytest
import pytest_asyncio
from websockets.asyncio.server import serve

from weapp_devtools.automator import DevToolsAutomator, MiniProgram, build_launch_command
from weapp_devtools.config import ResolvedConfig
from weapp_devtools.exceptions import AutomatorError
from weapp_devtools.session import SessionManager

PNG = base64.b64encode(b'\x89PNG\r\n').decode()


class FakeDevTools:
	"""Answers the handful of automation methods the tests exercise."""

	def __init__(self):
		self.received: list[dict] = []
		self.path = 'pages/index/index'
		# sent ahead of every reply
		self.stray_frames: list = []

	def answer(self, method: str, params: dict):
		if method == 'App.getCurrentPage':
			return {'pageId': 1, 'path': self.path, 'query': {}}
		if method == 'App.callWxMethod':
			if params['method'] in ('navigateTo', 'redirectTo', 'reLaunch', 'switchTab'):
				self.path = params['args'][0]['url'].split('?')[0].lstrip('/')
			return {'result': {'errMsg': f'{params["method"]}:ok'}}
		if method == 'App.getPageStack':
			return {'pageStack': [{'pageId': 1, 'path': 'pages/index/index'}, {'pageId': 2, 'path': self.path, 'query': {'id': '7'}}]}
		if method == 'App.captureScreenshot':
			return {'data': PNG}
		if method == 'Page.getElement':
			if params['selector'] == '.missing':
				return {}
			return {'elementId': 'e1', 'tagName': 'button'}
		if method == 'Element.getDOMProperties':
			return {'properties': ['Submit']}
		if method == 'Page.getData':
			return {'data': {'count': 2}}
		if method == 'Fail.please':
			raise ValueError('method not allowed')
		return {}

	async def handler(self, websocket):
		async for raw in websocket:
			message = json.loads(raw)
			self.received.append(message)
			method = message['method']
			if method == 'Slow.never':
				continue
			try:
				reply = {'id': message['id'], 'result': self.answer(method, message['params'])}
			except ValueError as e:
				reply = {'id': message['id'], 'error': {'message': str(e)}}
			for frame in self.stray_frames:
				await websocket.send(frame)
			await websocket.send(json.dumps(reply))
			if method == 'App.enableLog':
				await websocket.send(json.dumps({'method': 'App.logAdded', 'params': {'type': 'info', 'args': ['hello']}}))
				await websocket.send(json.dumps({'method': 'App.exceptionThrown', 'params': {'message': 'boom'}}))

	def methods(self) -> list[str]:
		return [m['method'] for m in self.received]


@pytest_asyncio.fixture
async def devtools():
	fake = FakeDevTools()
	async with serve(fake.handler, '127.0.0.1', 0) as server:
		port = server.sockets[0].getsockname()[1]
		fake.endpoint = f'ws://127.0.0.1:{port}'
		yield fake


async def _connect(devtools) -> MiniProgram:
	return await DevToolsAutomator().connect(ResolvedConfig(mode='connect', ws_endpoint=devtools.endpoint, timeout=2000))


@pytest.mark.asyncio
async def test_current_page_and_elements(devtools):
	mini_program = await _connect(devtools)
	try:
		page = await mini_program.current_page()
		assert page.path == 'pages/index/index'
		element = await page.get_element('.submit')
		assert element.tag_name == 'button'
		assert await element.text() == 'Submit'
		assert await page.get_element('.missing') is None
		assert await page.data() == {'count': 2}
		await page.wait_for('.submit')
		with pytest.raises(AutomatorError, match='waiting for selector ".missing"'):
			await page.wait_for('.missing', timeout=0.3)
	finally:
		await mini_program.disconnect()


@pytest.mark.asyncio
async def test_navigation_calls_wx_and_returns_new_page(devtools):
	mini_program = await _connect(devtools)
	try:
		page = await mini_program.navigate_to('/pages/detail/detail?id=7')
		assert page.path == 'pages/detail/detail'
		call = next(m for m in devtools.received if m['method'] == 'App.callWxMethod')
		assert call['params'] == {'method': 'navigateTo', 'args': [{'url': '/pages/detail/detail?id=7'}]}
	finally:
		await mini_program.disconnect()


@pytest.mark.asyncio
async def test_error_replies_raise_automator_error(devtools):
	mini_program = await _connect(devtools)
	try:
		with pytest.raises(AutomatorError, match='method not allowed'):
			await mini_program.connection.send('Fail.please')
		with pytest.raises(AutomatorError, match='Timed out'):
			await mini_program.connection.send('Slow.never', timeout=0.2)
	finally:
		await mini_program.disconnect()
	assert mini_program.connection.closed
	with pytest.raises(AutomatorError, match='closed'):
		await mini_program.current_page()


@pytest.mark.asyncio
async def test_screenshot_inline_and_to_file(devtools, tmp_path):
	mini_program = await _connect(devtools)
	try:
		assert await mini_program.screenshot() == PNG
		target = tmp_path / 'shots' / 'home.png'
		assert await mini_program.screenshot(target) is None
		assert target.read_bytes() == b'\x89PNG\r\n'
	finally:
		await mini_program.disconnect()


@pytest.mark.asyncio
async def test_events_reach_the_session_log(devtools):
	manager = SessionManager(env={})
	try:
		await manager.run_with_connection(lambda handle, _config: handle.current_page(), {'wsEndpoint': devtools.endpoint})
		for _ in range(50):
			if len(manager.get_log_entries()) == 2:
				break
			await asyncio.sleep(0.02)
		entries = manager.get_log_entries()
		assert [(e.kind, e.message) for e in entries] == [('info', 'hello'), ('exception', 'boom')]
		assert 'App.enableLog' in devtools.methods()
	finally:
		await manager.teardown()
	assert not manager.active


@pytest.mark.asyncio
async def test_unknown_event_is_rejected(devtools):
	mini_program = await _connect(devtools)
	try:
		with pytest.raises(ValueError):
			mini_program.on('network', lambda _event: None)
	finally:
		await mini_program.disconnect()


def test_launch_command():
	config = ResolvedConfig(
		mode='launch',
		cli_path='/opt/devtools/cli',
		project_path='/work/demo',
		port=9421,
		account='dev',
		trust_project=True,
		args=['--lang', 'en'],
	)
	assert build_launch_command(config) == [
		'/opt/devtools/cli',
		'auto',
		'--project',
		'/work/demo',
		'--auto-port',
		'9421',
		'--auto-account',
		'dev',
		'--trust-project',
		'--lang',
		'en',
	]


def test_launch_command_defaults_port():
	config = ResolvedConfig(mode='launch', cli_path='cli', project_path='/p')
	assert build_launch_command(config)[-2:] == ['--auto-port', '9420']


@pytest.mark.asyncio
async def test_page_stack(devtools):
	mini_program = await _connect(devtools)
	try:
		await mini_program.navigate_to('/pages/detail/detail?id=7')
		stack = await mini_program.page_stack()
		assert [(p.path, p.query) for p in stack] == [('pages/index/index', {}), ('pages/detail/detail', {'id': '7'})]
	finally:
		await mini_program.disconnect()


@pytest.mark.asyncio
async def test_non_object_frames_do_not_kill_the_connection(devtools):
	devtools.stray_frames = ['[1, 2]', '42', '"text"', 'null', '{not json', '{"id": "unknown", "error": 5}']
	mini_program = await _connect(devtools)
	try:
		page = await mini_program.current_page()
		assert page.path == 'pages/index/index'
		assert not mini_program.connection.closed
		assert await mini_program.call_wx_method('getStorageSync', 'k') == {'errMsg': 'getStorageSync:ok'}
	finally:
		await mini_program.disconnect()


class ExitedProcess:
	pid = 4242
	returncode = 2


@pytest.mark.asyncio
async def test_launch_reports_cli_exit_and_discards_output(monkeypatch):
	spawned = {}

	async def fake_exec(*command, **kwargs):
		spawned['command'] = command
		spawned['kwargs'] = kwargs
		return ExitedProcess()

	monkeypatch.setattr(asyncio, 'create_subprocess_exec', fake_exec)
	config = ResolvedConfig(mode='launch', cli_path='/opt/devtools/cli', project_path='/work/demo', port=1, timeout=2000)
	with pytest.raises(AutomatorError, match='exited with code 2'):
		await DevToolsAutomator().launch(config)
	assert spawned['command'][:2] == ('/opt/devtools/cli', 'auto')
	assert spawned['kwargs']['stdout'] == asyncio.subprocess.DEVNULL
	assert spawned['kwargs']['stderr'] == asyncio.subprocess.DEVNULL
