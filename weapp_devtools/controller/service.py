from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib.parse import urlencode

from weapp_devtools.config import ResolvedConfig
from weapp_devtools.controller.registry import Registry
from weapp_devtools.controller.views import (
	ActionResult,
	CallMethodAction,
	DataPathAction,
	ElementAction,
	ElementDataAction,
	ElementMethodAction,
	ElementSetDataAction,
	ElementWxmlAction,
	EnsureConnectionAction,
	GetConsoleLogsAction,
	InnerElementAction,
	InputTextAction,
	NavigateAction,
	ScreenshotAction,
	SetDataAction,
	TapElementAction,
	WaitForElementAction,
	WaitForTimeoutAction,
)
from weapp_devtools.exceptions import AutomatorError, UserError
from weapp_devtools.session import SessionManager, to_serializable

logger = logging.getLogger(__name__)


def build_url(path: str, query: dict[str, str] | None = None) -> str:
	if not query:
		return path
	separator = '&' if '?' in path else '?'
	return f'{path}{separator}{urlencode(query)}'


def page_summary(page: Any) -> dict[str, Any] | None:
	if page is None:
		return None
	return {'path': page.path, 'query': to_serializable(page.query)}


def json_result(value: Any) -> ActionResult:
	data = to_serializable(value)
	return ActionResult(text=json.dumps(data, indent=2, ensure_ascii=False), data=data)


def describe_target(selector: str, inner_selector: str | None) -> str:
	return f'"{selector}" -> "{inner_selector}"' if inner_selector else f'"{selector}"'


async def resolve_element(page: Any, selector: str, inner_selector: str | None = None) -> Any:
	element = await page.get_element(selector)
	if element is None:
		raise UserError(f'Element not found for selector "{selector}".')
	if inner_selector:
		inner = await element.get_element(inner_selector)
		if inner is None:
			raise UserError(f'Element not found for selector "{inner_selector}" within "{selector}".')
		element = inner
	return element


async def _read_or_none(reader) -> Any:
	try:
		return await reader()
	except AutomatorError as e:
		logger.debug(f'Could not read element detail: {e}')
		return None


async def summarize_element(element: Any) -> dict[str, Any]:
	text, value, outer_wxml = await asyncio.gather(
		_read_or_none(element.text),
		_read_or_none(element.value),
		_read_or_none(element.outer_wxml),
	)
	return {'tagName': element.tag_name, 'text': text, 'value': value, 'outerWxml': outer_wxml}


class Controller:
	"""Per-operation handlers for a Mini Program, all routed through one SessionManager."""

	def __init__(self, manager: SessionManager | None = None, exclude_actions: list[str] | None = None):
		self.manager = manager or SessionManager()
		self.registry = Registry(exclude_actions)

		self._register_application_actions()
		self._register_page_actions()
		self._register_element_actions()

	async def act(self, action_name: str, params: dict[str, Any] | None = None) -> ActionResult:
		return await self.registry.execute_action(action_name, params)

	async def close(self) -> None:
		await self.manager.teardown()

	def _register_application_actions(self) -> None:
		manager = self.manager

		@self.registry.action(
			'Check that the Mini Program automation session is ready. Optionally override connection settings or force a reconnect.',
			param_model=EnsureConnectionAction,
		)
		async def ensure_connection(params: EnsureConnectionAction) -> ActionResult:
			async def describe(mini_program, config: ResolvedConfig):
				page = await mini_program.current_page()
				stack = await mini_program.page_stack()
				try:
					system_info = await mini_program.system_info()
				except AutomatorError as e:
					logger.debug(f'getSystemInfoSync failed: {e}')
					system_info = None
				return {
					**config.summary(),
					'autoClose': bool(config.auto_close),
					'currentPage': page_summary(page),
					'pageStack': [page_summary(item) for item in stack],
					'systemInfo': system_info,
				}

			return json_result(await manager.run_with_connection(describe, params.connection, reconnect=params.reconnect))

		@self.registry.action(
			'Navigate inside the Mini Program with navigateTo, redirectTo, reLaunch, switchTab or navigateBack.',
			param_model=NavigateAction,
		)
		async def navigate(params: NavigateAction) -> ActionResult:
			if params.transition != 'navigateBack' and not params.path:
				raise UserError('Parameter path is required unless transition is navigateBack.')
			url = None if params.transition == 'navigateBack' else build_url(params.path, params.query)

			async def go(mini_program, _config):
				if params.transition == 'navigateBack':
					page = await mini_program.navigate_back()
				elif params.transition == 'redirectTo':
					page = await mini_program.redirect_to(url)
				elif params.transition == 'reLaunch':
					page = await mini_program.re_launch(url)
				elif params.transition == 'switchTab':
					page = await mini_program.switch_tab(url)
				else:
					page = await mini_program.navigate_to(url)

				if params.wait_ms and page is not None:
					await page.wait_for(params.wait_ms)
				active_page = page if page is not None else await mini_program.current_page()
				return {'transition': params.transition, 'url': url, 'activePage': page_summary(active_page)}

			return json_result(await manager.run_with_connection(go, params.connection))

		@self.registry.action(
			'Take a screenshot of the current Mini Program viewport. Returns the image inline, or saves it to path.',
			param_model=ScreenshotAction,
		)
		async def screenshot(params: ScreenshotAction) -> ActionResult:
			async def capture(mini_program, _config):
				return await mini_program.screenshot(params.path)

			output = await manager.run_with_connection(capture, params.connection)
			if isinstance(output, str):
				return ActionResult(image=output)
			if params.path:
				return ActionResult(text=f'Screenshot saved to {params.path}')
			raise UserError('Screenshot produced no image data.')

		@self.registry.action('Call a wx.* API method of the Mini Program.', param_model=CallMethodAction)
		async def call_wx_method(params: CallMethodAction) -> ActionResult:
			call_args = params.args or []

			async def call(mini_program, _config):
				return await mini_program.call_wx_method(params.method, *call_args)

			result = await manager.run_with_connection(call, params.connection)
			return json_result({'method': params.method, 'arguments': call_args, 'result': result})

		@self.registry.action(
			'Get captured Mini Program console logs and exceptions. Optionally clear them afterwards.',
			param_model=GetConsoleLogsAction,
		)
		async def get_console_logs(params: GetConsoleLogsAction) -> ActionResult:
			entries = manager.get_log_entries()
			if params.clear:
				manager.clear_log_entries()
			return json_result({'count': len(entries), 'logs': [entry.to_dict() for entry in entries]})

	def _register_page_actions(self) -> None:
		manager = self.manager

		@self.registry.action('Get an element of the current page by selector.', param_model=ElementAction)
		async def page_get_element(params: ElementAction) -> ActionResult:
			async def get(page, _mini_program, _config):
				element = await resolve_element(page, params.selector, params.inner_selector)
				return await summarize_element(element)

			return json_result(await manager.run_with_page(get, params.connection))

		@self.registry.action(
			'Wait until an element matching the selector appears on the page. Does not see inside custom components.',
			param_model=WaitForElementAction,
		)
		async def page_wait_element(params: WaitForElementAction) -> ActionResult:
			async def wait(page, _mini_program, _config):
				try:
					await page.wait_for(params.selector)
				except AutomatorError as e:
					raise UserError(str(e)) from e

			await manager.run_with_page(wait, params.connection)
			return ActionResult(text=f'Element "{params.selector}" appeared.')

		@self.registry.action('Wait for the given number of milliseconds.', param_model=WaitForTimeoutAction)
		async def page_wait_timeout(params: WaitForTimeoutAction) -> ActionResult:
			async def wait(page, _mini_program, _config):
				await page.wait_for(params.milliseconds)

			await manager.run_with_page(wait, params.connection)
			return ActionResult(text=f'Waited {params.milliseconds}ms.')

		@self.registry.action('Get the data object of the current page, optionally at a path.', param_model=DataPathAction)
		async def page_get_data(params: DataPathAction) -> ActionResult:
			async def get(page, _mini_program, _config):
				return await page.data(params.path)

			data = await manager.run_with_page(get, params.connection)
			return json_result({'path': params.path, 'data': data})

		@self.registry.action('Update the data of the current page with setData.', param_model=SetDataAction)
		async def page_set_data(params: SetDataAction) -> ActionResult:
			async def update(page, _mini_program, _config):
				await page.set_data(params.data)

			await manager.run_with_page(update, params.connection)
			keys = ', '.join(params.data) or '(none)'
			return ActionResult(text=f'Updated page data keys: {keys}.')

		@self.registry.action('Call a method exposed on the current page instance.', param_model=CallMethodAction)
		async def page_call_method(params: CallMethodAction) -> ActionResult:
			call_args = params.args or []

			async def call(page, _mini_program, _config):
				return await page.call_method(params.method, *call_args)

			result = await manager.run_with_page(call, params.connection)
			return json_result({'method': params.method, 'arguments': call_args, 'result': result})

	def _register_element_actions(self) -> None:
		manager = self.manager

		@self.registry.action(
			'Tap a WXML element. For elements inside a custom component, set selector to the component and innerSelector to the element.',
			param_model=TapElementAction,
		)
		async def element_tap(params: TapElementAction) -> ActionResult:
			async def tap(page, _mini_program, _config):
				element = await resolve_element(page, params.selector, params.inner_selector)
				await element.tap()
				if params.wait_ms:
					await page.wait_for(params.wait_ms)

			await manager.run_with_page(tap, params.connection)
			waited = f' and waited {params.wait_ms}ms' if params.wait_ms else ''
			return ActionResult(text=f'Tapped element {describe_target(params.selector, params.inner_selector)}{waited}.')

		@self.registry.action('Input text into an element.', param_model=InputTextAction)
		async def element_input(params: InputTextAction) -> ActionResult:
			async def type_value(page, _mini_program, _config):
				element = await resolve_element(page, params.selector, params.inner_selector)
				await element.input(params.value)

			await manager.run_with_page(type_value, params.connection)
			return ActionResult(text=f'Input "{params.value}" into element {describe_target(params.selector, params.inner_selector)}.')

		@self.registry.action('Call a method of a custom component instance.', param_model=ElementMethodAction)
		async def element_call_method(params: ElementMethodAction) -> ActionResult:
			call_args = params.args or []

			async def call(page, _mini_program, _config):
				element = await resolve_element(page, params.selector, params.inner_selector)
				return await element.call_method(params.method, *call_args)

			result = await manager.run_with_page(call, params.connection)
			return json_result(
				{
					'selector': params.selector,
					'innerSelector': params.inner_selector,
					'method': params.method,
					'arguments': call_args,
					'result': result,
				}
			)

		@self.registry.action('Get the render data of a custom component instance.', param_model=ElementDataAction)
		async def element_get_data(params: ElementDataAction) -> ActionResult:
			async def get(page, _mini_program, _config):
				element = await resolve_element(page, params.selector, params.inner_selector)
				return await element.data(params.path)

			data = await manager.run_with_page(get, params.connection)
			return json_result({'selector': params.selector, 'innerSelector': params.inner_selector, 'path': params.path, 'data': data})

		@self.registry.action('Set the render data of a custom component instance.', param_model=ElementSetDataAction)
		async def element_set_data(params: ElementSetDataAction) -> ActionResult:
			async def update(page, _mini_program, _config):
				element = await resolve_element(page, params.selector, params.inner_selector)
				await element.set_data(params.data)

			await manager.run_with_page(update, params.connection)
			keys = ', '.join(params.data) or '(none)'
			return ActionResult(text=f'Updated component data keys: {keys}.')

		@self.registry.action(
			'Get the first element matching targetSelector inside an element, like element.$(selector).',
			param_model=InnerElementAction,
		)
		async def element_get_inner_element(params: InnerElementAction) -> ActionResult:
			async def get(page, _mini_program, _config):
				element = await resolve_element(page, params.selector, params.inner_selector)
				inner = await element.get_element(params.target_selector)
				if inner is None:
					raise UserError(f'No element matches "{params.target_selector}" within "{params.selector}".')
				text, outer_wxml = await asyncio.gather(_read_or_none(inner.text), _read_or_none(inner.outer_wxml))
				return {
					'parentSelector': params.selector,
					'parentInnerSelector': params.inner_selector,
					'targetSelector': params.target_selector,
					'tagName': inner.tag_name,
					'text': text,
					'outerWxml': outer_wxml,
				}

			return json_result(await manager.run_with_page(get, params.connection))

		@self.registry.action(
			'Get all elements matching targetSelector inside an element, like element.$$(selector).',
			param_model=InnerElementAction,
		)
		async def element_get_inner_elements(params: InnerElementAction) -> ActionResult:
			async def get(page, _mini_program, _config):
				element = await resolve_element(page, params.selector, params.inner_selector)
				inner_elements = await element.get_elements(params.target_selector)
				texts = await asyncio.gather(*(_read_or_none(inner.text) for inner in inner_elements))
				return {
					'parentSelector': params.selector,
					'parentInnerSelector': params.inner_selector,
					'targetSelector': params.target_selector,
					'count': len(inner_elements),
					'elements': [
						{'index': index, 'tagName': inner.tag_name, 'text': text}
						for index, (inner, text) in enumerate(zip(inner_elements, texts))
					],
				}

			return json_result(await manager.run_with_page(get, params.connection))

		@self.registry.action('Get the width and height of an element.', param_model=ElementAction)
		async def element_get_size(params: ElementAction) -> ActionResult:
			async def get(page, _mini_program, _config):
				element = await resolve_element(page, params.selector, params.inner_selector)
				return await element.size()

			size = await manager.run_with_page(get, params.connection)
			return json_result({'selector': params.selector, 'innerSelector': params.inner_selector, **size})

		@self.registry.action(
			'Get the WXML of an element. Inner WXML by default, set outer to include the element itself.',
			param_model=ElementWxmlAction,
		)
		async def element_get_wxml(params: ElementWxmlAction) -> ActionResult:
			async def get(page, _mini_program, _config):
				element = await resolve_element(page, params.selector, params.inner_selector)
				return await (element.outer_wxml() if params.outer else element.wxml())

			wxml = await manager.run_with_page(get, params.connection)
			return json_result(
				{
					'selector': params.selector,
					'innerSelector': params.inner_selector,
					'type': 'outerWxml' if params.outer else 'wxml',
					'wxml': wxml,
				}
			)
