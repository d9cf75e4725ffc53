from typing import TYPE_CHECKING

if TYPE_CHECKING:
	from .connection import Connection
	from .launcher import DevToolsAutomator, build_launch_command
	from .miniprogram import Element, MiniProgram, Page

# websockets and psutil are only needed once a session is actually opened
_LAZY_IMPORTS = {
	'Connection': ('.connection', 'Connection'),
	'DevToolsAutomator': ('.launcher', 'DevToolsAutomator'),
	'build_launch_command': ('.launcher', 'build_launch_command'),
	'Element': ('.miniprogram', 'Element'),
	'MiniProgram': ('.miniprogram', 'MiniProgram'),
	'Page': ('.miniprogram', 'Page'),
}


def __getattr__(name: str):
	"""Lazy import mechanism for the websocket driver."""
	if name in _LAZY_IMPORTS:
		module_path, attr_name = _LAZY_IMPORTS[name]
		from importlib import import_module

		full_module_path = f'weapp_devtools.automator{module_path}'
		try:
			module = import_module(full_module_path)
		except ImportError as e:
			raise ImportError(f'Failed to import {name} from {full_module_path}: {e}') from e
		attr = getattr(module, attr_name)
		globals()[name] = attr
		return attr

	raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = ['Connection', 'DevToolsAutomator', 'Element', 'MiniProgram', 'Page', 'build_launch_command']
