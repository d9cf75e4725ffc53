import os

from weapp_devtools.logging_config import setup_logging

# Hosts that own logging themselves can opt out with WEAPP_DEVTOOLS_SETUP_LOGGING=false
if os.environ.get('WEAPP_DEVTOOLS_SETUP_LOGGING', 'true').lower() != 'false':
	logger = setup_logging()
else:
	import logging

	logger = logging.getLogger('weapp_devtools')


# --- Lightweight, lazy re-exports ---
# The driver pulls in websockets and psutil; keep `import weapp_devtools` cheap for config-only callers.

_LAZY_EXPORTS = {
	# Configuration
	'ConnectionOverrides': ('weapp_devtools.config', 'ConnectionOverrides'),
	'ResolvedConfig': ('weapp_devtools.config', 'ResolvedConfig'),
	'resolve_config': ('weapp_devtools.config', 'resolve_config'),
	# Errors
	'ConfigurationError': ('weapp_devtools.exceptions', 'ConfigurationError'),
	'SessionError': ('weapp_devtools.exceptions', 'SessionError'),
	'UserError': ('weapp_devtools.exceptions', 'UserError'),
	# Session
	'SessionManager': ('weapp_devtools.session', 'SessionManager'),
	'LogEntry': ('weapp_devtools.session', 'LogEntry'),
	# Driver
	'DevToolsAutomator': ('weapp_devtools.automator', 'DevToolsAutomator'),
	'MiniProgram': ('weapp_devtools.automator', 'MiniProgram'),
	# Controller
	'Controller': ('weapp_devtools.controller', 'Controller'),
	'ActionResult': ('weapp_devtools.controller', 'ActionResult'),
}


def __getattr__(name: str):
	entry = _LAZY_EXPORTS.get(name)
	if not entry:
		raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
	module_path, attr_name = entry
	from importlib import import_module

	attr = getattr(import_module(module_path), attr_name)
	globals()[name] = attr
	return attr


__all__ = list(_LAZY_EXPORTS.keys())
