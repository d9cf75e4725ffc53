class WeappDevtoolsError(Exception):
	"""Base class for every error raised by weapp_devtools."""


class UserError(WeappDevtoolsError):
	"""An error the caller can fix by supplying different input or fixing their environment."""


class ConfigurationError(UserError):
	"""Connection settings are malformed or miss a field the selected mode requires."""


class SessionError(UserError):
	"""A DevTools session could not be established or has no usable page."""


class AutomatorError(WeappDevtoolsError):
	"""The DevTools automation port rejected a request or the socket went away."""
