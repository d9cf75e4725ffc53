"""
Connection settings for a WeChat DevTools automation session.

Three layers feed a session's configuration, in ascending precedence:
	1. the configuration of the session that is currently open (only fields that carry a value)
	2. process-wide environment variables (see ENV_VARS)
	3. per-call overrides supplied by the caller
Every layer goes through the same ConnectionOverrides schema before the merge, so a malformed
environment variable fails exactly like a malformed caller override.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, PositiveInt, StringConstraints, ValidationError
from pydantic.alias_generators import to_camel

from weapp_devtools.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

AutomatorMode = Literal['launch', 'connect']

# field name -> environment variable
ENV_VARS: dict[str, str] = {
	'mode': 'WEAPP_AUTOMATOR_MODE',
	'cli_path': 'WECHAT_DEVTOOLS_CLI_PATH',
	'ws_endpoint': 'WEAPP_WS_ENDPOINT',
	'timeout': 'WEAPP_DEVTOOLS_TIMEOUT',
	'port': 'WEAPP_DEVTOOLS_PORT',
	'account': 'WEAPP_AUTO_ACCOUNT',
	'ticket': 'WEAPP_DEVTOOLS_TICKET',
	'trust_project': 'WEAPP_TRUST_PROJECT',
	'args': 'WEAPP_DEVTOOLS_ARGS',
	'cwd': 'WEAPP_DEVTOOLS_CWD',
	'auto_close': 'WEAPP_AUTOCLOSE',
}


def normalize_string_list(value: Any) -> list[str] | None:
	"""Turn a whitespace-delimited string or a sequence of strings into a list of non-empty stripped strings.

	Returns None when nothing is left, so an empty list and a missing value are the same thing.
	"""
	if value is None:
		return None
	if isinstance(value, str):
		items = value.split()
	elif isinstance(value, (list, tuple)):
		items = value
	else:
		raise ValueError('expected a whitespace-separated string or a list of strings')

	normalized = []
	for item in items:
		if not isinstance(item, str):
			raise ValueError('list entries must be strings')
		item = item.strip()
		if item:
			normalized.append(item)
	return normalized or None


NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
StringList = Annotated[list[str] | None, BeforeValidator(normalize_string_list)]


class _ConnectionFields(BaseModel):
	model_config = ConfigDict(
		extra='forbid',
		frozen=True,
		alias_generator=to_camel,
		validate_by_alias=True,
		validate_by_name=True,
	)

	cli_path: NonEmptyStr | None = None
	project_path: NonEmptyStr | None = None
	ws_endpoint: NonEmptyStr | None = None
	timeout: PositiveInt | None = None  # milliseconds, passed through to the launcher
	port: PositiveInt | None = None
	account: NonEmptyStr | None = None
	ticket: NonEmptyStr | None = None
	trust_project: bool | None = None
	args: StringList = None
	cwd: NonEmptyStr | None = None
	auto_close: bool | None = None


class ConnectionOverrides(_ConnectionFields):
	"""Sparse connection settings. A field left as None is absent, which is not the same as False or 0."""

	mode: AutomatorMode | None = None


class ResolvedConfig(_ConnectionFields):
	"""The settings a session is actually opened with."""

	mode: AutomatorMode

	@property
	def owns_target(self) -> bool:
		"""Launch sessions own the DevTools project window; connect sessions only borrow it."""
		return self.mode == 'launch'

	def summary(self) -> dict[str, Any]:
		return {
			'mode': self.mode,
			'projectPath': self.project_path,
			'wsEndpoint': self.ws_endpoint,
			'port': self.port,
		}


def _describe_validation_error(error: ValidationError) -> str:
	problems = []
	for item in error.errors():
		location = '.'.join(str(part) for part in item.get('loc', ())) or '<root>'
		problems.append(f'{location}: {item.get("msg")}')
	return '; '.join(problems)


def parse_overrides(value: ConnectionOverrides | Mapping[str, Any] | None, source: str = 'connection') -> ConnectionOverrides:
	"""Validate one configuration layer, converting schema failures into ConfigurationError."""
	if value is None:
		return ConnectionOverrides()
	if isinstance(value, ConnectionOverrides):
		return value
	try:
		return ConnectionOverrides.model_validate(value)
	except ValidationError as e:
		raise ConfigurationError(f'Invalid {source} settings: {_describe_validation_error(e)}') from e


def read_env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, str]:
	"""Snapshot the designated environment variables. Unset and blank variables are left out."""
	environ = os.environ if environ is None else environ
	snapshot: dict[str, str] = {}
	for field_name, env_name in ENV_VARS.items():
		raw = environ.get(env_name)
		if raw is not None and raw.strip():
			snapshot[field_name] = raw
	return snapshot


def _previous_layer(previous: ResolvedConfig | None) -> dict[str, Any]:
	"""Fields of the previous session that carry a value. `mode` is left out, it only serves as the inference fallback."""
	if previous is None:
		return {}
	layer: dict[str, Any] = {}
	for name, value in previous.model_dump(exclude={'mode'}).items():
		if value is None:
			continue
		if isinstance(value, (str, list)) and not value:
			continue
		layer[name] = value
	return layer


def resolve_config(
	overrides: ConnectionOverrides | Mapping[str, Any] | None = None,
	previous: ResolvedConfig | None = None,
	env: Mapping[str, Any] | None = None,
) -> ResolvedConfig:
	"""
	Merge previous session settings, environment and caller overrides into a ResolvedConfig.

	Args:
		overrides: per-call settings (snake_case or camelCase keys), highest precedence
		previous: configuration of the currently open session, lowest precedence
		env: environment snapshot as returned by read_env_overrides(); read from os.environ when None

	Raises:
		ConfigurationError: a layer fails validation or the inferred mode misses its mandatory field
	"""
	env_layer = parse_overrides(read_env_overrides() if env is None else env, source='environment')
	override_layer = parse_overrides(overrides)

	merged: dict[str, Any] = {
		**_previous_layer(previous),
		**env_layer.model_dump(exclude_none=True),
		**override_layer.model_dump(exclude_none=True),
	}

	# an explicit mode always beats the presence of a websocket endpoint
	mode = merged.pop('mode', None)
	if mode is None:
		if merged.get('ws_endpoint'):
			mode = 'connect'
		elif previous is not None:
			mode = previous.mode
		else:
			mode = 'launch'

	if mode == 'connect':
		if not merged.get('ws_endpoint'):
			raise ConfigurationError(
				'WeChat DevTools websocket endpoint is required in connect mode. '
				f'Provide connection.wsEndpoint or set {ENV_VARS["ws_endpoint"]}.'
			)
	elif not merged.get('project_path'):
		raise ConfigurationError('Mini Program project path is required in launch mode. Provide connection.projectPath.')

	return ResolvedConfig.model_validate({'mode': mode, **merged})


def same_config(a: ResolvedConfig, b: ResolvedConfig) -> bool:
	"""Whether a session opened with `a` can serve a call that resolved to `b`.

	Every field must match; `args` is compared as an ordered sequence, and an absent list equals an empty one.
	"""
	left = a.model_dump(exclude={'args'})
	right = b.model_dump(exclude={'args'})
	return left == right and list(a.args or ()) == list(b.args or ())
