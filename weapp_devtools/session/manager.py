from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, Self, TypeVar

from weapp_devtools.config import ConnectionOverrides, ResolvedConfig, resolve_config, same_config
from weapp_devtools.exceptions import SessionError
from weapp_devtools.session.logs import LogBuffer, LogEntry

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ConnectionHandle(Protocol):
	"""What the manager needs from an open session (MiniProgram satisfies it)."""

	def on(self, event: str, callback: Callable[[Any], None]) -> None: ...

	def remove_all_listeners(self) -> None: ...

	async def current_page(self) -> Any: ...

	async def close(self) -> None: ...

	async def disconnect(self) -> None: ...


class Automator(Protocol):
	async def launch(self, config: ResolvedConfig) -> ConnectionHandle: ...

	async def connect(self, config: ResolvedConfig) -> ConnectionHandle: ...


@dataclass(frozen=True)
class NoSession:
	pass


@dataclass(frozen=True)
class ActiveSession:
	handle: ConnectionHandle
	config: ResolvedConfig


SessionState = NoSession | ActiveSession

NO_SESSION = NoSession()


class SessionManager:
	"""
	Owns at most one DevTools session and hands it to operations.

	Every call resolves its configuration against the open session's configuration; an unchanged
	configuration reuses the session, anything else tears it down and opens a new one. Console and
	exception events of the open session are recorded in a bounded log buffer.

	Calls must not overlap: the reuse/teardown decision is not guarded against interleaving, so
	concurrent callers have to be serialized by whoever drives the manager.
	"""

	def __init__(
		self,
		automator: Automator | None = None,
		env: Mapping[str, Any] | None = None,
		log_capacity: int | None = None,
	):
		if automator is None:
			from weapp_devtools.automator import DevToolsAutomator

			automator = DevToolsAutomator()
		self.automator = automator
		# None means read os.environ on every call
		self.env = env
		self._state: SessionState = NO_SESSION
		self._logs = LogBuffer() if log_capacity is None else LogBuffer(log_capacity)

	def __repr__(self) -> str:
		if isinstance(self._state, ActiveSession):
			return f'SessionManager(active={self._state.config.mode}, logs={len(self._logs)})'
		return f'SessionManager(active=None, logs={len(self._logs)})'

	@property
	def active(self) -> bool:
		return isinstance(self._state, ActiveSession)

	@property
	def config(self) -> ResolvedConfig | None:
		return self._state.config if isinstance(self._state, ActiveSession) else None

	def get_log_entries(self) -> list[LogEntry]:
		return self._logs.entries()

	def clear_log_entries(self) -> None:
		self._logs.clear()

	async def run_with_connection(
		self,
		operation: Callable[[Any, ResolvedConfig], Awaitable[T]],
		overrides: ConnectionOverrides | Mapping[str, Any] | None = None,
		reconnect: bool = False,
	) -> T:
		"""Run `operation(handle, config)` against a session matching `overrides`, opening one if needed.

		Raises:
			ConfigurationError: the settings could not be resolved
			SessionError: launching or connecting failed
		"""
		config = resolve_config(overrides, self.config, env=self.env)

		if reconnect:
			await self.teardown()

		state = self._state
		if isinstance(state, ActiveSession) and same_config(state.config, config):
			handle = state.handle
		else:
			await self.teardown()
			handle = await self._open(config)

		try:
			return await operation(handle, config)
		finally:
			if config.auto_close:
				await self.teardown()

	async def run_with_page(
		self,
		operation: Callable[[Any, Any, ResolvedConfig], Awaitable[T]],
		overrides: ConnectionOverrides | Mapping[str, Any] | None = None,
		reconnect: bool = False,
	) -> T:
		"""Like run_with_connection, but also resolves the current page and calls `operation(page, handle, config)`."""

		async def with_page(handle: Any, config: ResolvedConfig) -> T:
			page = await handle.current_page()
			if not page:
				raise SessionError('Mini Program page stack is empty. Ensure the project window is open.')
			return await operation(page, handle, config)

		return await self.run_with_connection(with_page, overrides=overrides, reconnect=reconnect)

	async def teardown(self) -> None:
		"""Close the open session, if any. Never raises; always leaves the manager without a session."""
		state = self._state
		if not isinstance(state, ActiveSession):
			return

		try:
			if state.config.owns_target:
				await state.handle.close()
			else:
				await state.handle.disconnect()
			logger.debug(f'🛑 Closed WeChat DevTools automation session ({state.config.mode})')
		except Exception as e:
			logger.warning(f'⚠️ Failed to close WeChat DevTools cleanly: {type(e).__name__}: {e}')
		finally:
			try:
				state.handle.remove_all_listeners()
			except Exception as e:
				logger.warning(f'⚠️ Failed to detach event listeners: {type(e).__name__}: {e}')
			self._state = NO_SESSION

	async def _open(self, config: ResolvedConfig) -> Any:
		logger.info(f'Establishing WeChat DevTools automation session {config.summary()}')
		try:
			if config.mode == 'connect':
				handle = await self.automator.connect(config)
			else:
				handle = await self.automator.launch(config)
		except Exception as e:
			self._state = NO_SESSION
			action = 'connect to' if config.mode == 'connect' else 'launch'
			raise SessionError(f'Failed to {action} WeChat DevTools: {e}') from e

		self._state = ActiveSession(handle=handle, config=config)
		try:
			self._attach_logging(handle)
		except Exception as e:
			await self.teardown()
			raise SessionError(f'Failed to subscribe to WeChat DevTools events: {e}') from e
		return handle

	def _attach_logging(self, handle: ConnectionHandle) -> None:
		def on_console(event: Any) -> None:
			entry = self._logs.capture_console(event)
			logger.debug(f'Mini Program console [{entry.kind}]: {entry.message}')

		def on_exception(event: Any) -> None:
			entry = self._logs.capture_exception(event)
			logger.error(f'Mini Program exception: {entry.message}')

		handle.on('console', on_console)
		handle.on('exception', on_exception)

	async def __aenter__(self) -> Self:
		return self

	async def __aexit__(self, exc_type, exc_val, exc_tb):
		await self.teardown()
