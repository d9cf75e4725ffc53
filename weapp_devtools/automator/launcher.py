from __future__ import annotations

import asyncio
import logging
import platform
import shutil
from pathlib import Path

from websockets.exceptions import InvalidHandshake

from weapp_devtools.automator.connection import Connection
from weapp_devtools.automator.miniprogram import MiniProgram, terminate_process_tree
from weapp_devtools.config import ResolvedConfig
from weapp_devtools.exceptions import AutomatorError
from weapp_devtools.timing import Deadline

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9420
DEFAULT_TIMEOUT_MS = 30_000
CONNECT_RETRY_INTERVAL = 0.5

_DEFAULT_CLI_PATHS = {
	'Darwin': '/Applications/wechatwebdevtools.app/Contents/MacOS/cli',
	'Windows': 'C:/Program Files (x86)/Tencent/微信web开发者工具/cli.bat',
}


def default_cli_path() -> str:
	"""Best guess at the DevTools CLI location when WECHAT_DEVTOOLS_CLI_PATH is not set."""
	candidate = _DEFAULT_CLI_PATHS.get(platform.system())
	if candidate and Path(candidate).exists():
		return candidate
	return shutil.which('cli') or candidate or 'cli'


def build_launch_command(config: ResolvedConfig) -> list[str]:
	"""Command line for `cli auto`, which opens the project and exposes the automation port."""
	command = [
		config.cli_path or default_cli_path(),
		'auto',
		'--project',
		config.project_path or '',
		'--auto-port',
		str(config.port or DEFAULT_PORT),
	]
	if config.account:
		command += ['--auto-account', config.account]
	if config.ticket:
		command += ['--ticket', config.ticket]
	if config.trust_project:
		command.append('--trust-project')
	if config.args:
		command += config.args
	return command


class DevToolsAutomator:
	"""Opens MiniProgram sessions, either by launching the DevTools CLI or by dialing a running automation port."""

	def __init__(self, host: str = '127.0.0.1'):
		self.host = host

	async def connect(self, config: ResolvedConfig) -> MiniProgram:
		assert config.ws_endpoint, 'connect mode requires ws_endpoint'
		logger.info(f'🌎 Connecting to existing WeChat DevTools automation port: {config.ws_endpoint}')
		timeout = (config.timeout or DEFAULT_TIMEOUT_MS) / 1000
		connection = await Connection.open(config.ws_endpoint, open_timeout=timeout)
		return MiniProgram(connection)

	async def launch(self, config: ResolvedConfig) -> MiniProgram:
		assert config.project_path, 'launch mode requires project_path'
		command = build_launch_command(config)
		timeout = (config.timeout or DEFAULT_TIMEOUT_MS) / 1000
		endpoint = f'ws://{self.host}:{config.port or DEFAULT_PORT}'

		logger.info(f'🚀 Launching WeChat DevTools for {config.project_path} -> {endpoint}')
		logger.debug(f' ↳ {" ".join(command)}')
		try:
			process = await asyncio.create_subprocess_exec(
				*command,
				cwd=config.cwd,
				stdout=asyncio.subprocess.DEVNULL,
				stderr=asyncio.subprocess.DEVNULL,
			)
		except OSError as e:
			raise AutomatorError(f'Could not start DevTools CLI {command[0]!r}: {e}') from e

		try:
			connection = await self._wait_for_port(endpoint, process, timeout)
		except BaseException:
			await terminate_process_tree(process)
			raise
		return MiniProgram(connection, process=process)

	async def _wait_for_port(self, endpoint: str, process: asyncio.subprocess.Process, timeout: float) -> Connection:
		deadline = Deadline(timeout)
		last_error: Exception | None = None
		while not deadline.expired:
			if process.returncode not in (None, 0):
				raise AutomatorError(f'DevTools CLI exited with code {process.returncode} before {endpoint} accepted connections')
			try:
				return await Connection.open(endpoint, open_timeout=max(0.1, deadline.remaining()))
			except (OSError, TimeoutError, InvalidHandshake) as e:
				last_error = e
				await asyncio.sleep(CONNECT_RETRY_INTERVAL)
		raise AutomatorError(f'Timed out after {timeout:.0f}s waiting for {endpoint} to accept connections ({last_error})')
