import locale
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

from weapp_devtools.timing import now_utc_iso, process_start_utc_iso, uptime_seconds

LOGGER_NAME = 'weapp_devtools'


def addLoggingLevel(levelName, levelNum, methodName=None):
	"""
	Adds a new logging level to the `logging` module and the currently configured logging class.

	`levelName` becomes an attribute of the `logging` module with the value
	`levelNum`. `methodName` becomes a convenience method for both `logging`
	itself and the class returned by `logging.getLoggerClass()`. If
	`methodName` is not specified, `levelName.lower()` is used.

	Raises `AttributeError` if the level name or method name is already taken.

	Example
	-------
	>>> addLoggingLevel('RESULT', 35)
	>>> logging.getLogger(__name__).result('session ready')
	"""
	if not methodName:
		methodName = levelName.lower()

	if hasattr(logging, levelName):
		raise AttributeError(f'{levelName} already defined in logging module')
	if hasattr(logging, methodName):
		raise AttributeError(f'{methodName} already defined in logging module')
	if hasattr(logging.getLoggerClass(), methodName):
		raise AttributeError(f'{methodName} already defined in logger class')

	def logForLevel(self, message, *args, **kwargs):
		if self.isEnabledFor(levelNum):
			self._log(levelNum, message, args, **kwargs)

	def logToRoot(message, *args, **kwargs):
		logging.log(levelNum, message, *args, **kwargs)

	logging.addLevelName(levelNum, levelName)
	setattr(logging, levelName, levelNum)
	setattr(logging.getLoggerClass(), methodName, logForLevel)
	setattr(logging, methodName, logToRoot)


class SafeStreamHandler(logging.StreamHandler):
	"""A logging handler that keeps working on consoles that can't encode every character.

	DevTools console events frequently carry CJK text and emoji; on a cp1252 console
	the write is retried with 'replace' instead of raising UnicodeEncodeError.
	"""

	def emit(self, record):  # type: ignore[override]
		try:
			msg = self.format(record)
			stream = self.stream
			try:
				stream.write(msg + self.terminator)
			except UnicodeEncodeError:
				enc = getattr(stream, 'encoding', None) or locale.getpreferredencoding(False) or 'utf-8'
				sanitized = msg.encode(enc, errors='replace').decode(enc, errors='replace')
				stream.write(sanitized + self.terminator)
			self.flush()
		except Exception:
			self.handleError(record)


class WeappDevtoolsFormatter(logging.Formatter):
	def format(self, record):
		record.utc = now_utc_iso()
		record.uptime = f'{uptime_seconds():.3f}s'
		return super().format(record)


def setup_logging(stream=None, log_level=None, force_setup=False):
	"""Setup logging configuration for weapp_devtools.

	Args:
		stream: Output stream for logs (default: sys.stderr, so a host process keeps stdout for its own protocol).
		log_level: Override log level (default: WEAPP_DEVTOOLS_LOGGING_LEVEL or 'info')
		force_setup: Force reconfiguration even if handlers already exist
	"""
	try:
		addLoggingLevel('RESULT', 35)
	except AttributeError:
		pass  # Level already exists, which is fine

	log_type = (log_level or os.environ.get('WEAPP_DEVTOOLS_LOGGING_LEVEL') or 'info').lower()

	package_logger = logging.getLogger(LOGGER_NAME)
	if package_logger.handlers and not force_setup:
		return package_logger

	package_logger.handlers = []
	console = SafeStreamHandler(stream or sys.stderr)

	if log_type == 'result':
		console.setLevel('RESULT')
		console.setFormatter(WeappDevtoolsFormatter('%(message)s'))
	else:
		console.setFormatter(WeappDevtoolsFormatter('%(levelname)-8s [%(name)s] %(utc)s (+%(uptime)s) %(message)s'))

	package_logger.addHandler(console)
	package_logger.propagate = False

	if log_type == 'result':
		package_logger.setLevel('RESULT')
	elif log_type == 'debug':
		package_logger.setLevel(logging.DEBUG)
	else:
		package_logger.setLevel(logging.INFO)

	package_logger.debug(f'Logging initialized at {now_utc_iso()} (process_start={process_start_utc_iso()})')

	# Silence or adjust third-party loggers
	for logger_name in ('websockets', 'websockets.client', 'asyncio'):
		third_party = logging.getLogger(logger_name)
		third_party.setLevel(logging.ERROR)
		third_party.propagate = False

	return package_logger
