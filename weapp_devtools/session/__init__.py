from weapp_devtools.session.logs import MAX_LOG_ENTRIES, LogBuffer, LogEntry, to_serializable
from weapp_devtools.session.manager import ActiveSession, NoSession, SessionManager

__all__ = ['ActiveSession', 'LogBuffer', 'LogEntry', 'MAX_LOG_ENTRIES', 'NoSession', 'SessionManager', 'to_serializable']
