"""
Hierarchical logger with automatic name detection and structured fields.

Features:
- Auto-detects logger hierarchy from call stack (computed once, cached)
- Optional rotating log file per top-level app, console output by default
- configureLogging() re-applies handlers to loggers created before it was called
- Structured field logging: log.info("Overlay connected", link="control")

Usage:
    from bridgeSdk.logging import getLogger

    # Pattern 1: Class-level (compute once in __init__)
    class MyClass:
        def __init__(self):
            self.log = getLogger()  # Auto-detects hierarchy ONCE

        def method(self):
            self.log.info("Message", key=value)

    # Pattern 2: Module-level (compute once at import)
    log = getLogger()

Property of Uncompromising Sensors LLC.
"""

# Imports
import  inspect, logging, logging.handlers, socket
from pathlib import Path
from typing import Optional, Dict
from datetime import datetime, timezone as tz

# Local imports
from .context import BridgeContextFilter


# Global state
_hostname = socket.gethostname()
_configured = False
_fileHandlers = {}                          # Singleton cache: logPath -> handler
_managedLoggers: Dict[str, logging.Logger] = {}
_contextFilter = BridgeContextFilter()
_config = {
    'logDir': None,                         # None: console only
    'maxBytes': 10_000_000,                 # 10 MB per log file before rotation
    'backupCount': 5,
    'console': True,
    'level': logging.INFO,
    'utc': False
}


def configureLogging(logDir: Optional[str] = None, maxBytes: int = 10_000_000,
                     backupCount: int = 5, console: bool = True, level: str = 'INFO', utc: bool = False):
    """
    Configure global logging settings (call once at app startup).

    Args:
        logDir: Directory for rotating log files (default: None, console only)
        maxBytes: Maximum size per log file before rotation (default: 10MB)
        backupCount: Number of backup files to keep per app (default: 5)
        console: Also log to console (default: True)
        level: Minimum log level (default: 'INFO')
        utc: Use UTC timestamps (default: False, uses local time)
    """
    global _configured

    levelNo = getattr(logging, str(level).upper(), None)
    if not isinstance(levelNo, int):
        raise ValueError(f"Unknown log level '{level}'")

    _config.update({'logDir': logDir, 'maxBytes': maxBytes, 'backupCount': backupCount,
                    'console': console, 'level': levelNo, 'utc': utc})

    if logDir:
        Path(logDir).mkdir(parents=True, exist_ok=True)
    _configured = True

    # Loggers created at import time (module-level) pick up the new settings
    for name, logger in _managedLoggers.items():
        _applyHandlers(name, logger)


def _autoDetectName() -> str:
    """Auto-detect logger name from call stack. Returns hierarchy like: 'overlayBridge.legacyLink.ReconnectingLegacyLink'"""

    frame = inspect.currentframe()
    try:
        # Walk up the stack to find the first frame outside of this package
        current = frame
        while current is not None:
            current = current.f_back
            if current is None:
                break

            module = inspect.getmodule(current)
            if module is None:
                continue

            moduleName = module.__name__

            if moduleName.startswith('bridgeSdk.logging'):
                continue

            # Skip Python's import machinery
            if moduleName.startswith('importlib') or moduleName == '__main__':
                continue

            parts = moduleName.split('.')

            # 'bridgeSdk' is just a package wrapper
            if parts and parts[0] == 'bridgeSdk':
                parts = parts[1:]

            # Get class name if called from within a class method
            className = None
            if current.f_locals:
                if 'self' in current.f_locals:
                    className = current.f_locals['self'].__class__.__name__
                elif 'cls' in current.f_locals:
                    className = current.f_locals['cls'].__name__

            hierarchy = '.'.join(parts) if parts else 'unknown'
            if className:
                hierarchy = f"{hierarchy}.{className}"

            return hierarchy if hierarchy else 'unknown'

        return 'unknown'
    finally:
        del frame


class StructuredFormatter(logging.Formatter):
    """Formatter that includes hostname and structured fields.
    Format: timestamp - hostname - logger.name - level - message [field1=value1, field2=value2]"""

    _excluded = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs',
        'message', 'pathname', 'process', 'processName',
        'relativeCreated', 'thread', 'threadName', 'exc_info',
        'exc_text', 'stack_info', 'hostname', 'asctime', 'taskName'
    }

    def __init__(self, fmt=None, datefmt=None, utc=False):
        super().__init__(fmt, datefmt)
        self.utc = utc

    def formatTime(self, record, datefmt=None):
        if self.utc:
            ct = datetime.fromtimestamp(record.created, tz=tz.utc)
        else:
            ct = datetime.fromtimestamp(record.created)

        if datefmt:
            return ct.strftime(datefmt)
        return f"{ct.strftime('%Y-%m-%d %H:%M:%S')},{int(record.msecs):03d}"

    def format(self, record):
        record.hostname = _hostname

        structuredFields = [f"{key}={value}" for key, value in record.__dict__.items()
                            if key not in self._excluded and not key.startswith('_')]

        # Append fields to a copy of the message, other handlers see the original
        originalMsg = record.msg
        if structuredFields:
            record.msg = f"{originalMsg} [{', '.join(structuredFields)}]"
        try:
            return super().format(record)
        finally:
            record.msg = originalMsg


def _fileHandlerFor(logPath: str) -> logging.Handler:
    if logPath not in _fileHandlers:
        fileHandler = logging.handlers.RotatingFileHandler(
            logPath,
            maxBytes=_config['maxBytes'],
            backupCount=_config['backupCount'],
            encoding='utf-8'
        )
        fileHandler.setFormatter(StructuredFormatter(
            '%(asctime)s - %(hostname)s - %(name)s - %(levelname)s - %(message)s',
            utc=_config['utc']
        ))
        fileHandler.addFilter(_contextFilter)
        _fileHandlers[logPath] = fileHandler
    handler = _fileHandlers[logPath]
    handler.setLevel(_config['level'])
    return handler


def _applyHandlers(name: str, logger: logging.Logger) -> None:
    """(Re)attach console and file handlers according to the current global config."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    logger.setLevel(_config['level'])

    # One file per top-level app name ('overlayBridge' from 'overlayBridge.codec')
    if _config['logDir']:
        appName = name.split('.')[0]
        logPath = str(Path(_config['logDir']) / f"{appName}.log")
        logger.addHandler(_fileHandlerFor(logPath))

    if _config['console']:
        consoleHandler = logging.StreamHandler()
        consoleHandler.setLevel(_config['level'])
        consoleHandler.setFormatter(StructuredFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            utc=_config['utc']
        ))
        consoleHandler.addFilter(_contextFilter)
        logger.addHandler(consoleHandler)


def getLogger(name: Optional[str] = None) -> logging.Logger:
    """
    Get or create a logger with automatic hierarchy detection.

    Stack inspection happens ONCE during getLogger(); keep the returned logger.

    Args:
        name: Logger name (auto-detected from call stack if None)

    Returns:
        logging.Logger whose debug/info/warning/error/critical accept structured fields as **kwargs
    """
    if not _configured:
        configureLogging()

    if name is None:
        name = _autoDetectName()

    logger = logging.getLogger(name)

    # Always disable propagation to avoid duplicate messages
    logger.propagate = False

    if name not in _managedLoggers:
        _applyHandlers(name, logger)
        _managedLoggers[name] = logger

    return _wrapLogger(logger)


def _wrapLogger(logger: logging.Logger) -> logging.Logger:
    """
    Wrap a standard logger so its level methods accept structured fields as **kwargs.

    This allows: log.info("Message", field1=value1, field2=value2)
    Instead of: log.info("Message", extra={'field1': value1, 'field2': value2})
    """
    if hasattr(logger, '_is_wrapped'):
        return logger

    def wrap(original):
        def method(msg, *args, **kwargs):
            # exc_info is a reserved logging param, everything else is a structured field
            exc_info = kwargs.pop('exc_info', False)
            if kwargs:
                original(msg, *args, extra=kwargs, exc_info=exc_info)
            else:
                original(msg, *args, exc_info=exc_info)
        method.__doc__ = f"Log {original.__name__} message with structured fields."
        return method

    logger.debug = wrap(logger.debug)
    logger.info = wrap(logger.info)
    logger.warning = wrap(logger.warning)
    logger.error = wrap(logger.error)
    logger.critical = wrap(logger.critical)
    logger._is_wrapped = True

    return logger
