"""
Logging Context

Stamps the bridge identity (instanceId, and optionally the app name) onto every log record.
The filter is attached to each handler created by getLogger(), so it applies to all bridge loggers.
"""

import logging
from typing import Optional
from contextvars import ContextVar

# Context variables for bridge identity
_instance_id: ContextVar[Optional[str]] = ContextVar('instance_id', default=None)
_app_name: ContextVar[Optional[str]] = ContextVar('app_name', default=None)


class BridgeContextFilter(logging.Filter):
    """
    Logging filter that adds bridge context to all log records
    """

    def filter(self, record):
        instanceId = _instance_id.get()
        appName = _app_name.get()

        # Do not clobber fields passed explicitly by the caller
        if instanceId and not hasattr(record, 'instanceId'):
            record.instanceId = instanceId
        if appName and not hasattr(record, 'app'):
            record.app = appName

        return True


def setBridgeContext(instanceId: str, appName: str = None):
    """
    Set process-level context for logging

    Call before any tasks are created so asyncio tasks inherit the values.

    Args:
        instanceId: InstanceIdentity token of this bridge process
        appName: Application name (optional)
    """
    _instance_id.set(instanceId)
    if appName:
        _app_name.set(appName)


def getBridgeContext() -> dict:
    """Get current bridge context"""
    return {
        'instanceId': _instance_id.get(),
        'app': _app_name.get()
    }


def clearBridgeContext():
    """Clear bridge context"""
    _instance_id.set(None)
    _app_name.set(None)
