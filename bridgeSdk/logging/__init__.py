"""
bridgeSdk logging - Hierarchical logger with automatic name detection.

API:
    from bridgeSdk.logging import getLogger

    # Class-level (auto-detect once in __init__)
    class MyLink:
        def __init__(self):
            self.log = getLogger()  # Auto: 'overlayBridge.legacyLink.MyLink'

        def connect(self):
            self.log.info("Connecting", host=self.host)

    # Module-level (auto-detect once at import)
    log = getLogger()  # Auto: 'overlayBridge.codec'

    # Global configuration (optional, once at app startup)
    from bridgeSdk.logging import configureLogging, setBridgeContext
    configureLogging(logDir='logs', level='DEBUG')
    setBridgeContext(instanceId='proxy-...')
"""

from .logger import getLogger, configureLogging, StructuredFormatter
from .context import (
    setBridgeContext,
    getBridgeContext,
    clearBridgeContext,
    BridgeContextFilter
)

__all__ = [
    'getLogger',
    'configureLogging',
    'StructuredFormatter',
    'setBridgeContext',
    'getBridgeContext',
    'clearBridgeContext',
    'BridgeContextFilter'
]
