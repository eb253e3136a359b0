"""
Main script: Entry point for the overlay <-> broker bridge.

- Loads converter.conf.json (overlay connection parameters, broker URL and nodes, logging)
- Generates this process's InstanceIdentity
- Wires three independent links and the two bridges:

    overlay events link --> OverlayToBrokerBridge --> broker link (publish node)
    broker link (subscribe node) --> BrokerToOverlayBridge --> overlay control link

- Runs until interrupted

Property of Uncompromising Sensors LLC.
"""

# Imports
import argparse, asyncio, os, signal, sys
from typing import Optional

# Local imports
from bridgeSdk.logging import getLogger, configureLogging, setBridgeContext
from bridgeSdk.transport import TransportRegistry
from .brokerLink import ReconnectingBrokerLink
from .brokerToOverlay import BrokerToOverlayBridge
from .configLoader import load_bridge_config
from .errors import ConfigError
from .identity import InstanceIdentity
from .legacyLink import LinkRole, ReconnectingLegacyLink
from .overlayToBroker import OverlayToBrokerBridge

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'converter.conf.json')


# OverlayBridgeApp class
class OverlayBridgeApp:
    def __init__(self, config: dict, identity: Optional[InstanceIdentity] = None,
                 registry: Optional[TransportRegistry] = None, clientFactory=None):

        # Initialize logger (auto-detects: 'overlayBridge.main.OverlayBridgeApp')
        self.log = getLogger()
        self.config = config
        self.identity = identity or InstanceIdentity.generate(config.get('identityPrefix', 'proxy'))

        overlayParams = config['overlay']
        mserver = config['mserver']
        legacyOpts = {'clientFactory': clientFactory} if clientFactory else {}

        # Control link first: the events link tears it down when the overlay server goes away
        self.controlLink = ReconnectingLegacyLink(LinkRole.CONTROL, self.identity, overlayParams, **legacyOpts)
        self.brokerToOverlay = BrokerToOverlayBridge(self.identity, self.controlLink)

        self.brokerLink = ReconnectingBrokerLink(
            mserver['url'], mserver['publish_node'], [mserver['subscribe_node']],
            onMessage=self.brokerToOverlay.handleMessage,
            transportOptions=mserver.get('options'), registry=registry)
        self.overlayToBroker = OverlayToBrokerBridge(self.identity, self.brokerLink)

        self.eventsLink = ReconnectingLegacyLink(
            LinkRole.EVENTS, self.identity, overlayParams,
            onEvent=self.overlayToBroker.handleEvent, dependents=[self.controlLink], **legacyOpts)

        self._stopped: Optional[asyncio.Event] = None


    @property
    def links(self):
        return [self.brokerLink, self.eventsLink, self.controlLink]


    def start(self) -> None:
        """Start all links (requires a running event loop)."""
        self.log.info('Starting overlay bridge', instanceId=self.identity.token)
        for link in self.links:
            link.start()


    async def stop(self) -> None:
        await self.brokerToOverlay.stop()
        for link in self.links:
            await link.stop()
        self.log.info('Overlay bridge stopped', overlayToBroker=self.overlayToBroker.stats,
                      brokerToOverlay=self.brokerToOverlay.stats)
        if self._stopped is not None:
            self._stopped.set()


    async def run(self) -> None:
        """Run until cancelled (Ctrl+C), SIGTERM, or stop() is called."""
        self._stopped = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGTERM, self._stopped.set)
            sigtermHandled = True
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows event loops, or not running in the main thread
            sigtermHandled = False

        self.start()
        try:
            await self._stopped.wait()
        finally:
            if sigtermHandled:
                loop.remove_signal_handler(signal.SIGTERM)
            if any(link.isRunning for link in self.links):
                await self.stop()


def parseArgs(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Bridge between the overlay server protocol and the message broker')
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH, help='Path to config file')
    parser.add_argument('--log-level', default=None, help='Override logging.level from the config file')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point - load config, configure logging, run the bridge forever"""
    args = parseArgs(argv)
    log = getLogger()
    log.info(f'Using config file {args.config}')

    try:
        config = load_bridge_config(args.config, log)
    except ConfigError as e:
        log.error(f'Invalid configuration: {e}')
        return 1

    logConfig = dict(config['logging'])
    if args.log_level:
        logConfig['level'] = args.log_level
    try:
        configureLogging(**logConfig)
    except ValueError as e:
        log.error(f'Invalid logging configuration: {e}')
        return 1

    app = OverlayBridgeApp(config)
    setBridgeContext(app.identity.token, appName='overlayBridge')

    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        log.info('Overlay bridge stopped by user')
    return 0


if __name__ == '__main__':
    sys.exit(main())
