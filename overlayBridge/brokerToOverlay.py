"""
BrokerToOverlayBridge: broker messages -> overlay commands.

For each message from the broker subscription:
    1. drop messages carrying our own 'x-via-<identity>' header (we published them)
    2. encode with codec.messageToString(); drop silently when there is no overlay equivalent
    3. drop when the control link is not ready (no queueing)
    4. otherwise send it; a failed or timed-out acknowledgement is logged, the command is not retried

Sends run as tasks so a slow acknowledgement never blocks the broker subscription.
Commands still leave in arrival order: each task writes its line before its first suspension.

Property of Uncompromising Sensors LLC.
"""

# Imports
import asyncio
from typing import Optional, Set

# Local imports
from bridgeSdk.logging import getLogger
from bridgeSdk.messages import BrokerMessage
from .codec import messageToString
from .identity import InstanceIdentity
from .legacyLink import ReconnectingLegacyLink


class BrokerToOverlayBridge:

    def __init__(self, identity: InstanceIdentity, controlLink: ReconnectingLegacyLink):
        self.log = getLogger()
        self.identity = identity
        self.controlLink = controlLink
        self.stats = {'received': 0, 'sent': 0, 'looped': 0, 'unrepresentable': 0, 'dropped': 0, 'failed': 0}
        self._sendTasks: Set[asyncio.Task] = set()

    async def handleMessage(self, message: BrokerMessage) -> Optional[str]:
        """Translate and dispatch one broker message. Returns the command handed to the control link, or None."""
        self.stats['received'] += 1

        # Skip the messages we posted ourselves
        if self.identity.hasVisited(message.headers):
            self.stats['looped'] += 1
            return None

        command = messageToString(message)
        if command is None:
            self.stats['unrepresentable'] += 1
            return None

        if not self.controlLink.isReady:
            self.stats['dropped'] += 1
            self.log.warning(f"Control link not ready, dropping '{command}'", state=self.controlLink.state.value)
            return None

        self.log.info(f'-> {command}', topic=message.topic)
        task = asyncio.create_task(self._send(command))
        self._sendTasks.add(task)
        task.add_done_callback(self._sendTasks.discard)
        return command

    async def _send(self, command: str) -> None:
        try:
            await self.controlLink.send(command)
        except asyncio.TimeoutError:
            self.stats['failed'] += 1
            self.log.error(f"Error sending '{command}': no acknowledgement", timeout=True)
            return
        except Exception as e:
            self.stats['failed'] += 1
            self.log.error(f"Error sending '{command}', server said: {e}", errorClass=type(e).__name__)
            return
        self.stats['sent'] += 1

    async def waitIdle(self) -> None:
        """Wait until every in-flight command has been acknowledged or failed."""
        while self._sendTasks:
            await asyncio.gather(*list(self._sendTasks), return_exceptions=True)

    async def stop(self) -> None:
        for task in list(self._sendTasks):
            task.cancel()
        await self.waitIdle()
