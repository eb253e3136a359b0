"""
Link Tests: reconnect state machine for the overlay and broker links

Tests:
1. Overlay control / events link handshake (setsource, events mode)
2. Single reconnect timer per link, fixed delays, stale notifications ignored
3. Events link loss tears down the control link
4. Broker link publish, dispatch, malformed payloads, resubscribe on reconnect, unsubscribe on stop
5. Broker link asymmetric delays (1s on close, 10s on error)

Property of Uncompromising Sensors LLC.
"""

import pytest
import asyncio

from bridgeSdk.messages import BrokerMessage
from bridgeSdk.transport import OverlayCommandError
from overlayBridge.brokerLink import ReconnectingBrokerLink
from overlayBridge.errors import LinkNotReadyError
from overlayBridge.identity import InstanceIdentity
from overlayBridge.legacyLink import LinkRole, ReconnectingLegacyLink
from overlayBridge.reconnectingLink import ConnectionState
from fakes import FakeOverlayServer, makeBrokerRegistry, waitFor


IDENTITY = InstanceIdentity('proxy-test')
OVERLAY_PARAMS = {'host': 'overlay.local', 'port': 5000}


def reconnectDelay(link):
    """Seconds until the pending reconnect timer fires"""
    return link._reconnectHandle.when() - asyncio.get_running_loop().time()


def makeLegacyLink(role, server, **kwargs):
    return ReconnectingLegacyLink(role, IDENTITY, OVERLAY_PARAMS, clientFactory=server, **kwargs)


class TestLegacyLinkHandshake:
    """Test connect + handshake per role"""

    @pytest.mark.asyncio
    async def test_control_link_announces_source(self):
        server = FakeOverlayServer()
        link = makeLegacyLink(LinkRole.CONTROL, server)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            client = server.clients[0]
            assert link.name == 'overlay-control'
            assert client.params == OVERLAY_PARAMS
            assert client.sent == ['setsource proxy-test']
            assert not client.eventsModeOn
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_events_link_enters_events_mode(self):
        server = FakeOverlayServer()
        link = makeLegacyLink(LinkRole.EVENTS, server)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            client = server.clients[0]
            assert client.sent == ['setsource proxy-test']
            assert client.eventsModeOn
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_not_ready_until_setsource_acknowledged(self):
        server = FakeOverlayServer()
        ack = asyncio.get_running_loop().create_future()
        server.replies['setsource'] = ack
        link = makeLegacyLink(LinkRole.CONTROL, server)
        link.start()
        try:
            await waitFor(lambda: server.clients and server.clients[0].sent)
            assert link.state is ConnectionState.CONNECTING
            with pytest.raises(LinkNotReadyError):
                await link.send('armclock')

            ack.set_result('OK')
            await waitFor(lambda: link.isReady)
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_rejected_setsource_reconnects(self):
        server = FakeOverlayServer()
        server.replies['setsource'] = OverlayCommandError('setsource proxy-test', 500, 'Denied')
        link = makeLegacyLink(LinkRole.CONTROL, server)
        link.start()
        try:
            await waitFor(lambda: link.reconnectPending)
            assert link.state is ConnectionState.DISCONNECTED
            assert server.clients[0].aborted
            assert 0.9 < reconnectDelay(link) <= 1.0
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_send_goes_through_current_client(self):
        server = FakeOverlayServer()
        server.replies['armclock'] = 'armed'
        link = makeLegacyLink(LinkRole.CONTROL, server)
        with pytest.raises(LinkNotReadyError) as excInfo:
            await link.send('armclock')
        assert excInfo.value.linkName == 'overlay-control'
        assert excInfo.value.state == 'disconnected'

        link.start()
        try:
            await waitFor(lambda: link.isReady)
            assert await link.send('armclock') == 'armed'
            assert server.clients[0].sent == ['setsource proxy-test', 'armclock']
            assert link.commandsSent == 1
        finally:
            await link.stop()


class TestLegacyLinkReconnect:
    """Test the reconnect state machine on the overlay links"""

    @pytest.mark.asyncio
    async def test_error_schedules_single_reconnect(self):
        server = FakeOverlayServer()
        link = makeLegacyLink(LinkRole.CONTROL, server)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            client = server.clients[0]

            client.emitError(OSError('connection reset'))
            assert link.state is ConnectionState.DISCONNECTED
            assert client.aborted
            handle = link._reconnectHandle
            assert handle is not None
            assert 0.9 < reconnectDelay(link) <= 1.0

            # Repeated notifications before the timer fires change nothing
            client.emitError(OSError('connection reset'))
            client.emitClose()
            link.abort('dependency lost')
            assert link._reconnectHandle is handle
            assert link.failures == 1
            assert len(server.clients) == 1
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_close_reconnects_with_fresh_client(self):
        server = FakeOverlayServer()
        link = makeLegacyLink(LinkRole.CONTROL, server, reconnectDelay=0.01)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            server.clients[0].emitClose()
            assert not link.isReady

            await waitFor(lambda: len(server.clients) == 2 and link.isReady)
            assert server.clients[1] is not server.clients[0]
            assert server.clients[1].sent == ['setsource proxy-test']
            assert link.connectAttempts == 2
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_connect_failure_keeps_retrying(self):
        server = FakeOverlayServer()
        server.refuseConnections = True
        link = makeLegacyLink(LinkRole.CONTROL, server, reconnectDelay=0.01)
        link.start()
        try:
            await waitFor(lambda: link.connectAttempts >= 3)
            assert not link.isReady

            server.refuseConnections = False
            await waitFor(lambda: link.isReady)
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_events_from_replaced_client_are_ignored(self):
        server = FakeOverlayServer()
        events = []
        link = makeLegacyLink(LinkRole.EVENTS, server, onEvent=events.append, reconnectDelay=0.01)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            old = server.clients[0]
            await old.emitEvent('tv1 showclock arm')
            assert events == ['tv1 showclock arm']

            old.emitClose()
            await waitFor(lambda: link.isReady)
            await old.emitEvent('tv1 showclock stop')
            await server.clients[1].emitEvent('tv1 showclock start')
            assert events == ['tv1 showclock arm', 'tv1 showclock start']
            assert link.eventsIn == 2
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_async_event_handler_is_awaited(self):
        server = FakeOverlayServer()
        events = []

        async def onEvent(line):
            await asyncio.sleep(0)
            events.append(line)

        link = makeLegacyLink(LinkRole.EVENTS, server, onEvent=onEvent)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            await server.clients[0].emitEvent('tv1 showtime True')
            assert events == ['tv1 showtime True']
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_events_link_loss_tears_down_control_link(self):
        controlServer, eventsServer = FakeOverlayServer(), FakeOverlayServer()
        control = makeLegacyLink(LinkRole.CONTROL, controlServer)
        events = makeLegacyLink(LinkRole.EVENTS, eventsServer, dependents=[control])
        control.start()
        events.start()
        try:
            await waitFor(lambda: control.isReady and events.isReady)

            eventsServer.clients[0].emitError(OSError('overlay server gone'))
            assert events.state is ConnectionState.DISCONNECTED
            assert control.state is ConnectionState.DISCONNECTED
            assert controlServer.clients[0].aborted
            assert 0.9 < reconnectDelay(control) <= 1.0
        finally:
            await events.stop()
            await control.stop()

    @pytest.mark.asyncio
    async def test_control_link_loss_leaves_events_link(self):
        controlServer, eventsServer = FakeOverlayServer(), FakeOverlayServer()
        control = makeLegacyLink(LinkRole.CONTROL, controlServer)
        events = makeLegacyLink(LinkRole.EVENTS, eventsServer, dependents=[control])
        control.start()
        events.start()
        try:
            await waitFor(lambda: control.isReady and events.isReady)
            controlServer.clients[0].emitClose()
            assert not control.isReady
            assert events.isReady
        finally:
            await events.stop()
            await control.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_reconnect(self):
        server = FakeOverlayServer()
        link = makeLegacyLink(LinkRole.CONTROL, server, reconnectDelay=0.01)
        link.start()
        await waitFor(lambda: link.isReady)
        server.clients[0].emitClose()
        assert link.reconnectPending

        await link.stop()
        assert not link.isRunning
        assert not link.reconnectPending
        await asyncio.sleep(0.05)
        assert len(server.clients) == 1

    @pytest.mark.asyncio
    async def test_stop_closes_ready_client(self):
        server = FakeOverlayServer()
        link = makeLegacyLink(LinkRole.CONTROL, server)
        link.start()
        await waitFor(lambda: link.isReady)
        await link.stop()
        assert server.clients[0].aborted
        assert link.state is ConnectionState.DISCONNECTED


class TestBrokerLink:
    """Test the broker link over an in-memory transport"""

    @pytest.mark.asyncio
    async def test_connects_and_subscribes(self):
        registry, broker = makeBrokerRegistry()
        link = ReconnectingBrokerLink('nats://broker:4222', 'out', ['in', 'alerts'],
                                      transportOptions={'name': 'bridge'}, registry=registry)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            transport = broker['instances'][0]
            assert transport.connectOpts == {'name': 'bridge'}
            assert set(transport.handlers) == {'in', 'alerts'}
            assert link.subscriptions == ['in', 'alerts']
        finally:
            await link.stop()
        assert transport.closed

    @pytest.mark.asyncio
    async def test_publish(self):
        registry, broker = makeBrokerRegistry()
        link = ReconnectingBrokerLink('nats://broker:4222', 'out', registry=registry)
        message = BrokerMessage('clock:arm', {'countdown': 150}, {'x-via-proxy-test': 'true'})

        with pytest.raises(LinkNotReadyError):
            await link.publish(message)

        link.start()
        try:
            await waitFor(lambda: link.isReady)
            await link.publish(message)
            await link.publish(message, node='elsewhere')

            transport = broker['instances'][0]
            assert [subject for subject, _ in transport.published] == ['out', 'elsewhere']
            assert BrokerMessage.fromBytes(transport.published[0][1]) == message
            assert link.published == 2
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_dispatches_decoded_messages(self):
        registry, broker = makeBrokerRegistry()
        received = []
        link = ReconnectingBrokerLink('nats://broker:4222', 'out', ['in'], onMessage=received.append,
                                      registry=registry)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            await broker['instances'][0].deliver('in', b'{"topic":"clock:stop","headers":{"a":1}}')
            assert received == [BrokerMessage('clock:stop', None, {'a': '1'})]
            assert link.received == 1
        finally:
            await link.stop()

    @pytest.mark.asyncio
    @pytest.mark.parametrize('payload', [b'not json', b'[1, 2]', b'{"data": {}}', b'{"topic": "a:b", "headers": "x"}'])
    async def test_malformed_payload_dropped(self, payload):
        registry, broker = makeBrokerRegistry()
        received = []
        link = ReconnectingBrokerLink('nats://broker:4222', 'out', ['in'], onMessage=received.append,
                                      registry=registry)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            await broker['instances'][0].deliver('in', payload)
            assert received == []
            assert link.malformed == 1
            assert link.isReady
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_error_waits_ten_seconds(self):
        registry, broker = makeBrokerRegistry()
        link = ReconnectingBrokerLink('nats://broker:4222', 'out', registry=registry)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            transport = broker['instances'][0]
            await transport.raiseError(RuntimeError('protocol violation'))

            assert link.state is ConnectionState.DISCONNECTED
            assert 9.9 < reconnectDelay(link) <= 10.0
            await waitFor(lambda: transport.closed)

            handle = link._reconnectHandle
            await transport.raiseError(RuntimeError('again'))
            await transport.dropConnection()
            assert link._reconnectHandle is handle
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_close_waits_one_second(self):
        registry, broker = makeBrokerRegistry()
        link = ReconnectingBrokerLink('nats://broker:4222', 'out', registry=registry)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            await broker['instances'][0].dropConnection()
            assert link.state is ConnectionState.DISCONNECTED
            assert 0.9 < reconnectDelay(link) <= 1.0
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_connect_failure_counts_as_error(self):
        registry, broker = makeBrokerRegistry()
        broker['refuse'] = True
        link = ReconnectingBrokerLink('nats://broker:4222', 'out', registry=registry)
        link.start()
        try:
            await waitFor(lambda: link.reconnectPending)
            assert 9.9 < reconnectDelay(link) <= 10.0
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_unregistered_scheme_retries(self):
        registry, broker = makeBrokerRegistry()
        link = ReconnectingBrokerLink('amqp://broker', 'out', registry=registry)
        link.start()
        try:
            assert link.state is ConnectionState.DISCONNECTED
            assert link.reconnectPending
            assert broker['instances'] == []
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_resubscribes_on_reconnect(self):
        registry, broker = makeBrokerRegistry()
        received = []
        link = ReconnectingBrokerLink('nats://broker:4222', 'out', ['in', 'late'], onMessage=received.append,
                                      closeDelay=0.01, registry=registry)
        link.start()
        try:
            await waitFor(lambda: link.isReady)
            old = broker['instances'][0]
            assert set(old.handlers) == {'in', 'late'}

            await old.dropConnection()
            await waitFor(lambda: len(broker['instances']) == 2 and link.isReady)
            new = broker['instances'][1]
            assert set(new.handlers) == {'in', 'late'}

            # The replaced transport no longer feeds the link
            await old.deliver('in', b'{"topic":"clock:arm"}')
            await new.deliver('in', b'{"topic":"clock:start"}')
            assert [m.topic for m in received] == ['clock:start']
        finally:
            await link.stop()

    @pytest.mark.asyncio
    async def test_stop_unsubscribes_before_close(self):
        registry, broker = makeBrokerRegistry()
        link = ReconnectingBrokerLink('nats://broker:4222', 'out', ['in', 'alerts'], registry=registry)
        link.start()
        await waitFor(lambda: link.isReady)
        transport = broker['instances'][0]

        await link.stop()
        assert transport.unsubscribed == ['in', 'alerts']
        assert transport.handlers == {}
        assert transport.closed

    @pytest.mark.asyncio
    async def test_stop_after_loss_skips_unsubscribe(self):
        registry, broker = makeBrokerRegistry()
        link = ReconnectingBrokerLink('nats://broker:4222', 'out', ['in'], registry=registry)
        link.start()
        await waitFor(lambda: link.isReady)
        transport = broker['instances'][0]

        await transport.dropConnection()
        await link.stop()
        assert transport.unsubscribed == []
