"""Tests for the link session: state machine, correlation and link loss."""

import asyncio

import pytest

from envision_mcp.exceptions import LinkLostError, ProtocolViolationError, SessionStateError
from envision_mcp.protocol.commands import Command, build_flush_start, build_query
from envision_mcp.protocol.framing import build_frame
from envision_mcp.transport.session import SessionState, TransportSession


def _brightness_request():
    return build_query(Command.GET_BRIGHTNESS)


def test_open_reaches_ready(transport, settings):
    async def scenario():
        session = TransportSession(transport, settings)
        assert session.state is SessionState.DISCONNECTED
        await session.open()
        return session

    session = asyncio.run(scenario())
    assert session.state is SessionState.READY
    assert session.ready
    assert session.mtu == 512
    assert transport.connected


def test_negotiated_mtu_below_request(make_transport, settings):
    """The session keeps whatever MTU the peer grants."""
    transport = make_transport(mtu=185)

    async def scenario():
        session = TransportSession(transport, settings)
        await session.open()
        return session

    session = asyncio.run(scenario())
    assert session.ready
    assert session.mtu == 185


def test_open_failure_closes(transport, settings):
    """A failed connect leaves the session closed and reports link loss."""
    transport.fail_connect = True

    async def scenario():
        session = TransportSession(transport, settings)
        with pytest.raises(LinkLostError):
            await session.open()
        return session

    session = asyncio.run(scenario())
    assert session.state is SessionState.CLOSED
    assert transport.disconnect_calls == 1


def test_open_twice_rejected(transport, settings):
    async def scenario():
        session = TransportSession(transport, settings)
        await session.open()
        with pytest.raises(SessionStateError):
            await session.open()

    asyncio.run(scenario())


def test_reopen_after_close(transport, settings):
    async def scenario():
        session = TransportSession(transport, settings)
        await session.open()
        await session.close()
        assert session.state is SessionState.CLOSED
        await session.open()
        return session

    session = asyncio.run(scenario())
    assert session.ready


def test_context_manager_closes(transport, settings):
    async def scenario():
        async with TransportSession(transport, settings) as session:
            assert session.ready
        return session

    session = asyncio.run(scenario())
    assert session.state is SessionState.CLOSED
    assert not transport.connected


def test_send_writes_frame(transport, settings):
    async def scenario():
        async with TransportSession(transport, settings) as session:
            return await session.send(build_flush_start())

    assert asyncio.run(scenario()) is True
    assert transport.written == [build_flush_start()]


def test_send_before_open_raises(transport, settings):
    async def scenario():
        session = TransportSession(transport, settings)
        with pytest.raises(LinkLostError):
            await session.send(build_flush_start())

    asyncio.run(scenario())
    assert transport.written == []


def test_request_returns_payload(transport, settings):
    transport.reply(Command.GET_BRIGHTNESS, Command.BRIGHTNESS_RESPONSE, b"\x40\x00")

    async def scenario():
        async with TransportSession(transport, settings) as session:
            return await session.request(
                _brightness_request(), Command.BRIGHTNESS_RESPONSE
            )

    assert asyncio.run(scenario()) == b"\x40\x00"


def test_request_with_fragmented_reply(make_transport, settings):
    """A response split into 3-byte notifications is reassembled."""
    transport = make_transport(fragment_size=3)
    transport.reply(Command.GET_MAGNETIC_FIELD, Command.MAGNETIC_FIELD_RESPONSE, bytes(range(17)))

    async def scenario():
        async with TransportSession(transport, settings) as session:
            return await session.request(
                build_query(Command.GET_MAGNETIC_FIELD), Command.MAGNETIC_FIELD_RESPONSE
            )

    assert asyncio.run(scenario()) == bytes(range(17))


def test_unsolicited_frames_discarded(transport, settings):
    """Frames for other commands do not satisfy the pending request."""

    def reply_with_noise(payload):
        transport.notify(build_frame(Command.USER_CONFIG_RESPONSE, bytes(68)))
        return b"\x07\x00"

    transport.reply(Command.GET_BRIGHTNESS, Command.BRIGHTNESS_RESPONSE, reply_with_noise)

    async def scenario():
        async with TransportSession(transport, settings) as session:
            transport.notify(build_frame(Command.BRIGHTNESS_RESPONSE, b"\x01\x00"))
            return await session.request(
                _brightness_request(), Command.BRIGHTNESS_RESPONSE
            )

    assert asyncio.run(scenario()) == b"\x07\x00"


def test_request_timeout_returns_none(transport, settings):
    async def scenario():
        async with TransportSession(transport, settings) as session:
            result = await session.request(
                _brightness_request(), Command.BRIGHTNESS_RESPONSE
            )
            # The slot is free again for the next request
            transport.reply(Command.GET_BRIGHTNESS, Command.BRIGHTNESS_RESPONSE, b"\x02\x00")
            follow_up = await session.request(
                _brightness_request(), Command.BRIGHTNESS_RESPONSE
            )
            return result, follow_up

    assert asyncio.run(scenario()) == (None, b"\x02\x00")


def test_zero_timeout_returns_immediately(transport, settings):
    async def scenario():
        async with TransportSession(transport, settings) as session:
            loop = asyncio.get_running_loop()
            started = loop.time()
            result = await session.await_response(Command.BRIGHTNESS_RESPONSE, timeout=0)
            return result, loop.time() - started

    result, elapsed = asyncio.run(scenario())
    assert result is None
    assert elapsed < 0.1


def test_second_wait_is_protocol_violation(transport, settings):
    async def scenario():
        async with TransportSession(transport, settings) as session:
            first = asyncio.ensure_future(
                session.await_response(Command.BRIGHTNESS_RESPONSE, timeout=1.0)
            )
            await asyncio.sleep(0)
            with pytest.raises(ProtocolViolationError):
                await session.await_response(Command.CALIBRATION_RESPONSE)
            transport.notify(build_frame(Command.BRIGHTNESS_RESPONSE, b"\x03\x00"))
            return await first

    assert asyncio.run(scenario()) == b"\x03\x00"


def test_link_loss_fails_pending_request(transport, settings):
    async def scenario():
        async with TransportSession(transport, settings) as session:
            asyncio.get_running_loop().call_later(0.01, transport.drop_link)
            with pytest.raises(LinkLostError):
                await session.request(_brightness_request(), Command.BRIGHTNESS_RESPONSE)
            assert session.state is SessionState.CLOSED
            written = len(transport.written)
            with pytest.raises(LinkLostError):
                await session.send(build_flush_start())
            assert len(transport.written) == written

    asyncio.run(scenario())


def test_link_loss_clears_buffer(transport, settings):
    """Bytes received before a drop do not leak into the next connection."""
    transport.reply(Command.GET_BRIGHTNESS, Command.BRIGHTNESS_RESPONSE, b"\x09\x00")

    async def scenario():
        session = TransportSession(transport, settings)
        await session.open()
        transport.notify(build_frame(Command.BRIGHTNESS_RESPONSE, b"\x01\x00")[:5])
        transport.drop_link()
        await session.open()
        return await session.request(_brightness_request(), Command.BRIGHTNESS_RESPONSE)

    assert asyncio.run(scenario()) == b"\x09\x00"


def test_write_timeout_returns_false(transport, settings):
    """An unacknowledged write fails the send but frees the session."""
    transport.ack = False

    async def scenario():
        async with TransportSession(transport, settings) as session:
            first = await session.send(build_flush_start())
            transport.ack = True
            second = await session.send(build_flush_start())
            return first, second

    assert asyncio.run(scenario()) == (False, True)


def test_cancelled_request_releases_slot(transport, settings):
    transport.reply(Command.GET_BRIGHTNESS, Command.BRIGHTNESS_RESPONSE, b"\x05\x00")

    async def scenario():
        async with TransportSession(transport, settings) as session:
            task = asyncio.ensure_future(
                session.request(build_query(Command.GET_CALIBRATION), Command.CALIBRATION_RESPONSE)
            )
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return await session.request(_brightness_request(), Command.BRIGHTNESS_RESPONSE)

    assert asyncio.run(scenario()) == b"\x05\x00"


def test_transaction_serializes_commands(transport, settings):
    """A command issued during a transaction is written after it completes."""

    async def scenario():
        async with TransportSession(transport, settings) as session:
            async def other():
                await session.send(build_query(Command.GET_BRIGHTNESS))

            async with session.transaction() as tx:
                task = asyncio.ensure_future(other())
                await asyncio.sleep(0)
                await tx.send(build_frame(Command.LINE_DESCRIPTOR, bytes(17)))
                await tx.send(build_frame(Command.LINE_COORDINATES, bytes(4)))
            await task

    asyncio.run(scenario())
    assert transport.written_commands() == [
        Command.LINE_DESCRIPTOR,
        Command.LINE_COORDINATES,
        Command.GET_BRIGHTNESS,
    ]


def test_failed_write_returns_false(transport, settings):
    """A write error on a live link fails the send and keeps the session ready."""
    original_write = transport.write
    calls = []

    async def failing_write(data):
        calls.append(data)
        if len(calls) == 1:
            raise OSError("GATT write failed")
        await original_write(data)

    transport.write = failing_write

    async def scenario():
        async with TransportSession(transport, settings) as session:
            first = await session.send(build_flush_start())
            state = session.state
            second = await session.send(build_flush_start())
            return first, state, second

    assert asyncio.run(scenario()) == (False, SessionState.READY, True)
    assert len(transport.written) == 1


def test_transaction_closed_after_block(transport, settings):
    async def scenario():
        async with TransportSession(transport, settings) as session:
            async with session.transaction() as tx:
                pass
            with pytest.raises(SessionStateError):
                await tx.send(build_flush_start())
            with pytest.raises(SessionStateError):
                await tx.request(_brightness_request(), Command.BRIGHTNESS_RESPONSE)

    asyncio.run(scenario())
    assert transport.written == []
