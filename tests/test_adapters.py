"""Tests for event bus adapters."""
import asyncio
from contextlib import asynccontextmanager
import pytest
from callbridge.adapters.ami import AmiAdapter, decode_message, encode_action
from callbridge.adapters.memory import InMemoryAdapter
from callbridge.errors import ConnectionFailed, ConnectionLost, MalformedRequest
from callbridge.saga import to_awaitable
from callbridge.services.call_correlator import CallCorrelator

BANNER = b"Asterisk Call Manager/5.0.1\r\n"


def test_encode_action():
    """Test AMI actions are encoded as header lines ending with a blank line."""
    wire = encode_action({
        "Action": "Originate",
        "ActionID": 7,
        "Variable": ["campaign=spring", "call=7"],
        "Async": True,
        "Account": None,
    })

    assert wire == (
        b"Action: Originate\r\n"
        b"ActionID: 7\r\n"
        b"Variable: campaign=spring\r\n"
        b"Variable: call=7\r\n"
        b"Async: true\r\n"
        b"\r\n"
    )


def test_decode_message():
    """Test AMI messages decode to lowercase keys, keeping colons in values."""
    message = decode_message([
        "Event: VarSet",
        "Channel: SIP/100-0001",
        "Variable: call",
        "Value: sip:100@example.com",
    ])

    assert message == {
        "event": "VarSet",
        "channel": "SIP/100-0001",
        "variable": "call",
        "value": "sip:100@example.com",
    }


def test_decode_message_keeps_free_text():
    message = decode_message(["Response: Follows", "Privilege: Command", "No such command"])

    assert message["response"] == "Follows"
    assert message["output"] == ["No such command"]


@pytest.mark.asyncio
async def test_memory_adapter_subscribe_and_unsubscribe():
    """Test subscribers see events until they unsubscribe."""
    adapter = InMemoryAdapter()
    seen = []
    unsubscribe = adapter.subscribe(seen.append)

    adapter.emit("Newchannel", channel="SIP/1")
    unsubscribe()
    unsubscribe()
    adapter.emit("Hangup", channel="SIP/1")

    assert [e.type for e in seen] == ["Newchannel"]


@pytest.mark.asyncio
async def test_memory_adapter_dispatch():
    adapter = InMemoryAdapter()
    seen = []
    adapter.subscribe(seen.append)

    adapter.dispatch({"type": "campaign.paused", "campaign": "spring"})

    assert seen[0].type == "campaign.paused"
    assert seen[0].payload["campaign"] == "spring"


@pytest.mark.asyncio
async def test_memory_adapter_dispatch_without_type():
    adapter = InMemoryAdapter()

    with pytest.raises(MalformedRequest):
        adapter.dispatch({"campaign": "spring"})


@pytest.mark.asyncio
async def test_memory_adapter_send_acknowledges_later():
    """Test the acknowledgement arrives on a later loop iteration."""
    adapter = InMemoryAdapter()
    acks = []

    adapter.send({"Action": "Ping", "ActionID": "1"}, acks.append)
    assert acks == []

    await asyncio.sleep(0)
    assert acks[0]["response"] == "Success"
    assert acks[0]["actionid"] == "1"
    assert adapter.sent == [{"Action": "Ping", "ActionID": "1"}]


@pytest.mark.asyncio
async def test_memory_adapter_send_without_action():
    adapter = InMemoryAdapter()

    with pytest.raises(MalformedRequest):
        await to_awaitable(adapter.send, {"ActionID": "1"})
    assert adapter.sent == []


@pytest.mark.asyncio
async def test_memory_adapter_responder_failure():
    def unreachable(request):
        raise ConnectionLost("peer went away")

    adapter = InMemoryAdapter(responder=unreachable)

    with pytest.raises(ConnectionLost):
        await to_awaitable(adapter.send, {"Action": "Ping"})


@pytest.mark.asyncio
async def test_memory_adapter_isolates_failing_subscriber():
    """Test one failing subscriber does not stop delivery to the others."""
    adapter = InMemoryAdapter()
    seen = []

    def broken(event):
        raise RuntimeError("subscriber bug")

    adapter.subscribe(broken)
    adapter.subscribe(seen.append)

    adapter.emit("Hangup")

    assert len(seen) == 1


@pytest.mark.asyncio
async def test_memory_adapter_lifecycle():
    adapter = InMemoryAdapter()
    seen = []
    adapter.subscribe(seen.append)

    await adapter.close()
    await adapter.open()
    assert await adapter.health_check() is True
    await adapter.close()

    assert [e.type for e in seen] == ["connected", "connection_closed"]
    assert await adapter.health_check() is False


async def read_action(reader: asyncio.StreamReader):
    lines = []
    while True:
        raw = await reader.readline()
        if not raw:
            return None
        line = raw.decode().rstrip("\r\n")
        if line:
            lines.append(line)
        elif lines:
            return decode_message(lines)


def make_peer(secret="s3cret", banner=BANNER, on_originate=None, after_login=None, answer_login=True):
    """A scripted AMI peer; `on_originate` returns False to drop the connection."""
    async def peer(reader, writer):
        writer.write(banner)
        try:
            while True:
                action = await read_action(reader)
                if action is None:
                    break
                name = action.get("action", "").lower()
                action_id = action.get("actionid")
                if name == "login" and not answer_login:
                    continue
                if name == "login":
                    ok = action.get("username") == "admin" and action.get("secret") == secret
                    writer.write(encode_action({
                        "Response": "Success" if ok else "Error",
                        "ActionID": action_id,
                        "Message": "Authentication accepted" if ok else "Authentication failed",
                    }))
                    if ok and after_login is not None:
                        after_login(writer)
                elif name == "originate" and on_originate is not None:
                    writer.write(encode_action({
                        "Response": "Success",
                        "ActionID": action_id,
                        "Message": "Originate successfully queued",
                    }))
                    if not on_originate(action, writer):
                        break
                elif name == "logoff":
                    writer.write(encode_action({"Response": "Goodbye", "ActionID": action_id}))
                    break
                else:
                    writer.write(encode_action({"Response": "Error", "ActionID": action_id, "Message": "Invalid/unknown command"}))
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()

    return peer


@asynccontextmanager
async def ami_server(peer):
    server = await asyncio.start_server(peer, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield port
    finally:
        server.close()


def ami_adapter(port: int, secret: str = "s3cret", **kwargs) -> AmiAdapter:
    return AmiAdapter(host="127.0.0.1", port=port, username="admin", secret=secret, connect_timeout=2, **kwargs)


def answer_and_hang_up(action, writer) -> bool:
    call_id = action["actionid"]
    writer.write(encode_action({"Event": "VarSet", "Channel": "SIP/100-0001", "Variable": "call", "Value": call_id}))
    writer.write(encode_action({"Event": "OriginateResponse", "ActionID": call_id, "Response": "Success", "Channel": "SIP/100-0001"}))
    writer.write(encode_action({"Event": "Hangup", "Channel": "SIP/100-0001", "Cause": "16", "Cause-txt": "Normal Clearing"}))
    return True


def correlate_then_drop(action, writer) -> bool:
    writer.write(encode_action({"Event": "VarSet", "Channel": "SIP/100-0001", "Variable": "call", "Value": action["actionid"]}))
    return False


@pytest.mark.asyncio
async def test_ami_login_succeeds():
    async with ami_server(make_peer()) as port:
        adapter = ami_adapter(port)
        correlator = CallCorrelator(adapter)

        event = await asyncio.wait_for(correlator.open(), 5)

        assert event.type == "connected"
        assert await adapter.health_check() is True

        await correlator.close()
        assert await adapter.health_check() is False


@pytest.mark.asyncio
async def test_ami_login_incorrect():
    async with ami_server(make_peer()) as port:
        correlator = CallCorrelator(ami_adapter(port, secret="wrong"))

        with pytest.raises(ConnectionFailed) as exc_info:
            await asyncio.wait_for(correlator.open(), 5)

        assert exc_info.value.reason == "login_incorrect"
        assert exc_info.value.detail == "Authentication failed"


@pytest.mark.asyncio
async def test_ami_invalid_peer():
    async with ami_server(make_peer(banner=b"SSH-2.0-OpenSSH_9.6\r\n")) as port:
        correlator = CallCorrelator(ami_adapter(port))

        with pytest.raises(ConnectionFailed) as exc_info:
            await asyncio.wait_for(correlator.open(), 5)

        assert exc_info.value.reason == "invalid_peer"
        assert "SSH" in exc_info.value.detail


@pytest.mark.asyncio
async def test_ami_connection_refused():
    server = await asyncio.start_server(make_peer(), "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()

    correlator = CallCorrelator(ami_adapter(port))

    with pytest.raises(ConnectionFailed) as exc_info:
        await asyncio.wait_for(correlator.open(), 5)

    assert exc_info.value.reason == "connection_closed"


@pytest.mark.asyncio
async def test_ami_send_without_connection():
    adapter = ami_adapter(5038)

    with pytest.raises(ConnectionLost):
        await to_awaitable(adapter.send, {"Action": "Ping"})


@pytest.mark.asyncio
async def test_ami_originate_call():
    """Test a call is tracked end to end over AMI."""
    async with ami_server(make_peer(on_originate=answer_and_hang_up)) as port:
        correlator = CallCorrelator(ami_adapter(port), correlate_timeout=5, max_duration=5)
        await asyncio.wait_for(correlator.open(), 5)

        result = await asyncio.wait_for(
            correlator.originate({
                "Action": "Originate",
                "ActionID": "42",
                "Channel": "SIP/100",
                "Application": "Playback",
                "Data": "hello-world",
            }),
            5,
        )

        assert result.call_id == "42"
        assert result.channel == "SIP/100-0001"
        assert result.answered is True
        assert result.hangup_cause == "Normal Clearing"

        await correlator.close()


@pytest.mark.asyncio
async def test_ami_connection_drop_during_call():
    async with ami_server(make_peer(on_originate=correlate_then_drop)) as port:
        correlator = CallCorrelator(ami_adapter(port), correlate_timeout=5, max_duration=5)
        await asyncio.wait_for(correlator.open(), 5)

        with pytest.raises(ConnectionLost):
            await asyncio.wait_for(
                correlator.originate({"Action": "Originate", "ActionID": "43", "Channel": "SIP/100"}),
                5,
            )


def oversized_event_then_hangup(writer):
    writer.write(encode_action({"Event": "VarSet", "Channel": "SIP/100-0001", "Variable": "dump", "Value": "x" * 70000}))
    writer.write(encode_action({"Event": "Hangup", "Channel": "SIP/100-0001", "Cause-txt": "Normal Clearing"}))


@pytest.mark.asyncio
async def test_ami_skips_message_with_oversized_line():
    """Test a line past the read limit drops only its own message."""
    async with ami_server(make_peer(after_login=oversized_event_then_hangup)) as port:
        adapter = ami_adapter(port, read_limit=4096)
        seen = []
        hung_up = asyncio.Event()

        def collect(event):
            seen.append(event.type)
            if event.type == "Hangup":
                hung_up.set()

        adapter.subscribe(collect)
        await asyncio.wait_for(CallCorrelator(adapter).open(), 5)
        await asyncio.wait_for(hung_up.wait(), 5)

        assert seen == ["connected", "Hangup"]
        assert await adapter.health_check() is True

        await adapter.close()


@pytest.mark.asyncio
async def test_ami_open_times_out_without_login_response():
    async with ami_server(make_peer(answer_login=False)) as port:
        adapter = ami_adapter(port)
        correlator = CallCorrelator(adapter, open_timeout=0.2)

        with pytest.raises(ConnectionFailed) as exc_info:
            await asyncio.wait_for(correlator.open(), 5)

        assert exc_info.value.reason == "timeout"
        assert await adapter.health_check() is False
