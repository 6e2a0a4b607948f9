"""Asterisk Manager Interface adapter over asyncio streams."""
import asyncio
import itertools
from typing import Any, Mapping
import structlog
from .base import (
    BusAdapter,
    SendCallback,
    CONNECTED,
    CONNECTION_CLOSED,
    INVALID_PEER,
    LOGIN_INCORRECT,
)
from ..config import get_settings
from ..errors import ConnectionLost
from ..event_models import Event

log = structlog.get_logger()

BANNER_PREFIX = b"Asterisk Call Manager"
EOL = "\r\n"
# Large enough for long variable dumps; longer lines are skipped with their message
READ_LIMIT = 1024 * 1024


def encode_action(request: Mapping[str, Any]) -> bytes:
    """
    Serialize an action as AMI `Key: value` lines ending with a blank line.

    List values repeat the header, which is how AMI takes several
    `Variable` assignments in one Originate.
    """
    lines = []
    for key, value in request.items():
        if value is None:
            continue
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if isinstance(item, bool):
                item = "true" if item else "false"
            lines.append(f"{key}: {item}")
    return (EOL.join(lines) + EOL + EOL).encode("utf-8")


def decode_message(lines: list[str]) -> dict[str, Any]:
    """Parse the lines of one AMI message into a lowercase-keyed dict."""
    message: dict[str, Any] = {}
    for line in lines:
        key, sep, value = line.partition(":")
        if not sep or not key.strip():
            # Command output and other free text
            message.setdefault("output", []).append(line)
            continue
        message[key.strip().lower()] = value.strip()
    return message


def _find_action_id(request: Mapping[str, Any]) -> str | None:
    for key, value in request.items():
        if key.lower() == "actionid" and value is not None:
            return str(value)
    return None


class AmiAdapter(BusAdapter):
    """
    AMI client emitting manager events onto the bus.

    Events are emitted with their `Event` header as type and the whole
    message (lowercase keys) as payload. Responses are routed to the
    callback registered for their ActionID.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        secret: str | None = None,
        connect_timeout: float | None = None,
        read_limit: int = READ_LIMIT,
    ):
        super().__init__()
        settings = get_settings()
        self.host = host or settings.AMI_HOST
        self.port = port or settings.AMI_PORT
        self.username = username if username is not None else settings.AMI_USERNAME
        self.secret = secret if secret is not None else settings.AMI_SECRET
        self.connect_timeout = connect_timeout or settings.AMI_CONNECT_TIMEOUT
        self.read_limit = read_limit

        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task | None = None
        self._pending: dict[str, SendCallback] = {}
        self._ids = itertools.count(1)
        self._connected = False

    async def open(self):
        if self._writer is not None:
            return

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=self.read_limit),
                self.connect_timeout,
            )
            banner = await asyncio.wait_for(self._reader.readline(), self.connect_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            log.warning("ami.connect_failed", host=self.host, port=self.port, error=str(e) or type(e).__name__)
            self._drop_transport()
            self._emit(Event(type=CONNECTION_CLOSED, payload={"error": str(e) or type(e).__name__}))
            return
        except ValueError:
            # A first line longer than read_limit is no AMI banner
            banner = b"<oversized banner>"

        if not banner.startswith(BANNER_PREFIX):
            banner_text = banner.decode("utf-8", errors="replace").strip()
            log.warning("ami.invalid_peer", host=self.host, port=self.port, banner=banner_text)
            self._drop_transport()
            self._emit(Event(type=INVALID_PEER, payload={"banner": banner_text}))
            return

        log.info("ami.connected", host=self.host, port=self.port)
        self._reader_task = asyncio.create_task(self._read_loop(), name="ami-reader")
        self.send(
            {"Action": "Login", "Username": self.username, "Secret": self.secret},
            self._on_login,
        )

    def send(self, request: Mapping[str, Any], callback: SendCallback):
        self._require_action(request)
        request = dict(request)
        action_id = _find_action_id(request)
        if action_id is None:
            action_id = f"callbridge-{next(self._ids)}"
            request["ActionID"] = action_id

        if self._writer is None or self._writer.is_closing():
            asyncio.get_running_loop().call_soon(callback, ConnectionLost("AMI connection is not open"))
            return

        self._pending[action_id] = callback
        self._writer.write(encode_action(request))
        log.debug("ami.action_sent", action=request.get("Action"), action_id=action_id)

    async def close(self):
        if self._writer is None:
            return
        if not self._writer.is_closing():
            self._writer.write(encode_action({"Action": "Logoff"}))
        if self._reader_task is not None:
            self._reader_task.cancel()
            await asyncio.wait([self._reader_task])
        else:
            self._connection_lost()

    async def health_check(self) -> bool:
        return self._connected

    def _on_login(self, outcome: Any):
        if isinstance(outcome, BaseException):
            # The read loop reports the closed connection itself
            return
        if outcome.get("response") == "Success":
            self._connected = True
            log.info("ami.login_succeeded", username=self.username)
            self._emit(Event(type=CONNECTED, payload=dict(outcome)))
        else:
            log.warning("ami.login_failed", username=self.username, message=outcome.get("message"))
            self._emit(Event(type=LOGIN_INCORRECT, payload=dict(outcome)))
            if self._writer is not None:
                self._writer.close()

    async def _read_loop(self):
        try:
            while True:
                message = await self._read_message()
                if message is None:
                    break
                self._handle(message)
        except OSError as e:
            log.warning("ami.read_failed", error=str(e))
        finally:
            self._connection_lost()

    async def _read_message(self) -> dict[str, Any] | None:
        lines: list[str] = []
        truncated = False
        while True:
            try:
                raw = await self._reader.readline()
            except ValueError as e:
                # readline already discarded the oversized line
                if not truncated:
                    log.warning("ami.line_too_long", limit=self.read_limit, error=str(e))
                truncated = True
                continue
            if not raw:
                return None
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line:
                lines.append(line)
            elif truncated:
                log.warning("ami.message_dropped", headers=len(lines))
                lines, truncated = [], False
            elif lines:
                return decode_message(lines)

    def _handle(self, message: dict[str, Any]):
        if "event" in message:
            self._emit(Event(type=message["event"], payload=message))
            return

        if "response" in message:
            callback = self._pending.pop(message.get("actionid"), None)
            if callback is None:
                log.debug("ami.unmatched_response", action_id=message.get("actionid"))
                return
            callback(message)

    def _connection_lost(self):
        was_open = self._writer is not None
        pending, self._pending = self._pending, {}
        self._drop_transport()
        self._reader_task = None

        for callback in pending.values():
            callback(ConnectionLost("AMI connection closed"))

        if was_open:
            log.info("ami.connection_closed", host=self.host, port=self.port)
            self._emit(Event(type=CONNECTION_CLOSED, payload={}))

    def _drop_transport(self):
        if self._writer is not None:
            self._writer.close()
        self._reader = None
        self._writer = None
        self._connected = False
