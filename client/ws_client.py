from __future__ import annotations
import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
import inspect
import time
import uuid
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

import websockets

from shared.codec import (
    ClientMessage,
    DecodeFailure,
    GameStart,
    Registered,
    ServerError,
    ServerMessage,
    decode_frame,
    encode,
    matches_prompt,
)
from shared.errors import ApplicationError, OCoupError, SessionError, TransportError
from shared.log import get_logger, log_protocol_message
from shared.messages import ConnectionRole

logger = get_logger(__name__)


Responder = Callable[[ServerMessage], Union[Optional[ClientMessage], Awaitable[Optional[ClientMessage]]]]


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


class LogKind(str, Enum):
    RECEIVED = "received"   # decoded inbound frame
    SENT = "sent"           # reply that reached the socket
    RAW = "raw"             # inbound frame that could not be decoded
    SYSTEM = "system"       # lifecycle notes, dropped sends


@dataclass(frozen=True)
class LogEntry:
    seq: int
    kind: LogKind
    content: str
    message: Any = None
    ts: float = field(default_factory=time.time)


Listener = Callable[[LogEntry], None]


class ConnectionSession:
    """
    One WebSocket connection to the game server and everything received on it.

    States: idle -> connecting -> open -> closed | errored. There is no
    automatic reconnect; ``reconnect()`` is the only way back to connecting.

    Inbound frames are decoded and appended, in receipt order, to an
    append-only log that presentation code can poll (``log``) or follow
    (``subscribe``). Prompts are answered through ``responder`` exactly once;
    spectator sessions never answer. Undecodable frames are logged as raw
    entries and the connection stays up.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        role: ConnectionRole = ConnectionRole.PLAYER,
        responder: Optional[Responder] = None,
        label: Any = None,
        ping_interval: Optional[float] = 15,
        ping_timeout: Optional[float] = 45,
        connect: Optional[Callable[..., Awaitable[Any]]] = None,
    ) -> None:
        self.url = url
        self.role = role
        self.responder = responder
        self.label = label
        self.connection_id = uuid.uuid4().hex[:8]
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self._connect = connect or websockets.connect

        self.state = SessionState.IDLE
        self.websocket: Optional[websockets.ClientConnection] = None
        self.player_id: Optional[Any] = None
        self.registered = False
        self.error: Optional[OCoupError] = None
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None

        self._log: List[LogEntry] = []
        self._listeners: List[Listener] = []
        self._recv_task: Optional[asyncio.Task] = None
        self._registration: Optional[asyncio.Future] = None

    def __repr__(self) -> str:
        return f"<ConnectionSession {self.connection_id} {self.role.value} {self.state.value} {self.url}>"

    async def __aenter__(self) -> "ConnectionSession":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ========================================
    #           LOG & SUBSCRIPTION
    # ========================================

    @property
    def log(self) -> Tuple[LogEntry, ...]:
        """Snapshot of every entry so far, oldest first."""
        return tuple(self._log)

    @property
    def messages(self) -> List[ServerMessage]:
        return [e.message for e in self._log if e.kind is LogKind.RECEIVED and isinstance(e.message, ServerMessage)]

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new log entry. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def _record(self, kind: LogKind, content: str, message: Any = None) -> LogEntry:
        entry = LogEntry(seq=len(self._log), kind=kind, content=content, message=message)
        self._log.append(entry)
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception as e:
                logger.error(f"Log listener failed: {e}", exc_info=True, extra=self._context())
        return entry

    def _context(self) -> dict:
        context = {"connection_id": self.connection_id}
        if self.label is not None:
            context["player"] = self.label
        return context

    def _set_state(self, state: SessionState) -> None:
        if state is not self.state:
            logger.debug(f"Session {self.state.value} -> {state.value}", extra=self._context())
            self.state = state

    # ========================================
    #           LIFECYCLE
    # ========================================

    async def open(self, url: Optional[str] = None) -> None:
        """Connect and start receiving. Fails if the previous connection was never closed."""
        if self.state in (SessionState.CONNECTING, SessionState.OPEN):
            raise SessionError(f"Session {self.connection_id} is still {self.state.value}; close it first")
        if url is not None:
            self.url = url
        if not self.url:
            raise SessionError("No URL to connect to")

        self.close_code = None
        self.close_reason = None
        if self.role is ConnectionRole.REGISTRANT and not self.registered:
            self._registration = asyncio.get_running_loop().create_future()
            self._registration.add_done_callback(_consume_future_exception)

        self._set_state(SessionState.CONNECTING)
        try:
            self.websocket = await self._connect(
                self.url, ping_interval=self.ping_interval, ping_timeout=self.ping_timeout
            )
        except asyncio.CancelledError:
            self._set_state(SessionState.CLOSED)
            self._fail_registration(TransportError("Connection closed before registration"))
            raise
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            error = TransportError(f"Failed to connect to {self.url}: {e}")
            self._on_transport_fault(error)
            raise error from e

        self._set_state(SessionState.OPEN)
        logger.info(f"Connected to {self.url}", extra=self._context())
        self._record(LogKind.SYSTEM, "Connected to server")
        self._recv_task = asyncio.create_task(self._recv_loop(self.websocket))

    async def close(self, code: int = 1000, reason: str = "Client closed") -> None:
        """
        Close the connection and stop receiving.

        Safe to call in any state and more than once. The transport is
        released even if this coroutine is cancelled half way.
        """
        websocket, task = self.websocket, self._recv_task
        try:
            if websocket is not None:
                try:
                    await websocket.close(code=code, reason=reason)
                except Exception as e:
                    logger.error(f"Error closing connection: {e}", extra=self._context())
        finally:
            if task is not None and task is not asyncio.current_task() and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
            if self.state in (SessionState.CONNECTING, SessionState.OPEN):
                self._on_closed(getattr(websocket, "close_code", None) or code,
                                getattr(websocket, "close_reason", None) or reason)

    async def reconnect(self) -> None:
        """Explicitly drop the current connection (if any) and open a new one to the same URL."""
        if self.state is SessionState.IDLE:
            raise SessionError("Session was never opened")
        logger.info(f"Reconnecting to {self.url}", extra=self._context())
        await self.close(reason="Reconnecting")
        await self.open()

    async def wait_closed(self) -> None:
        """Wait until the server (or ``close()``) ends the connection."""
        if self._recv_task is not None:
            with suppress(asyncio.CancelledError):
                await asyncio.shield(self._recv_task)

    async def wait_registered(self, timeout: Optional[float] = None) -> Any:
        """
        Wait for the registration handshake and return the assigned player id.

        Raises ApplicationError when the server answers ``{error}``,
        TransportError when the socket faults or closes first, and
        asyncio.TimeoutError when ``timeout`` elapses.
        """
        if self._registration is None:
            if self.registered:
                return self.player_id
            raise SessionError("Session is not a registration connection")
        return await asyncio.wait_for(asyncio.shield(self._registration), timeout)

    def _on_closed(self, code: Optional[int], reason: Optional[str]) -> None:
        self.close_code = code
        self.close_reason = reason or None
        if self.state is not SessionState.ERRORED:
            self._set_state(SessionState.CLOSED)
        note = f"Disconnected from server (code: {code})"
        if reason:
            note += f" Reason: {reason}"
        logger.info(note, extra=self._context())
        self._record(LogKind.SYSTEM, note)
        self._fail_registration(TransportError("Connection closed before registration"))

    def _on_transport_fault(self, error: TransportError) -> None:
        if self.error is None:
            self.error = error
        self._set_state(SessionState.ERRORED)
        logger.error(str(error), extra=self._context())
        self._record(LogKind.SYSTEM, f"WebSocket error: {error}")
        self._fail_registration(TransportError("Connection error"))

    def _fail_registration(self, error: OCoupError) -> None:
        if self._registration is not None and not self._registration.done():
            self._registration.set_exception(error)

    # ========================================
    #           SENDING
    # ========================================

    async def send(self, message: ClientMessage) -> bool:
        """
        Send a reply. Only meaningful while open.

        In any other state the message is dropped: nothing is raised or
        retried, the drop is logged and a system entry is recorded. Returns
        whether the message reached the socket.
        """
        text = encode(message)
        if self.state is not SessionState.OPEN or self.websocket is None:
            logger.warning(f"Dropping {text}: connection is {self.state.value}", extra=self._context())
            self._record(LogKind.SYSTEM, f"Dropped {text}: connection is {self.state.value}")
            return False
        try:
            await self.websocket.send(text)
        except websockets.exceptions.ConnectionClosed:
            logger.warning(f"Connection closed while sending {text}", extra=self._context())
            self._record(LogKind.SYSTEM, f"Dropped {text}: connection closed")
            return False
        log_protocol_message(logger, "debug", f"Sent {text}", **self._context())
        self._record(LogKind.SENT, text, message)
        return True

    # ========================================
    #           RECEIVING
    # ========================================

    async def _recv_loop(self, websocket) -> None:
        try:
            async for raw in websocket:
                try:
                    await self._handle_frame(raw)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Failed to process inbound frame: {e}", exc_info=True, extra=self._context())
        except websockets.exceptions.ConnectionClosedError as e:
            self.close_code = getattr(websocket, "close_code", None)
            self.close_reason = getattr(websocket, "close_reason", None) or None
            self._on_transport_fault(TransportError(f"Connection lost: {e}"))
            return
        if self.state in (SessionState.CONNECTING, SessionState.OPEN):
            self._on_closed(getattr(websocket, "close_code", None), getattr(websocket, "close_reason", None))

    async def _handle_frame(self, raw: Union[str, bytes]) -> None:
        frame = decode_frame(raw)

        if isinstance(frame, DecodeFailure):
            logger.warning(f"Undecodable frame ({frame.reason}): {frame.raw[:200]}", extra=self._context())
            self._record(LogKind.RAW, frame.raw, frame)
            return

        if isinstance(frame, ServerError):
            self._record(LogKind.RECEIVED, frame.to_json(), frame)
            await self._on_server_error(frame)
            return

        if isinstance(frame, Registered):
            self._record(LogKind.RECEIVED, frame.to_json(), frame)
            self._on_registered(frame)
            return

        log_protocol_message(logger, "debug", "Received frame", frame=frame.to_dict(), **self._context())
        self._record(LogKind.RECEIVED, raw if isinstance(raw, str) else frame.to_json(), frame)
        if isinstance(frame, GameStart) and self.player_id is None:
            self.player_id = frame.self_player_id
        if frame.is_prompt:
            await self._answer(frame)

    def _on_registered(self, frame: Registered) -> None:
        if self.role is not ConnectionRole.REGISTRANT:
            logger.warning(f"Unexpected registration frame on a {self.role.value} connection", extra=self._context())
            return
        if self.registered:
            logger.warning(f"Duplicate registration (player {frame.player_id}) ignored", extra=self._context())
            return
        self.registered = True
        self.player_id = frame.player_id
        logger.info(f"Registered (ID: {frame.player_id})", extra=self._context())
        if self._registration is not None and not self._registration.done():
            self._registration.set_result(frame.player_id)

    async def _on_server_error(self, frame: ServerError) -> None:
        self.error = ApplicationError(frame.error)
        logger.error(f"Error - {frame.error}", extra=self._context())
        self._fail_registration(self.error)
        # the receive loop ends on its own once the close handshake completes
        if self.websocket is not None:
            try:
                await self.websocket.close(code=1000, reason="Server reported an error")
            except Exception as e:
                logger.error(f"Error closing connection: {e}", extra=self._context())

    async def _answer(self, prompt: ServerMessage) -> None:
        if self.role is ConnectionRole.SPECTATOR or self.responder is None:
            return
        try:
            reply = self.responder(prompt)
            if inspect.isawaitable(reply):
                reply = await reply
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Responder failed on {prompt.type.value}: {e}", exc_info=True, extra=self._context())
            self._record(LogKind.SYSTEM, f"No reply sent for {prompt.type.value}: {e}")
            return
        if reply is None:
            logger.warning(f"No reply chosen for {prompt.type.value}", extra=self._context())
            return
        if not matches_prompt(prompt, reply):
            logger.error(f"Refusing to send {encode(reply)}: wrong shape for {prompt.type.value}",
                         extra=self._context())
            self._record(LogKind.SYSTEM, f"Rejected reply {encode(reply)} for {prompt.type.value}")
            return
        await self.send(reply)


def _consume_future_exception(future: asyncio.Future) -> None:
    # failures are read through wait_registered(); keep asyncio from warning when nobody waits
    if not future.cancelled():
        future.exception()
