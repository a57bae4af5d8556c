from __future__ import annotations
from typing import Callable, Optional

from shared.errors import ApplicationError, TransportError
from shared.log import get_logger
from shared.messages import ConnectionRole
from .config import ClientConfig
from .ws_client import ConnectionSession, Responder, SessionState

logger = get_logger(__name__)


async def run_session(session: ConnectionSession, url: Optional[str] = None) -> ConnectionSession:
    """
    Open ``session`` and stay connected until the server hangs up.

    An ``{error}`` frame from the server raises ApplicationError and a
    transport fault raises TransportError; a clean close returns the session
    so its log can be inspected.
    """
    try:
        await session.open(url)
        await session.wait_closed()
    finally:
        await session.close()
    if isinstance(session.error, ApplicationError):
        raise session.error
    if session.state is SessionState.ERRORED:
        raise session.error or TransportError("Connection error")
    return session


async def play_game(
    url: str,
    responder: Responder,
    *,
    config: Optional[ClientConfig] = None,
    on_session: Optional[Callable[[ConnectionSession], None]] = None,
) -> ConnectionSession:
    """Join a game as a player and answer every prompt with ``responder``."""
    config = config or ClientConfig()
    session = ConnectionSession(
        url,
        role=ConnectionRole.PLAYER,
        responder=responder,
        label="direct",
        ping_interval=config.ping_interval,
        ping_timeout=config.ping_timeout,
    )
    if on_session is not None:
        on_session(session)
    logger.info(f"Connecting to: {url}")
    return await run_session(session)


async def watch_game(
    url: str,
    *,
    config: Optional[ClientConfig] = None,
    on_session: Optional[Callable[[ConnectionSession], None]] = None,
) -> ConnectionSession:
    """Follow a game's update feed. Never replies."""
    config = config or ClientConfig()
    session = ConnectionSession(
        url,
        role=ConnectionRole.SPECTATOR,
        label="spectator",
        ping_interval=config.ping_interval,
        ping_timeout=config.ping_timeout,
    )
    if on_session is not None:
        on_session(session)
    return await run_session(session)
