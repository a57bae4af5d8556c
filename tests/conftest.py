import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
import websockets

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def game_state(coins: int = 2, others=(2, 3), hand=("Duke", "Contessa"), active: int = 1) -> Dict[str, Any]:
    """A visible_game_state payload; ``others`` are (player_id, coins) pairs or bare ids."""
    other_players = []
    for other in others:
        player_id, other_coins = other if isinstance(other, tuple) else (other, 2)
        other_players.append({"player_id": player_id, "visible_card": None, "coins": other_coins})
    return {
        "hand": [{"card": card, "revealed": False} for card in hand],
        "coins": coins,
        "other_players": other_players,
        "active_player_id": active,
    }


class FakeGameServer:
    """
    In-process WebSocket endpoint driven by a per-connection script.

    ``script(ws)`` runs once per accepted connection; returning from it closes
    the connection normally. Request paths and every received frame are kept
    for assertions.
    """

    def __init__(self, script: Callable[[Any], Awaitable[None]]) -> None:
        self.script = script
        self.paths: List[str] = []
        self.received: List[str] = []
        self.server = None

    async def start(self) -> "FakeGameServer":
        self.server = await websockets.serve(self._handler, "127.0.0.1", 0)
        return self

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    @property
    def ws_url(self) -> str:
        return f"ws://127.0.0.1:{self.port}"

    @property
    def http_url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    async def _handler(self, ws) -> None:
        self.paths.append(ws.request.path)
        await self.script(ws)

    async def stop(self) -> None:
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()


async def drain(ws, into: Optional[List[str]] = None) -> None:
    """Keep a server-side connection open until the client closes it."""
    try:
        async for frame in ws:
            if into is not None:
                into.append(frame)
    except websockets.exceptions.ConnectionClosed:
        pass


@pytest_asyncio.fixture
async def game_server():
    servers: List[FakeGameServer] = []

    async def start(script) -> FakeGameServer:
        server = await FakeGameServer(script).start()
        servers.append(server)
        return server

    yield start
    for server in servers:
        await server.stop()


class RecordingTransport(httpx.MockTransport):
    """MockTransport that also remembers each request's path and JSON body."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: List[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    @property
    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def body(self, index: int) -> Dict[str, Any]:
        return json.loads(self.requests[index].content or b"{}")


@pytest.fixture
def make_transport():
    return RecordingTransport
