from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import httpx

from shared.errors import OrchestrationError
from shared.log import get_logger
from shared.utils import normalize_server_url

logger = get_logger(__name__)


@dataclass(frozen=True)
class CreatedGame:
    updates_url: str
    player_url: str
    num_bot_players: int


@dataclass(frozen=True)
class CreatedTournament:
    tournament_id: str
    num_bot_players: int


class GameServerAPI:
    """
    HTTP side of the game server: creating games and tournaments and starting them.

    Every failure surfaces as OrchestrationError carrying the server's own
    text. Nothing is retried.
    """

    def __init__(
        self,
        server_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.server_url = normalize_server_url(server_url)
        self._owns_client = client is None
        # no default timeout: a start call blocks for the whole tournament
        self._client = client or httpx.AsyncClient(transport=transport, timeout=None)

    async def __aenter__(self) -> "GameServerAPI":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, body: Optional[Dict[str, Any]], what: str,
                    timeout: Optional[float] = None) -> httpx.Response:
        url = f"{self.server_url}{path}"
        logger.debug(f"POST {url} {body if body is not None else ''}")
        kwargs: Dict[str, Any] = {"json": body if body is not None else {}}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            return await self._client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise OrchestrationError(f"Failed to {what}: request timed out") from e
        except httpx.HTTPError as e:
            raise OrchestrationError(f"Failed to {what}: {e}") from e

    @staticmethod
    def _json(response: httpx.Response, what: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise OrchestrationError(f"Failed to {what}: invalid JSON response", response.status_code) from e
        if not isinstance(data, dict):
            raise OrchestrationError(f"Failed to {what}: unexpected response {data!r}", response.status_code)
        return data

    async def create_game(self, bot_players: Sequence[str] = ()) -> CreatedGame:
        """POST /games -> player and spectator WebSocket URLs."""
        what = "create game"
        body = {"bot_players": list(bot_players)} if bot_players else None
        response = await self._post("/games", body, what)
        if response.is_error:
            raise OrchestrationError(f"Failed to {what}: {response.reason_phrase}", response.status_code)
        data = self._json(response, what)
        if data.get("error"):
            raise OrchestrationError(str(data["error"]), response.status_code)
        try:
            return CreatedGame(
                updates_url=data["updates_url"],
                player_url=data["player_url"],
                num_bot_players=int(data.get("num_bot_players", 0)),
            )
        except KeyError as e:
            raise OrchestrationError(f"Failed to {what}: response missing {e}", response.status_code) from e

    async def create_tournament(self, max_players: int, bot_players: Sequence[str] = ()) -> CreatedTournament:
        """POST /tournaments with ``{max_players, bot_players?}``."""
        what = "create tournament"
        body: Dict[str, Any] = {"max_players": max_players}
        if bot_players:
            body["bot_players"] = list(bot_players)
        response = await self._post("/tournaments", body, what)
        if response.is_error:
            raise OrchestrationError(f"Failed to {what}: {response.reason_phrase}", response.status_code)
        data = self._json(response, what)
        if data.get("error"):
            raise OrchestrationError(str(data["error"]), response.status_code)
        if "tournament_id" not in data:
            raise OrchestrationError(f"Failed to {what}: response missing 'tournament_id'", response.status_code)
        created = CreatedTournament(
            tournament_id=str(data["tournament_id"]),
            num_bot_players=int(data.get("num_bot_players", 0)),
        )
        logger.info(f"Tournament created: {created.tournament_id}", extra={"tournament_id": created.tournament_id})
        return created

    async def start_tournament(self, tournament_id: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        POST /tournaments/{id}/start.

        Blocks until the server has played every round. Returns the body
        untouched; a body-level ``error`` becomes OrchestrationError with the
        server's message as-is.
        """
        what = "start tournament"
        response = await self._post(f"/tournaments/{tournament_id}/start", None, what, timeout=timeout)
        if response.is_error:
            raise OrchestrationError(f"Failed to {what}: {response.text}", response.status_code)
        data = self._json(response, what)
        if data.get("error"):
            raise OrchestrationError(str(data["error"]), response.status_code)
        return data
