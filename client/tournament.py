from __future__ import annotations
import asyncio
from typing import Callable, List, Optional, Sequence

from shared.codec import ClientMessage, ServerMessage
from shared.errors import (
    ApplicationError,
    OCoupError,
    OrchestrationError,
    SessionError,
    TransportError,
)
from shared.log import get_logger
from shared.messages import ConnectionRole
from shared.utils import tournament_register_url
from .api import CreatedTournament, GameServerAPI
from .autoplay import autoplay_responder
from .config import ClientConfig
from .state import PhaseTracker, TournamentPhase, TournamentResults
from .ws_client import ConnectionSession

logger = get_logger(__name__)


PhaseListener = Callable[[TournamentPhase], None]
SessionListener = Callable[[int, ConnectionSession], None]


class TournamentSession:
    """
    Drives one tournament: create -> register N players -> start -> results.

    Every human player is a registration socket answering prompts with the
    autoplay policy. Registrations are staggered but run concurrently; the
    first one to fail takes the whole tournament to ``error`` and every
    managed socket is closed. Results and scores come back from the server
    and are kept as received.

    A TournamentSession is single use: after ``reset()`` or a terminal phase
    build a new one.
    """

    def __init__(
        self,
        num_human_players: int,
        bot_players: Sequence[str] = (),
        *,
        config: Optional[ClientConfig] = None,
        api: Optional[GameServerAPI] = None,
        policy_factory: Callable[[int], Callable[[ServerMessage], ClientMessage]] = autoplay_responder,
        session_factory: Callable[..., ConnectionSession] = ConnectionSession,
        on_phase_change: Optional[PhaseListener] = None,
        on_session_created: Optional[SessionListener] = None,
    ) -> None:
        if num_human_players < 0:
            raise ValueError("num_human_players must be >= 0")
        self.config = config or ClientConfig()
        self.num_human_players = num_human_players
        self.bot_players: List[str] = list(bot_players)
        self._owns_api = api is None
        self.api = api or GameServerAPI(self.config.server_url)
        self.policy_factory = policy_factory
        self.session_factory = session_factory
        self.on_phase_change = on_phase_change
        self.on_session_created = on_session_created

        self.tournament_id: Optional[str] = None
        self.num_bot_players = 0
        self.sessions: List[ConnectionSession] = []
        self.results: Optional[TournamentResults] = None
        self.error: Optional[str] = None

        self._tracker = PhaseTracker()
        self._registration_tasks: List[asyncio.Task] = []
        self._start_fired = False
        self._discarded = False
        self._run_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<TournamentSession {self.tournament_id} {self.phase.value} {self.registered_count}/{self.num_human_players}>"

    # ========================================
    #           STATE
    # ========================================

    @property
    def phase(self) -> TournamentPhase:
        return self._tracker.phase

    @property
    def max_players(self) -> int:
        return self.num_human_players + len(self.bot_players)

    @property
    def registered_count(self) -> int:
        # always recomputed from the live session set
        return sum(1 for s in self.sessions if s.registered)

    def _context(self, player: Optional[int] = None) -> dict:
        context = {}
        if self.tournament_id is not None:
            context["tournament_id"] = self.tournament_id
        if player is not None:
            context["player"] = player
        return context

    def _transition(self, phase: TournamentPhase) -> None:
        previous = self.phase
        self._tracker.transition(phase)
        logger.info(f"Tournament {previous.value} -> {phase.value}", extra=self._context())
        if self.on_phase_change is not None:
            self.on_phase_change(phase)

    def _fail(self, message: str) -> None:
        if self.phase.is_terminal:
            return
        self.error = message
        logger.error(message, extra=self._context())
        self._transition(TournamentPhase.ERROR)

    def _ensure_usable(self, expected: TournamentPhase) -> None:
        if self._discarded:
            raise SessionError("Tournament session was reset; create a new one")
        if self.phase is not expected:
            raise SessionError(f"Tournament is {self.phase.value}, expected {expected.value}")

    # ========================================
    #           PHASES
    # ========================================

    async def create(self) -> CreatedTournament:
        """setup -> registering via POST /tournaments."""
        self._ensure_usable(TournamentPhase.SETUP)
        logger.info(f"Creating tournament: {self.num_human_players} human, {len(self.bot_players)} bot player(s)")
        try:
            created = await self.api.create_tournament(self.max_players, self.bot_players)
        except OrchestrationError as e:
            self._fail(e.message)
            raise
        self.tournament_id = created.tournament_id
        self.num_bot_players = created.num_bot_players
        if created.num_bot_players:
            logger.info(f"{created.num_bot_players} bot player(s) pre-registered", extra=self._context())
        self._transition(TournamentPhase.REGISTERING)
        return created

    async def register_players(self) -> None:
        """
        Open one registration socket per human player.

        Attempts are started ``registration_delay`` apart without waiting
        for earlier ones to finish. Returns once every player is registered
        (the tournament is then running); raises the first failure after
        closing every managed socket.
        """
        self._ensure_usable(TournamentPhase.REGISTERING)
        if self.num_human_players == 0:
            logger.info("No human players to register (bots only)", extra=self._context())
            self._all_registered()
            return

        url = tournament_register_url(self.config.ws_base_url, self.tournament_id)
        logger.info(f"Registering {self.num_human_players} human player(s)...", extra=self._context())
        try:
            for num in range(self.num_human_players):
                if self.phase is not TournamentPhase.REGISTERING:
                    break
                task = asyncio.create_task(self._register_player(num, url), name=f"register-{num}")
                self._registration_tasks.append(task)
                if num < self.num_human_players - 1:
                    await asyncio.sleep(self.config.registration_delay)
            await asyncio.gather(*self._registration_tasks)
        except Exception as e:
            self._fail(getattr(e, "message", None) or str(e) or type(e).__name__)
            await self._teardown()
            raise

    async def _register_player(self, num: int, url: str) -> None:
        session = self.session_factory(
            url,
            role=ConnectionRole.REGISTRANT,
            responder=self.policy_factory(num),
            label=num,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
        )
        # tracked before connecting so teardown reaches half-open sockets too
        self.sessions.append(session)
        if self.on_session_created is not None:
            self.on_session_created(num, session)

        try:
            await session.open()
            player_id = await session.wait_registered(self.config.registration_timeout)
        except asyncio.TimeoutError:
            error = TransportError(f"Player {num}: registration timed out after {self.config.registration_timeout}s")
            self._fail(str(error))
            await session.close(reason="Registration timed out")
            raise error
        except (TransportError, ApplicationError) as e:
            logger.error(f"Failed to register player {num}: {e}", extra=self._context(num))
            # stops the remaining staggered attempts
            self._fail(str(e))
            await session.close()
            raise

        logger.info(f"Player {num}: Registered (ID: {player_id})", extra=self._context(num))
        self._on_player_registered()

    def _on_player_registered(self) -> None:
        if self.phase is not TournamentPhase.REGISTERING:
            return
        if self.registered_count == self.num_human_players:
            self._all_registered()

    def _all_registered(self) -> None:
        if self._start_fired:
            return
        self._start_fired = True
        logger.info("All players registered!", extra=self._context())
        self._transition(TournamentPhase.RUNNING)

    async def start(self) -> TournamentResults:
        """
        running -> completed via POST /tournaments/{id}/start.

        The call blocks while the server plays every round; registered
        sessions keep answering prompts in the meantime.
        """
        self._ensure_usable(TournamentPhase.RUNNING)
        logger.info("Starting tournament...", extra=self._context())
        try:
            body = await self.api.start_tournament(self.tournament_id, timeout=self.config.start_timeout)
            for key in ("results", "scores"):
                if key not in body:
                    raise OrchestrationError(f"Failed to start tournament: response missing '{key}'")
        except OrchestrationError as e:
            self._fail(e.message)
            raise
        self.results = TournamentResults(body)
        logger.info("Tournament completed!", extra=self._context())
        self._transition(TournamentPhase.COMPLETED)
        return self.results

    async def run(self) -> TournamentResults:
        """Create, register, start. Connections are always closed on the way out."""
        self._run_task = asyncio.current_task()
        try:
            await self.create()
            await self.register_players()
            return await self.start()
        except OCoupError as e:
            self._fail(getattr(e, "message", None) or str(e))
            raise
        finally:
            self._run_task = None
            await self._teardown()
            if self._owns_api:
                await self.api.aclose()

    # ========================================
    #           TEARDOWN
    # ========================================

    async def reset(self) -> None:
        """
        Abort and discard: every tracked socket is closed before this returns,
        whatever its state. A running ``run()`` is cancelled.
        """
        self._discarded = True
        run_task = self._run_task
        if run_task is not None and run_task is not asyncio.current_task() and not run_task.done():
            run_task.cancel()
        await self._teardown()
        if self._owns_api:
            await self.api.aclose()
        logger.info("Tournament reset", extra=self._context())

    async def _teardown(self) -> None:
        current = asyncio.current_task()
        pending = [t for t in self._registration_tasks if not t.done() and t is not current]
        for task in pending:
            task.cancel()
        sessions = list(self.sessions)
        results = await asyncio.gather(
            *pending,
            *(s.close(reason="Tournament finished") for s in sessions),
            return_exceptions=True,
        )
        for result in results[len(pending):]:
            if isinstance(result, Exception):
                logger.error(f"Error closing session: {result}", extra=self._context())
        if sessions:
            logger.debug(f"Closed {len(sessions)} connection(s)", extra=self._context())
