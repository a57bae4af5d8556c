#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import json
from pathlib import Path
from typing import Callable, List, Optional

import aioconsole
import typer
from rich.console import Console
from rich.table import Table

from shared.codec import (
    ClientMessage,
    Registered,
    ServerMessage,
    decode_client_message,
    encode,
    matches_prompt,
    reply_options,
)
from shared.errors import OCoupError, ProtocolError
from shared.log import configure_root_logging, get_logger
from shared.utils import is_ws_url, new_game_url
from .api import GameServerAPI
from .autoplay import autoplay_responder
from .config import ClientConfig, load_config
from .direct import play_game, watch_game
from .state import TournamentPhase, TournamentResults
from .tournament import TournamentSession
from .ws_client import ConnectionSession, LogEntry, LogKind

app = typer.Typer(help="OCoup tournament and game client", no_args_is_help=True)
console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)


def _load(config_file: Optional[Path], log_level: str, **overrides) -> ClientConfig:
    configure_root_logging(log_level)
    try:
        return load_config(config_file, **overrides)
    except (OSError, ValueError) as e:
        _fatal(f"Invalid configuration: {e}")


def _fatal(message: str) -> None:
    err_console.print(f"\n[bold red]❌ Error:[/] {message}\n")
    raise typer.Exit(code=1)


def _entry_printer(tag: str, verbose: bool = True) -> Callable[[LogEntry], None]:
    """Render one session's log entries to the console as they arrive."""

    def on_entry(entry: LogEntry) -> None:
        if entry.kind is LogKind.RECEIVED:
            message = entry.message
            if isinstance(message, ServerMessage):
                if verbose:
                    console.print(f"[dim]{tag}[/] 📨 {message.type.value}")
            elif verbose:
                console.print(f"[dim]{tag}[/] 📨 {entry.content}")
        elif entry.kind is LogKind.SENT:
            if verbose:
                console.print(f"[dim]{tag}[/] ➡️  {entry.content}")
        elif entry.kind is LogKind.RAW:
            console.print(f"[yellow]{tag} ⚠️  undecodable frame:[/] {entry.content}")
        else:
            console.print(f"[dim]{tag} {entry.content}[/]")

    return on_entry


def _interactive_responder():
    """Ask the user for every reply: pick a numbered option or type the JSON."""

    async def respond(prompt: ServerMessage) -> ClientMessage:
        options = reply_options(prompt)
        console.print_json(json.dumps(prompt.to_dict()))
        table = Table(title=prompt.type.value)
        table.add_column("#", justify="right")
        table.add_column("Reply")
        for index, option in enumerate(options):
            table.add_row(str(index), encode(option))
        console.print(table)
        while True:
            line = (await aioconsole.ainput("Reply # or JSON: ")).strip()
            if line.isdigit() and int(line) < len(options):
                return options[int(line)]
            if line[:1] in ("{", "["):
                try:
                    reply = decode_client_message(line)
                except ProtocolError as e:
                    console.print(f"[red]Invalid reply[/]: {e}")
                    continue
                if matches_prompt(prompt, reply):
                    return reply
                console.print(f"[red]{encode(reply)} does not answer {prompt.type.value}[/]")
                continue
            console.print("Choose one of the listed numbers")

    return respond


def _display_results(results: TournamentResults) -> None:
    if results.results:
        console.print("\n📋 [bold]Tournament Results[/]\n")
        for round_result in results.rounds:
            table = Table(title=f"🎲 Round {round_result.round}")
            table.add_column("Game")
            table.add_column("Winner(s)")
            table.add_column("Eliminated (in order)")
            for game in round_result.games:
                if game.completed:
                    table.add_row(
                        str(game.game),
                        ", ".join(str(w) for w in game.winners),
                        ", ".join(str(e) for e in game.eliminated),
                    )
                else:
                    table.add_row(str(game.game), f"[yellow]⚠️  Error - {game.error}[/]", "")
            console.print(table)

    ranking = results.ranking()
    table = Table(title="📊 Final Scores")
    table.add_column("")
    table.add_column("Player")
    table.add_column("Points", justify="right")
    medals = ["🥇", "🥈", "🥉"]
    for index, (player_id, score) in enumerate(ranking):
        table.add_row(medals[index] if index < len(medals) else "", str(player_id), str(score))
    console.print(table)
    if ranking:
        player_id, score = ranking[0]
        console.print(f"\n🎉 Winner: Player {player_id} with {score} points!\n")


def _run_direct(url: str, config: ClientConfig, verbose: bool) -> None:
    console.print("\n🎮 [bold]OCoup Direct Game Mode[/]\n")
    console.print(f"Connecting to: {url}\n")

    def attach(session: ConnectionSession) -> None:
        session.subscribe(_entry_printer("direct", verbose=True))

    try:
        session = asyncio.run(play_game(url, autoplay_responder("direct"), config=config, on_session=attach))
    except OCoupError as e:
        _fatal(str(e))
    console.print(f"\n🔌 Connection closed (code: {session.close_code})")
    if session.close_reason:
        console.print(f"   Reason: {session.close_reason}")
    console.print("\n✨ Done!\n")


@app.command()
def tournament(
    num_human_players: int = typer.Argument(4, min=0, help="Human players to register (each autoplays)"),
    server_url: Optional[str] = typer.Argument(None, help="Game server HTTP URL"),
    bot_players: Optional[List[str]] = typer.Argument(None, help="Bot player types to pre-register"),
    url: Optional[str] = typer.Option(None, "--url", help="Connect directly to a game WebSocket URL instead"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
    registration_delay: Optional[float] = typer.Option(None, help="Seconds between registration attempts"),
    registration_timeout: Optional[float] = typer.Option(None, help="Seconds to wait for each registration"),
    start_timeout: Optional[float] = typer.Option(None, help="Seconds to wait for the tournament to finish"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print every game message"),
    log_level: str = typer.Option("WARNING", help="DEBUG, INFO, WARNING or ERROR"),
):
    """Run a tournament: create, register human players, start, print results."""
    config = _load(
        config_file,
        log_level,
        server_url=server_url,
        registration_delay=registration_delay,
        registration_timeout=registration_timeout,
        start_timeout=start_timeout,
    )

    if url is not None:
        if not is_ws_url(url):
            _fatal(f"--url requires a WebSocket URL, got {url!r}")
        _run_direct(url, config, verbose)
        return

    bots = list(bot_players or [])
    console.print("\n🎮 [bold]OCoup Tournament Manager[/]\n")
    console.print(f"Server: {config.server_url}")
    console.print(f"Human Players: {num_human_players}")
    if bots:
        console.print(f"Bot Players: {len(bots)} ({', '.join(bots)})")
    console.print(f"Total Players: {num_human_players + len(bots)}\n")

    def on_phase(phase: TournamentPhase) -> None:
        if phase is TournamentPhase.REGISTERING:
            console.print(f"✅ Tournament created: {session.tournament_id}")
            if session.num_bot_players:
                console.print(f"   {session.num_bot_players} bot player(s) pre-registered")
            if num_human_players:
                console.print(f"\n👥 Registering {num_human_players} human player(s)...\n")
            else:
                console.print("ℹ️  No human players to register (bots only)\n")
        elif phase is TournamentPhase.RUNNING:
            if num_human_players:
                console.print("\n✅ All human players registered!\n")
            console.print("🚀 Starting tournament...\n")
        elif phase is TournamentPhase.COMPLETED:
            console.print("🏆 Tournament completed!\n")

    def on_session_created(num: int, player_session: ConnectionSession) -> None:
        def on_entry(entry: LogEntry) -> None:
            # later duplicates are ignored by the session
            if isinstance(entry.message, Registered):
                console.print(f"   ✅ Player {num}: Registered (ID: {entry.message.player_id})")
                unsubscribe()

        unsubscribe = player_session.subscribe(on_entry)
        player_session.subscribe(_entry_printer(f"Player {num}", verbose=verbose))

    session = TournamentSession(
        num_human_players,
        bots,
        config=config,
        on_phase_change=on_phase,
        on_session_created=on_session_created,
    )

    console.print("📝 Creating tournament...")
    try:
        results = asyncio.run(session.run())
    except OCoupError as e:
        _fatal(session.error or str(e))
    _display_results(results)
    console.print("✨ Done!\n")


@app.command()
def play(
    server_url: Optional[str] = typer.Option(None, "--server", help="Game server HTTP URL"),
    bot: Optional[List[str]] = typer.Option(None, "--bot", help="Bot opponent type (repeatable)"),
    quick: bool = typer.Option(False, "--quick", help="Join the server's /new_game socket instead of creating a game"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Choose every reply yourself"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
    log_level: str = typer.Option("WARNING", help="DEBUG, INFO, WARNING or ERROR"),
):
    """Create a new game against bots and play it."""
    config = _load(config_file, log_level, server_url=server_url)

    async def main_loop():
        if quick:
            player_url = new_game_url(config.ws_base_url)
        else:
            async with GameServerAPI(config.server_url) as api:
                game = await api.create_game(bot or [])
            console.print(f"[bold green]Game created[/] with {game.num_bot_players} bot(s)")
            console.print(f"Spectate at: {game.updates_url}\n")
            player_url = game.player_url
        responder = _interactive_responder() if interactive else autoplay_responder("you")

        def attach(session: ConnectionSession) -> None:
            session.subscribe(_entry_printer("you", verbose=not interactive))

        return await play_game(player_url, responder, config=config, on_session=attach)

    try:
        session = asyncio.run(main_loop())
    except OCoupError as e:
        _fatal(str(e))
    console.print(f"\n🔌 Game over (code: {session.close_code})\n")


@app.command()
def watch(
    url: str = typer.Argument(..., help="Spectator WebSocket URL (updates_url)"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
    log_level: str = typer.Option("WARNING", help="DEBUG, INFO, WARNING or ERROR"),
):
    """Follow a game without playing."""
    config = _load(config_file, log_level)
    if not is_ws_url(url):
        _fatal(f"Expected a WebSocket URL, got {url!r}")

    def attach(session: ConnectionSession) -> None:
        session.subscribe(_entry_printer("spectator"))

    try:
        asyncio.run(watch_game(url, config=config, on_session=attach))
    except OCoupError as e:
        _fatal(str(e))
    console.print("\n✨ Done!\n")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
