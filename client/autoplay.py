from __future__ import annotations

from shared.codec import (
    Action,
    CardsToReturn,
    ChooseAction,
    ChooseAssassinationResponse,
    ChooseCardsToReturn,
    ChooseForeignAidResponse,
    ChooseStealResponse,
    ClientMessage,
    OfferChallenge,
    Response,
    RevealCard,
    ServerMessage,
)
from shared.log import get_logger
from shared.messages import ActionType, ResponseType

logger = get_logger(__name__)

# Coins at which the default player stops taking income and coups instead
COUP_THRESHOLD = 7


def decide(prompt: ServerMessage) -> ClientMessage:
    """
    Default deterministic reply to a prompt.

    Coups the first listed opponent once it holds 7 coins, otherwise takes
    income. Allows every assassination, foreign aid and steal, hands back the
    first two offered cards, reveals card 1 and never challenges.

    The same prompt always gets the same reply, so runs are reproducible for
    a fixed server and deck order.
    """
    if isinstance(prompt, ChooseAction):
        state = prompt.visible_game_state
        if state.coins >= COUP_THRESHOLD and state.other_players:
            return Action(ActionType.COUP, state.other_players[0].player_id)
        return Action(ActionType.INCOME)

    if isinstance(prompt, (ChooseAssassinationResponse, ChooseForeignAidResponse, ChooseStealResponse)):
        return Response(ResponseType.ALLOW)

    if isinstance(prompt, ChooseCardsToReturn):
        return CardsToReturn(prompt.cards[0], prompt.cards[1])

    if isinstance(prompt, RevealCard):
        return Response(ResponseType.CARD_1)

    if isinstance(prompt, OfferChallenge):
        return Response(ResponseType.NO_CHALLENGE)

    raise ValueError(f"No reply for {prompt.type.value}: not a prompt")


def autoplay_responder(player: object = None):
    """Build a session responder that answers every prompt with ``decide``."""

    def respond(prompt: ServerMessage) -> ClientMessage:
        reply = decide(prompt)
        logger.debug("Autoplay %s -> %s", prompt.type.value, reply.to_wire(),
                     extra={"player": player} if player is not None else None)
        return reply

    return respond
