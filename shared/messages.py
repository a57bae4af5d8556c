from __future__ import annotations

from enum import Enum
from typing import Set


class Card(str, Enum):
    """Character cards of the game."""

    DUKE = "Duke"
    ASSASSIN = "Assassin"
    CAPTAIN = "Captain"
    AMBASSADOR = "Ambassador"
    CONTESSA = "Contessa"


class ServerMessageType(str, Enum):
    """Server -> client message tags (the ``type`` discriminant)."""

    # Prompts: the server waits for exactly one reply
    CHOOSE_ACTION = "Choose_action"
    CHOOSE_ASSASSINATION_RESPONSE = "Choose_assasination_response"  # sic, wire spelling
    CHOOSE_FOREIGN_AID_RESPONSE = "Choose_foreign_aid_response"
    CHOOSE_STEAL_RESPONSE = "Choose_steal_response"
    CHOOSE_CARDS_TO_RETURN = "Choose_cards_to_return"
    REVEAL_CARD = "Reveal_card"
    OFFER_CHALLENGE = "Offer_challenge"

    # Notifications
    GAME_START = "Game_start"
    ACTION_CHOSEN = "Action_chosen"
    LOST_INFLUENCE = "Lost_influence"
    NEW_CARD = "New_card"
    CHALLENGE = "Challenge"
    PLAYER_RESPONDED = "Player_responded"

    @classmethod
    def from_string(cls, value: str) -> ServerMessageType:
        """Convert string to ServerMessageType, raise ValueError if unknown."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown message type: {value}")

    @property
    def is_prompt(self) -> bool:
        return self in PROMPT_MESSAGES


class ActionType(str, Enum):
    INCOME = "Income"
    FOREIGN_AID = "Foreign_aid"
    TAX = "Tax"
    EXCHANGE = "Exchange"
    ASSASSINATE = "Assassinate"
    COUP = "Coup"
    STEAL = "Steal"

    @property
    def is_targeted(self) -> bool:
        return self in TARGETED_ACTIONS


class ResponseType(str, Enum):
    """Single-tag replies to the non-action prompts."""

    ALLOW = "Allow"
    BLOCK = "Block"
    CARD_1 = "Card_1"
    CARD_2 = "Card_2"
    NO_CHALLENGE = "No_challenge"
    CHALLENGE = "Challenge"


class ConnectionRole(str, Enum):
    """What a session is connected as."""

    REGISTRANT = "registrant"   # tournament registration socket
    PLAYER = "player"           # direct game, answers prompts
    SPECTATOR = "spectator"     # updates feed, never answers


PROMPT_MESSAGES: Set[ServerMessageType] = {
    ServerMessageType.CHOOSE_ACTION,
    ServerMessageType.CHOOSE_ASSASSINATION_RESPONSE,
    ServerMessageType.CHOOSE_FOREIGN_AID_RESPONSE,
    ServerMessageType.CHOOSE_STEAL_RESPONSE,
    ServerMessageType.CHOOSE_CARDS_TO_RETURN,
    ServerMessageType.REVEAL_CARD,
    ServerMessageType.OFFER_CHALLENGE,
}

NOTIFICATION_MESSAGES: Set[ServerMessageType] = set(ServerMessageType) - PROMPT_MESSAGES

TARGETED_ACTIONS: Set[ActionType] = {
    ActionType.ASSASSINATE,
    ActionType.COUP,
    ActionType.STEAL,
}

UNTARGETED_ACTIONS = [
    ActionType.INCOME,
    ActionType.FOREIGN_AID,
    ActionType.TAX,
    ActionType.EXCHANGE,
]

# Cards that may block a steal
STEAL_BLOCKERS = [Card.AMBASSADOR, Card.CAPTAIN]

# Allowed reply tags per prompt (cards-to-return replies are a pair, not a tag)
ALLOWED_RESPONSES = {
    ServerMessageType.CHOOSE_ASSASSINATION_RESPONSE: {ResponseType.ALLOW, ResponseType.BLOCK},
    ServerMessageType.CHOOSE_FOREIGN_AID_RESPONSE: {ResponseType.ALLOW, ResponseType.BLOCK},
    ServerMessageType.CHOOSE_STEAL_RESPONSE: {ResponseType.ALLOW, ResponseType.BLOCK},
    ServerMessageType.REVEAL_CARD: {ResponseType.CARD_1, ResponseType.CARD_2},
    ServerMessageType.OFFER_CHALLENGE: {ResponseType.NO_CHALLENGE, ResponseType.CHALLENGE},
}
