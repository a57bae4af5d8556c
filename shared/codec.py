from __future__ import annotations
from dataclasses import dataclass, field
from itertools import permutations
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union
import json

from shared.errors import ProtocolError
from shared.messages import (
    ALLOWED_RESPONSES,
    STEAL_BLOCKERS,
    UNTARGETED_ACTIONS,
    ActionType,
    Card,
    ResponseType,
    ServerMessageType,
)

PlayerId = int


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(',', ':'), sort_keys=True)


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ProtocolError(f"Missing required field: '{key}'")
    return data[key]


def _int(data: Dict[str, Any], key: str) -> int:
    value = _require(data, key)
    # bool is an int subclass but never a valid count or id
    if not isinstance(value, int) or isinstance(value, bool):
        raise ProtocolError(f"'{key}' must be an integer, got {value!r}")
    return value


def _card(value: Any) -> Card:
    try:
        return Card(value)
    except ValueError:
        raise ProtocolError(f"Unknown card: {value!r}")


def _object(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ProtocolError(f"'{what}' must be an object")
    return value


def _list(value: Any, what: str) -> List[Any]:
    if not isinstance(value, list):
        raise ProtocolError(f"'{what}' must be a list")
    return value


# ========================================
#           GAME STATE
# ========================================

@dataclass(frozen=True)
class CardInHand:
    card: Card
    revealed: bool

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CardInHand':
        data = _object(data, 'hand[]')
        return cls(card=_card(_require(data, 'card')), revealed=bool(_require(data, 'revealed')))

    def to_dict(self) -> Dict[str, Any]:
        return {'card': self.card.value, 'revealed': self.revealed}


@dataclass(frozen=True)
class OtherPlayer:
    player_id: PlayerId
    visible_card: Optional[Card]
    coins: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OtherPlayer':
        data = _object(data, 'other_players[]')
        visible = data.get('visible_card')
        return cls(
            player_id=_int(data, 'player_id'),
            visible_card=None if visible is None else _card(visible),
            coins=_int(data, 'coins'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'player_id': self.player_id,
            'visible_card': None if self.visible_card is None else self.visible_card.value,
            'coins': self.coins,
        }


@dataclass(frozen=True)
class VisibleGameState:
    """
    The recipient-specific view of the table.

    Fields are kept exactly as the server sent them; nothing here is checked
    against the rules of the game.
    """
    hand: Tuple[CardInHand, ...]
    coins: int
    other_players: Tuple[OtherPlayer, ...]
    active_player_id: PlayerId

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VisibleGameState':
        data = _object(data, 'visible_game_state')
        return cls(
            hand=tuple(CardInHand.from_dict(c) for c in _list(_require(data, 'hand'), 'hand')),
            coins=_int(data, 'coins'),
            other_players=tuple(
                OtherPlayer.from_dict(p) for p in _list(_require(data, 'other_players'), 'other_players')
            ),
            active_player_id=_int(data, 'active_player_id'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hand': [c.to_dict() for c in self.hand],
            'coins': self.coins,
            'other_players': [p.to_dict() for p in self.other_players],
            'active_player_id': self.active_player_id,
        }


# ========================================
#           CLIENT MESSAGES
# ========================================

@dataclass(frozen=True)
class Action:
    """A turn action; targeted actions carry the victim's player id."""
    type: ActionType
    player_id: Optional[PlayerId] = None

    def __post_init__(self) -> None:
        if self.type.is_targeted and self.player_id is None:
            raise ValueError(f"{self.type.value} requires a player_id")
        if not self.type.is_targeted and self.player_id is not None:
            raise ValueError(f"{self.type.value} does not take a player_id")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Action':
        data = _object(data, 'action')
        try:
            player_id = None if data.get('player_id') is None else _int(data, 'player_id')
            return cls(type=ActionType(_require(data, 'type')), player_id=player_id)
        except ValueError as e:
            raise ProtocolError(f"Invalid action: {e}")

    def to_wire(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'type': self.type.value}
        if self.player_id is not None:
            result['player_id'] = self.player_id
        return result


@dataclass(frozen=True)
class Response:
    """Allow/Block, Card_1/Card_2 or No_challenge/Challenge."""
    type: ResponseType
    card: Optional[Card] = None

    def __post_init__(self) -> None:
        if self.card is not None:
            if self.type is not ResponseType.BLOCK:
                raise ValueError(f"{self.type.value} does not take a card")
            if self.card not in STEAL_BLOCKERS:
                raise ValueError(f"Cannot block with {self.card.value}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Response':
        try:
            card = data.get('card')
            return cls(
                type=ResponseType(_require(data, 'type')),
                card=None if card is None else _card(card),
            )
        except ValueError as e:
            raise ProtocolError(f"Invalid response: {e}")

    def to_wire(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'type': self.type.value}
        if self.card is not None:
            result['card'] = self.card.value
        return result


@dataclass(frozen=True)
class CardsToReturn:
    """Ordered pair of cards handed back after an Exchange; sent as a bare JSON array."""
    first: Card
    second: Card

    def to_wire(self) -> List[str]:
        return [self.first.value, self.second.value]


ClientMessage = Union[Action, Response, CardsToReturn]


def encode(message: ClientMessage) -> str:
    """Serialize a reply. Equal messages always produce identical text."""
    return _dumps(message.to_wire())


def decode_client_message(text: str) -> ClientMessage:
    """Parse reply text back into a ClientMessage, raising ProtocolError if malformed."""
    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as e:
        raise ProtocolError(f"Invalid JSON: {e}")

    if isinstance(data, list):
        if len(data) != 2:
            raise ProtocolError("Cards to return must be exactly two cards")
        return CardsToReturn(_card(data[0]), _card(data[1]))

    data = _object(data, 'reply')
    tag = _require(data, 'type')
    if tag in {a.value for a in ActionType}:
        return Action.from_dict(data)
    if tag in {r.value for r in ResponseType}:
        return Response.from_dict(data)
    raise ProtocolError(f"Unknown reply type: {tag!r}")


# ========================================
#           SERVER MESSAGES
# ========================================

_REGISTRY: Dict[ServerMessageType, Type['ServerMessage']] = {}


def _register(cls):
    _REGISTRY[cls.type] = cls
    return cls


@dataclass(frozen=True)
class ServerMessage:
    """Base of the 13 server -> client variants, discriminated by ``type``."""
    type: ClassVar[ServerMessageType]

    @property
    def is_prompt(self) -> bool:
        return self.type.is_prompt

    @classmethod
    def from_json(cls, json_str: str) -> 'ServerMessage':
        """Parse a frame, raising ProtocolError if it is not a known variant"""
        try:
            data = json.loads(json_str)
        except (ValueError, RecursionError) as e:
            raise ProtocolError(f"Invalid JSON: {e}")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> 'ServerMessage':
        data = _object(data, 'message')
        tag = _require(data, 'type')
        if not isinstance(tag, str):
            raise ProtocolError(f"Unknown message type: {tag!r}")
        try:
            variant = _REGISTRY[ServerMessageType.from_string(tag)]
        except ValueError as e:
            raise ProtocolError(str(e))
        return variant._from_payload(data)

    @classmethod
    def _from_payload(cls, data: Dict[str, Any]) -> 'ServerMessage':
        raise NotImplementedError

    def _payload(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        result = {'type': self.type.value}
        result.update(self._payload())
        return result

    def to_json(self) -> str:
        return _dumps(self.to_dict())


@_register
@dataclass(frozen=True)
class GameStart(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.GAME_START
    self_player_id: PlayerId
    visible_game_state: VisibleGameState

    @classmethod
    def _from_payload(cls, data):
        return cls(
            self_player_id=_int(data, 'self_player_id'),
            visible_game_state=VisibleGameState.from_dict(_require(data, 'visible_game_state')),
        )

    def _payload(self):
        return {'self_player_id': self.self_player_id, 'visible_game_state': self.visible_game_state.to_dict()}


@_register
@dataclass(frozen=True)
class ChooseAction(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.CHOOSE_ACTION
    visible_game_state: VisibleGameState

    @classmethod
    def _from_payload(cls, data):
        return cls(visible_game_state=VisibleGameState.from_dict(_require(data, 'visible_game_state')))

    def _payload(self):
        return {'visible_game_state': self.visible_game_state.to_dict()}


@_register
@dataclass(frozen=True)
class ChooseAssassinationResponse(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.CHOOSE_ASSASSINATION_RESPONSE
    player_id: PlayerId
    visible_game_state: VisibleGameState

    @classmethod
    def _from_payload(cls, data):
        return cls(
            player_id=_int(data, 'player_id'),
            visible_game_state=VisibleGameState.from_dict(_require(data, 'visible_game_state')),
        )

    def _payload(self):
        return {'player_id': self.player_id, 'visible_game_state': self.visible_game_state.to_dict()}


@_register
@dataclass(frozen=True)
class ChooseForeignAidResponse(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.CHOOSE_FOREIGN_AID_RESPONSE
    visible_game_state: VisibleGameState

    @classmethod
    def _from_payload(cls, data):
        return cls(visible_game_state=VisibleGameState.from_dict(_require(data, 'visible_game_state')))

    def _payload(self):
        return {'visible_game_state': self.visible_game_state.to_dict()}


@_register
@dataclass(frozen=True)
class ChooseStealResponse(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.CHOOSE_STEAL_RESPONSE
    player_id: PlayerId
    visible_game_state: VisibleGameState

    @classmethod
    def _from_payload(cls, data):
        return cls(
            player_id=_int(data, 'player_id'),
            visible_game_state=VisibleGameState.from_dict(_require(data, 'visible_game_state')),
        )

    def _payload(self):
        return {'player_id': self.player_id, 'visible_game_state': self.visible_game_state.to_dict()}


@_register
@dataclass(frozen=True)
class ChooseCardsToReturn(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.CHOOSE_CARDS_TO_RETURN
    cards: Tuple[Card, ...]
    visible_game_state: VisibleGameState

    @classmethod
    def _from_payload(cls, data):
        cards = tuple(_card(c) for c in _list(_require(data, 'cards'), 'cards'))
        # a reply is always a pair drawn from this list
        if len(cards) < 2:
            raise ProtocolError(f"Choose_cards_to_return offers {len(cards)} card(s), need at least 2")
        return cls(
            cards=cards,
            visible_game_state=VisibleGameState.from_dict(_require(data, 'visible_game_state')),
        )

    def _payload(self):
        return {'cards': [c.value for c in self.cards], 'visible_game_state': self.visible_game_state.to_dict()}


@_register
@dataclass(frozen=True)
class RevealCard(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.REVEAL_CARD
    card_1: Card
    card_2: Card
    visible_game_state: VisibleGameState

    @classmethod
    def _from_payload(cls, data):
        return cls(
            card_1=_card(_require(data, 'card_1')),
            card_2=_card(_require(data, 'card_2')),
            visible_game_state=VisibleGameState.from_dict(_require(data, 'visible_game_state')),
        )

    def _payload(self):
        return {
            'card_1': self.card_1.value,
            'card_2': self.card_2.value,
            'visible_game_state': self.visible_game_state.to_dict(),
        }


@_register
@dataclass(frozen=True)
class OfferChallenge(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.OFFER_CHALLENGE
    acting_player_id: PlayerId
    action: Action
    visible_game_state: VisibleGameState

    @classmethod
    def _from_payload(cls, data):
        return cls(
            acting_player_id=_int(data, 'acting_player_id'),
            action=Action.from_dict(_require(data, 'action')),
            visible_game_state=VisibleGameState.from_dict(_require(data, 'visible_game_state')),
        )

    def _payload(self):
        return {
            'acting_player_id': self.acting_player_id,
            'action': self.action.to_wire(),
            'visible_game_state': self.visible_game_state.to_dict(),
        }


@_register
@dataclass(frozen=True)
class ActionChosen(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.ACTION_CHOSEN
    player_id: PlayerId
    action: Action

    @classmethod
    def _from_payload(cls, data):
        return cls(player_id=_int(data, 'player_id'), action=Action.from_dict(_require(data, 'action')))

    def _payload(self):
        return {'player_id': self.player_id, 'action': self.action.to_wire()}


@_register
@dataclass(frozen=True)
class LostInfluence(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.LOST_INFLUENCE
    player_id: PlayerId
    card: Card

    @classmethod
    def _from_payload(cls, data):
        return cls(player_id=_int(data, 'player_id'), card=_card(_require(data, 'card')))

    def _payload(self):
        return {'player_id': self.player_id, 'card': self.card.value}


@_register
@dataclass(frozen=True)
class NewCard(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.NEW_CARD
    card: Card

    @classmethod
    def _from_payload(cls, data):
        return cls(card=_card(_require(data, 'card')))

    def _payload(self):
        return {'card': self.card.value}


@_register
@dataclass(frozen=True)
class Challenge(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.CHALLENGE
    player_id: PlayerId
    has_required_card: bool

    @classmethod
    def _from_payload(cls, data):
        return cls(player_id=_int(data, 'player_id'), has_required_card=bool(_require(data, 'has_required_card')))

    def _payload(self):
        return {'player_id': self.player_id, 'has_required_card': self.has_required_card}


@_register
@dataclass(frozen=True)
class PlayerResponded(ServerMessage):
    type: ClassVar[ServerMessageType] = ServerMessageType.PLAYER_RESPONDED
    player_id: PlayerId

    @classmethod
    def _from_payload(cls, data):
        return cls(player_id=_int(data, 'player_id'))

    def _payload(self):
        return {'player_id': self.player_id}


# ========================================
#           CONTROL FRAMES & DECODING
# ========================================

@dataclass(frozen=True)
class Registered:
    """``{"status": "registered", "player_id": n}`` acknowledging a tournament registration."""
    player_id: PlayerId

    def to_json(self) -> str:
        return _dumps({'status': 'registered', 'player_id': self.player_id})


@dataclass(frozen=True)
class ServerError:
    """``{"error": "..."}`` envelope sent by the server."""
    error: str

    def to_json(self) -> str:
        return _dumps({'error': self.error})


@dataclass(frozen=True)
class DecodeFailure:
    """A frame that could not be decoded. Carries the raw text for the log."""
    raw: str
    reason: str = field(compare=False)


Frame = Union[Registered, ServerError, ServerMessage, DecodeFailure]


def decode(text: Union[str, bytes]) -> Union[ServerMessage, DecodeFailure]:
    """Decode a game frame. Never raises: failures come back as DecodeFailure."""
    if isinstance(text, bytes):
        try:
            text = text.decode('utf-8')
        except UnicodeDecodeError as e:
            return DecodeFailure(raw=repr(text), reason=f"Invalid UTF-8: {e}")
    try:
        return ServerMessage.from_json(text)
    except ProtocolError as e:
        return DecodeFailure(raw=text, reason=str(e))


def decode_frame(text: Union[str, bytes]) -> Frame:
    """
    Decode any frame a WebSocket endpoint may send.

    Control frames are recognised first: an ``error`` key wins, then a
    ``status`` of ``registered``. Everything else goes through ``decode``.
    """
    raw = text.decode('utf-8', errors='replace') if isinstance(text, bytes) else text
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as e:
        return DecodeFailure(raw=raw, reason=f"Invalid JSON: {e}")

    if isinstance(data, dict):
        if data.get('error'):
            return ServerError(error=str(data['error']))
        if data.get('status') == 'registered':
            if 'player_id' not in data:
                return DecodeFailure(raw=raw, reason="Registration frame without player_id")
            return Registered(player_id=data['player_id'])
    return decode(text)


# ========================================
#           REPLY SHAPES
# ========================================

def reply_options(prompt: ServerMessage) -> List[ClientMessage]:
    """
    Every reply that fits the shape required by ``prompt``, in a stable order.

    Targeted actions are offered against each other player in received order.
    Cards to return are every ordered pair of distinct offered positions.
    """
    if isinstance(prompt, ChooseAction):
        options: List[ClientMessage] = [Action(t) for t in UNTARGETED_ACTIONS]
        for target in prompt.visible_game_state.other_players:
            for t in (ActionType.ASSASSINATE, ActionType.COUP, ActionType.STEAL):
                options.append(Action(t, target.player_id))
        return options
    if isinstance(prompt, (ChooseAssassinationResponse, ChooseForeignAidResponse)):
        return [Response(ResponseType.ALLOW), Response(ResponseType.BLOCK)]
    if isinstance(prompt, ChooseStealResponse):
        return [Response(ResponseType.ALLOW)] + [Response(ResponseType.BLOCK, card) for card in STEAL_BLOCKERS]
    if isinstance(prompt, ChooseCardsToReturn):
        seen: List[ClientMessage] = []
        for i, j in permutations(range(len(prompt.cards)), 2):
            pair = CardsToReturn(prompt.cards[i], prompt.cards[j])
            if pair not in seen:
                seen.append(pair)
        return seen
    if isinstance(prompt, RevealCard):
        return [Response(ResponseType.CARD_1), Response(ResponseType.CARD_2)]
    if isinstance(prompt, OfferChallenge):
        return [Response(ResponseType.NO_CHALLENGE), Response(ResponseType.CHALLENGE)]
    raise ValueError(f"{prompt.type.value} is a notification and takes no reply")


def matches_prompt(prompt: ServerMessage, reply: ClientMessage) -> bool:
    """True if ``reply`` has the shape ``prompt`` demands."""
    if not prompt.is_prompt:
        return False
    if isinstance(prompt, ChooseAction):
        return isinstance(reply, Action)
    if isinstance(prompt, ChooseCardsToReturn):
        if not isinstance(reply, CardsToReturn):
            return False
        offered = list(prompt.cards)
        for card in (reply.first, reply.second):
            if card not in offered:
                return False
            offered.remove(card)
        return True
    if not isinstance(reply, Response):
        return False
    if reply.type not in ALLOWED_RESPONSES[prompt.type]:
        return False
    # a steal is blocked by naming Ambassador or Captain, nothing else names a card
    if isinstance(prompt, ChooseStealResponse) and reply.type is ResponseType.BLOCK:
        return reply.card is not None
    return reply.card is None
