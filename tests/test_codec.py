import json

import pytest

from conftest import dumps, game_state
from shared.codec import (
    Action,
    ActionChosen,
    CardsToReturn,
    ChooseAction,
    ChooseAssassinationResponse,
    ChooseCardsToReturn,
    ChooseStealResponse,
    DecodeFailure,
    GameStart,
    OfferChallenge,
    PlayerResponded,
    Registered,
    Response,
    ServerError,
    ServerMessage,
    decode,
    decode_client_message,
    decode_frame,
    encode,
    matches_prompt,
    reply_options,
)
from shared.errors import ProtocolError
from shared.messages import ActionType, Card, ResponseType, ServerMessageType


def test_decode_game_start():
    frame = dumps({"type": "Game_start", "self_player_id": 4, "visible_game_state": game_state(coins=2)})

    message = decode(frame)

    assert isinstance(message, GameStart)
    assert message.self_player_id == 4
    assert message.visible_game_state.coins == 2
    assert [c.card for c in message.visible_game_state.hand] == [Card.DUKE, Card.CONTESSA]
    assert [p.player_id for p in message.visible_game_state.other_players] == [2, 3]
    assert not message.is_prompt


def test_decode_keeps_assassination_wire_spelling():
    frame = dumps({"type": "Choose_assasination_response", "player_id": 2, "visible_game_state": game_state()})

    message = decode(frame)

    assert isinstance(message, ChooseAssassinationResponse)
    assert message.player_id == 2
    assert message.is_prompt
    assert json.loads(message.to_json())["type"] == "Choose_assasination_response"


def test_decode_offer_challenge_carries_action():
    frame = dumps({
        "type": "Offer_challenge",
        "acting_player_id": 3,
        "action": {"type": "Steal", "player_id": 1},
        "visible_game_state": game_state(),
    })

    message = decode(frame)

    assert isinstance(message, OfferChallenge)
    assert message.action == Action(ActionType.STEAL, 1)


def test_decode_every_notification_tag():
    frames = [
        {"type": "Action_chosen", "player_id": 2, "action": {"type": "Tax"}},
        {"type": "Lost_influence", "player_id": 2, "card": "Duke"},
        {"type": "New_card", "card": "Captain"},
        {"type": "Challenge", "player_id": 3, "has_required_card": True},
        {"type": "Player_responded", "player_id": 3},
    ]
    for data in frames:
        message = decode(dumps(data))
        assert isinstance(message, ServerMessage), data
        assert message.to_dict() == data


@pytest.mark.parametrize("raw", [
    "not json",
    dumps({"type": "Bogus"}),
    dumps({"no_type": True}),
    dumps({"type": "Lost_influence", "player_id": 2}),
    dumps({"type": "New_card", "card": "Joker"}),
    dumps(["Duke", "Captain"]),
])
def test_decode_failures_keep_raw_text(raw):
    result = decode(raw)

    assert isinstance(result, DecodeFailure)
    assert result.raw == raw
    assert result.reason


def test_cards_to_return_needs_two_cards():
    frame = dumps({"type": "Choose_cards_to_return", "cards": ["Duke"], "visible_game_state": game_state()})

    assert isinstance(decode(frame), DecodeFailure)


def test_decode_accepts_bytes():
    message = decode(dumps({"type": "Player_responded", "player_id": 9}).encode())

    assert message == PlayerResponded(player_id=9)


def test_decode_frame_control_frames():
    assert decode_frame('{"status":"registered","player_id":3}') == Registered(player_id=3)
    assert decode_frame('{"error":"Tournament is full"}') == ServerError(error="Tournament is full")
    # an error key wins over anything else in the frame
    assert decode_frame('{"error":"boom","status":"registered","player_id":1}') == ServerError(error="boom")
    assert isinstance(decode_frame('{"status":"registered"}'), DecodeFailure)
    assert isinstance(decode_frame(dumps({"type": "New_card", "card": "Duke"})), ServerMessage)


def test_server_message_from_json_is_strict():
    with pytest.raises(ProtocolError):
        ServerMessage.from_json('{"type":"Nope"}')


def test_encode_is_deterministic_and_compact():
    assert encode(Action(ActionType.COUP, 3)) == '{"player_id":3,"type":"Coup"}'
    assert encode(Action(ActionType.INCOME)) == '{"type":"Income"}'
    assert encode(Response(ResponseType.BLOCK, Card.CAPTAIN)) == '{"card":"Captain","type":"Block"}'
    assert encode(CardsToReturn(Card.DUKE, Card.CONTESSA)) == '["Duke","Contessa"]'
    assert encode(Action(ActionType.STEAL, 2)) == encode(Action(ActionType.STEAL, 2))


def test_client_message_constraints():
    with pytest.raises(ValueError):
        Action(ActionType.COUP)
    with pytest.raises(ValueError):
        Action(ActionType.TAX, 2)
    with pytest.raises(ValueError):
        Response(ResponseType.ALLOW, Card.CAPTAIN)
    with pytest.raises(ValueError):
        Response(ResponseType.BLOCK, Card.DUKE)


def test_decode_client_message():
    assert decode_client_message('{"type":"Steal","player_id":2}') == Action(ActionType.STEAL, 2)
    assert decode_client_message('{"type":"Block","card":"Ambassador"}') == Response(ResponseType.BLOCK, Card.AMBASSADOR)
    assert decode_client_message('["Captain","Duke"]') == CardsToReturn(Card.CAPTAIN, Card.DUKE)
    for bad in ('{"type":"Coup"}', '{"type":"Dance"}', '["Duke"]', 'nope'):
        with pytest.raises(ProtocolError):
            decode_client_message(bad)


def test_reply_options_for_choose_action():
    prompt = ChooseAction.from_dict({"type": "Choose_action", "visible_game_state": game_state(others=(2, 5))})

    options = reply_options(prompt)

    assert options[:4] == [Action(t) for t in (ActionType.INCOME, ActionType.FOREIGN_AID, ActionType.TAX, ActionType.EXCHANGE)]
    assert Action(ActionType.COUP, 5) in options
    assert len(options) == 4 + 3 * 2
    assert all(matches_prompt(prompt, o) for o in options)


def test_reply_options_for_steal_and_exchange():
    steal = ChooseStealResponse(player_id=2, visible_game_state=decode(
        dumps({"type": "Choose_action", "visible_game_state": game_state()})).visible_game_state)
    assert reply_options(steal) == [
        Response(ResponseType.ALLOW),
        Response(ResponseType.BLOCK, Card.AMBASSADOR),
        Response(ResponseType.BLOCK, Card.CAPTAIN),
    ]

    exchange = decode(dumps({
        "type": "Choose_cards_to_return",
        "cards": ["Duke", "Duke", "Captain"],
        "visible_game_state": game_state(),
    }))
    pairs = reply_options(exchange)
    assert CardsToReturn(Card.DUKE, Card.DUKE) in pairs
    assert len(pairs) == len(set(pairs))


def test_reply_options_rejects_notifications():
    with pytest.raises(ValueError):
        reply_options(ActionChosen(player_id=1, action=Action(ActionType.TAX)))


def test_matches_prompt_shapes():
    state = game_state()
    steal = decode(dumps({"type": "Choose_steal_response", "player_id": 2, "visible_game_state": state}))
    aid = decode(dumps({"type": "Choose_foreign_aid_response", "visible_game_state": state}))
    exchange = ChooseCardsToReturn.from_dict({
        "type": "Choose_cards_to_return", "cards": ["Duke", "Captain"], "visible_game_state": state,
    })

    assert matches_prompt(steal, Response(ResponseType.BLOCK, Card.CAPTAIN))
    assert not matches_prompt(steal, Response(ResponseType.BLOCK))
    assert matches_prompt(aid, Response(ResponseType.BLOCK))
    assert not matches_prompt(aid, Response(ResponseType.CARD_1))
    assert not matches_prompt(aid, Action(ActionType.INCOME))
    assert matches_prompt(exchange, CardsToReturn(Card.CAPTAIN, Card.DUKE))
    assert not matches_prompt(exchange, CardsToReturn(Card.DUKE, Card.DUKE))
    assert not matches_prompt(PlayerResponded(player_id=1), Response(ResponseType.ALLOW))


def test_server_message_type_lookup():
    assert ServerMessageType.from_string("Reveal_card") is ServerMessageType.REVEAL_CARD
    failure = decode(dumps({"type": "Choose_assassination_response", "player_id": 2, "visible_game_state": game_state()}))
    assert isinstance(failure, DecodeFailure)
    assert "Unknown message type" in failure.reason
    with pytest.raises(ValueError):
        ServerMessageType.from_string("Unknown")


def test_deeply_nested_json_is_a_decode_failure():
    raw = "[" * 100000 + "]" * 100000

    assert isinstance(decode(raw), DecodeFailure)
    assert isinstance(decode_frame(raw), DecodeFailure)
    assert isinstance(decode_frame("[" * 100000), DecodeFailure)
    with pytest.raises(ProtocolError):
        decode_client_message(raw)
    with pytest.raises(ProtocolError):
        ServerMessage.from_json('{"a":' * 100000 + "1" + "}" * 100000)


@pytest.mark.parametrize("data", [
    {"type": "Choose_action", "visible_game_state": game_state(coins=None)},
    {"type": "Choose_action", "visible_game_state": {**game_state(), "active_player_id": "1"}},
    {"type": "Choose_steal_response", "player_id": None, "visible_game_state": game_state()},
    {"type": "Player_responded", "player_id": True},
    {"type": "Action_chosen", "player_id": 2, "action": {"type": "Coup", "player_id": "3"}},
    {"type": "Game_start", "self_player_id": 1.5, "visible_game_state": game_state()},
])
def test_non_integer_counts_and_ids_are_decode_failures(data):
    result = decode(dumps(data))

    assert isinstance(result, DecodeFailure)
    assert "must be an integer" in result.reason


def test_every_reply_option_survives_encoding():
    state = game_state(others=(2, 5))
    prompts = [
        {"type": "Choose_action", "visible_game_state": state},
        {"type": "Choose_assasination_response", "player_id": 2, "visible_game_state": state},
        {"type": "Choose_foreign_aid_response", "visible_game_state": state},
        {"type": "Choose_steal_response", "player_id": 5, "visible_game_state": state},
        {"type": "Choose_cards_to_return", "cards": ["Duke", "Assassin", "Contessa", "Duke"], "visible_game_state": state},
        {"type": "Reveal_card", "card_1": "Captain", "card_2": "Ambassador", "visible_game_state": state},
        {"type": "Offer_challenge", "acting_player_id": 2, "action": {"type": "Tax"}, "visible_game_state": state},
    ]
    seen = set()

    for data in prompts:
        prompt = decode(dumps(data))
        assert prompt.is_prompt, data
        for option in reply_options(prompt):
            text = encode(option)
            assert decode_client_message(text) == option
            assert encode(decode_client_message(text)) == text
            seen.add(option)

    assert {a.type for a in seen if isinstance(a, Action)} == set(ActionType)
    assert {r.type for r in seen if isinstance(r, Response)} == set(ResponseType)
    assert Response(ResponseType.BLOCK, Card.AMBASSADOR) in seen
    assert Response(ResponseType.BLOCK, Card.CAPTAIN) in seen
    assert CardsToReturn(Card.DUKE, Card.DUKE) in seen
