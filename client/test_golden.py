#!/usr/bin/env python3
"""
Golden autoplay transcript: a fixed sequence of server frames and the exact
reply text the default player must send for each prompt.
"""

from __future__ import annotations
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from client.autoplay import decide
from shared.codec import DecodeFailure, decode, encode


def _state(coins, others, hand=("Duke", "Captain")):
    return {
        "hand": [{"card": c, "revealed": False} for c in hand],
        "coins": coins,
        "other_players": [{"player_id": p, "visible_card": None, "coins": 2} for p in others],
        "active_player_id": 1,
    }


TRANSCRIPT = [
    ({"type": "Game_start", "self_player_id": 1, "visible_game_state": _state(2, [2, 3])}, None),
    ({"type": "Choose_action", "visible_game_state": _state(2, [2, 3])}, '{"type":"Income"}'),
    ({"type": "Action_chosen", "player_id": 2, "action": {"type": "Foreign_aid"}}, None),
    ({"type": "Choose_foreign_aid_response", "visible_game_state": _state(3, [2, 3])}, '{"type":"Allow"}'),
    ({"type": "Action_chosen", "player_id": 3, "action": {"type": "Steal", "player_id": 1}}, None),
    ({"type": "Choose_steal_response", "player_id": 3, "visible_game_state": _state(3, [2, 3])}, '{"type":"Allow"}'),
    ({"type": "Offer_challenge", "acting_player_id": 2, "action": {"type": "Tax"},
      "visible_game_state": _state(1, [2, 3])}, '{"type":"No_challenge"}'),
    ({"type": "Choose_assasination_response", "player_id": 2, "visible_game_state": _state(1, [2, 3])},
     '{"type":"Allow"}'),
    ({"type": "Reveal_card", "card_1": "Duke", "card_2": "Captain", "visible_game_state": _state(1, [2, 3])},
     '{"type":"Card_1"}'),
    ({"type": "Lost_influence", "player_id": 1, "card": "Duke"}, None),
    ({"type": "Choose_cards_to_return", "cards": ["Captain", "Contessa", "Ambassador"],
      "visible_game_state": _state(7, [3], hand=("Captain",))}, '["Captain","Contessa"]'),
    ({"type": "New_card", "card": "Ambassador"}, None),
    ({"type": "Choose_action", "visible_game_state": _state(7, [3])}, '{"player_id":3,"type":"Coup"}'),
    ({"type": "Player_responded", "player_id": 3}, None),
]


def test_golden_autoplay_transcript():
    """Replay the transcript twice; replies must match the golden text both times"""
    for _ in range(2):
        replies = []
        for frame, expected in TRANSCRIPT:
            message = decode(json.dumps(frame))
            assert not isinstance(message, DecodeFailure), message
            if message.is_prompt:
                replies.append(encode(decide(message)))
            else:
                replies.append(None)
        assert replies == [expected for _, expected in TRANSCRIPT]


if __name__ == "__main__":
    test_golden_autoplay_transcript()
    print("✅ Golden autoplay transcript test passed!")
