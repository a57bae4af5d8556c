import pytest

from client.state import PhaseTracker, TournamentPhase, TournamentResults
from shared.errors import TransitionError


def test_phases_only_move_forward():
    tracker = PhaseTracker()

    tracker.transition(TournamentPhase.REGISTERING)
    tracker.transition(TournamentPhase.RUNNING)

    assert not tracker.can_transition(TournamentPhase.REGISTERING)
    with pytest.raises(TransitionError):
        tracker.transition(TournamentPhase.SETUP)
    tracker.transition(TournamentPhase.COMPLETED)
    assert tracker.phase.is_terminal
    assert len(tracker.history) == 3


def test_error_is_terminal():
    tracker = PhaseTracker()
    tracker.transition(TournamentPhase.ERROR)

    for phase in TournamentPhase:
        assert not tracker.can_transition(phase)


def test_setup_cannot_skip_to_running():
    with pytest.raises(TransitionError) as excinfo:
        PhaseTracker().transition(TournamentPhase.RUNNING)

    assert excinfo.value.from_state == "setup"
    assert excinfo.value.to_state == "running"


def test_results_are_kept_verbatim():
    raw = {
        "results": [
            {"round": 1, "games": [
                {"game": 1, "status": "completed", "winners": [3], "eliminated": [1, 2]},
                {"game": 2, "status": "error", "error": "Player 4 disconnected"},
            ]},
            [{"game": 1, "status": "completed", "winners": [1, 3], "eliminated": [2]}],
        ],
        "scores": {"1": 2, "2": 0, "3": 7},
    }

    results = TournamentResults(raw)
    rounds = results.rounds

    assert results.raw is raw
    assert results.scores["3"] == 7
    assert [r.round for r in rounds] == [1, 2]
    assert rounds[0].games[0].eliminated == (1, 2)
    assert not rounds[0].games[1].completed
    assert rounds[0].games[1].error == "Player 4 disconnected"
    assert rounds[1].games[0].winners == (1, 3)
    assert results.ranking() == [("3", 7), ("1", 2), ("2", 0)]


def test_empty_results():
    results = TournamentResults({"results": [], "scores": {}})

    assert results.rounds == []
    assert results.ranking() == []
