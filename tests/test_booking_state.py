import itertools

import pytest

from models.booking import BOOKING_STATUSES, TERMINAL_STATUSES, can_transition

ALLOWED = {
    ("pending", "confirmed"),
    ("pending", "cancelled"),
    ("confirmed", "completed"),
    ("confirmed", "cancelled"),
}


@pytest.mark.parametrize("current,target", list(itertools.product(BOOKING_STATUSES, repeat=2)))
def test_transition_table(current, target):
    assert can_transition(current, target) == ((current, target) in ALLOWED)


def test_nothing_leaves_a_terminal_state():
    for terminal in TERMINAL_STATUSES:
        assert not any(can_transition(terminal, t) for t in BOOKING_STATUSES)


def test_nothing_reenters_pending():
    assert not any(can_transition(s, "pending") for s in BOOKING_STATUSES)
