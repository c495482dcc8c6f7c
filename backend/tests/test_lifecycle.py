from decimal import Decimal
from itertools import product

import pytest

from backend.app.db.models.core_types import POStatus
from backend.services.lifecycle import (
    APPROVAL_THRESHOLD,
    TRANSITIONS,
    OrderLifecycle,
    initial_transition_target,
    requires_approval,
)

S = POStatus

EXPECTED_EDGES = {
    (S.draft, S.pending_approval),
    (S.draft, S.approved),
    (S.pending_approval, S.approved),
    (S.pending_approval, S.cancelled),
    (S.approved, S.sent_to_supplier),
    (S.sent_to_supplier, S.supplier_confirmed),
    (S.supplier_confirmed, S.partially_received),
    (S.supplier_confirmed, S.fully_received),
    (S.partially_received, S.fully_received),
    (S.fully_received, S.invoiced),
    (S.invoiced, S.completed),
}


@pytest.fixture
def lifecycle():
    return OrderLifecycle()


def test_table_covers_every_status():
    assert set(TRANSITIONS) == set(POStatus)


def test_can_transition_matches_table_exactly(lifecycle):
    for src, dst in product(POStatus, POStatus):
        assert lifecycle.can_transition(src, dst) is ((src, dst) in EXPECTED_EDGES)


@pytest.mark.parametrize("terminal", [S.completed, S.cancelled])
def test_terminal_states_have_no_outgoing_transition(lifecycle, terminal):
    assert lifecycle.next_valid_states(terminal) == frozenset()
    assert lifecycle.is_terminal(terminal)
    for dst in POStatus:
        assert lifecycle.can_transition(terminal, dst) is False


def test_next_valid_states_empty_only_for_terminal_states(lifecycle):
    for status in POStatus:
        nxt = lifecycle.next_valid_states(status)
        assert nxt <= set(POStatus)
        assert (len(nxt) == 0) is (status in {S.completed, S.cancelled})


def test_next_valid_states_agrees_with_can_transition(lifecycle):
    for src in POStatus:
        allowed = {dst for dst in POStatus if lifecycle.can_transition(src, dst)}
        assert lifecycle.next_valid_states(src) == allowed


def test_no_backward_transitions(lifecycle):
    order = list(POStatus)
    for src, dst in EXPECTED_EDGES:
        assert order.index(dst) > order.index(src)
    assert lifecycle.can_transition("invoiced", "draft") is False


def test_accepts_raw_strings(lifecycle):
    assert lifecycle.can_transition("draft", "pending_approval") is True
    assert lifecycle.next_valid_states("supplier_confirmed") == {
        S.partially_received,
        S.fully_received,
    }


@pytest.mark.parametrize("unknown", ["", "DRAFT", "shipped", None, 42])
def test_unknown_values_fail_closed(lifecycle, unknown):
    assert lifecycle.can_transition(unknown, "approved") is False
    assert lifecycle.can_transition("draft", unknown) is False
    assert lifecycle.next_valid_states(unknown) == frozenset()
    assert lifecycle.is_terminal(unknown) is False


def test_instances_are_interchangeable():
    a, b = OrderLifecycle(), OrderLifecycle()
    for src, dst in product(POStatus, POStatus):
        assert a.can_transition(src, dst) == b.can_transition(src, dst)


def test_custom_table_can_be_injected():
    lc = OrderLifecycle({S.draft: frozenset({S.cancelled})})
    assert lc.can_transition(S.draft, S.cancelled)
    assert not lc.can_transition(S.draft, S.approved)
    assert lc.next_valid_states(S.approved) == frozenset()


# ---------- Règle d'approbation (côté appelant) ----------
def test_approval_threshold_is_strictly_greater_than_2000():
    assert APPROVAL_THRESHOLD == Decimal("2000")
    assert requires_approval(Decimal("2500")) is True
    assert requires_approval(Decimal("2000.01")) is True
    assert requires_approval(2000) is False
    assert requires_approval(0) is False
    assert requires_approval(None) is False


def test_large_order_goes_through_pending_approval(lifecycle):
    assert initial_transition_target(Decimal("2500")) == S.pending_approval
    assert initial_transition_target(Decimal("150")) == S.approved
    # La machine à états garde la légalité, pas la règle métier
    assert lifecycle.can_transition(S.draft, S.approved) is True
