"""
Unit tests for the order status machine (dashboard/status.py).

纯 Python，不需要数据库：用 SimpleNamespace 代替 Order。
"""
import pytest
from datetime import datetime, timezone as dt_timezone
from types import SimpleNamespace

from dashboard import status
from dashboard.exceptions import IllegalDeletion, InvalidTransition

NOW = datetime(2024, 6, 3, 10, 0, tzinfo=dt_timezone.utc)


def make_order(current, **kwargs):
    fields = {
        'id': 1,
        'order_number': 'ORD-0001',
        'status': current,
        'confirmed_at': None,
        'delivered_at': None,
    }
    fields.update(kwargs)
    return SimpleNamespace(**fields)


class TestAllowedTransitions:

    def test_draft(self):
        assert status.allowed_transitions(status.DRAFT) == {status.CONFIRMED, status.CANCELLED}

    def test_confirmed(self):
        assert status.allowed_transitions(status.CONFIRMED) == {status.PROCESSING, status.CANCELLED}

    def test_processing(self):
        assert status.allowed_transitions(status.PROCESSING) == {status.DELIVERED, status.CANCELLED}

    @pytest.mark.parametrize('terminal', [status.DELIVERED, status.CANCELLED])
    def test_terminal_states_have_no_exits(self, terminal):
        assert status.allowed_transitions(terminal) == frozenset()
        assert status.is_terminal(terminal)

    def test_unknown_status_is_empty_and_not_terminal(self):
        assert status.allowed_transitions('archived') == frozenset()
        assert not status.is_terminal('archived')

    def test_no_back_edges(self):
        assert not status.can_transition(status.CONFIRMED, status.DRAFT)
        assert not status.can_transition(status.PROCESSING, status.CONFIRMED)
        assert not status.can_transition(status.DELIVERED, status.PROCESSING)


class TestTransition:

    def test_draft_to_confirmed_sets_confirmed_at(self):
        order = make_order(status.DRAFT)

        changed = status.transition(order, status.CONFIRMED, now=NOW)

        assert order.status == status.CONFIRMED
        assert order.confirmed_at == NOW
        assert order.delivered_at is None
        assert changed == ['status', 'confirmed_at']

    def test_processing_to_delivered_sets_delivered_at(self):
        confirmed_at = datetime(2024, 6, 1, tzinfo=dt_timezone.utc)
        order = make_order(status.PROCESSING, confirmed_at=confirmed_at)

        changed = status.transition(order, status.DELIVERED, now=NOW)

        assert order.status == status.DELIVERED
        assert order.delivered_at == NOW
        # confirmed_at 保持不变
        assert order.confirmed_at == confirmed_at
        assert changed == ['status', 'delivered_at']

    def test_confirmed_to_processing_touches_no_timestamp(self):
        order = make_order(status.CONFIRMED, confirmed_at=NOW)

        changed = status.transition(order, status.PROCESSING, now=NOW)

        assert changed == ['status']
        assert order.delivered_at is None

    def test_cancel_from_draft(self):
        order = make_order(status.DRAFT)

        status.transition(order, status.CANCELLED, now=NOW)

        assert order.status == status.CANCELLED
        assert order.confirmed_at is None

    def test_confirmed_to_draft_rejected_and_order_unchanged(self):
        order = make_order(status.CONFIRMED, confirmed_at=NOW)

        with pytest.raises(InvalidTransition) as exc_info:
            status.transition(order, status.DRAFT)

        assert order.status == status.CONFIRMED
        assert order.confirmed_at == NOW
        exc = exc_info.value
        assert exc.code == 'INVALID_TRANSITION'
        assert exc.http_status == 409
        assert exc.detail == {
            'current': status.CONFIRMED,
            'target': status.DRAFT,
            'allowed': [status.CANCELLED, status.PROCESSING],
        }
        assert 'ORD-0001' in exc.message

    def test_transition_out_of_terminal_rejected(self):
        order = make_order(status.DELIVERED, delivered_at=NOW)

        with pytest.raises(InvalidTransition):
            status.transition(order, status.CANCELLED)

        assert order.status == status.DELIVERED

    def test_unknown_target_rejected(self):
        order = make_order(status.DRAFT)

        with pytest.raises(InvalidTransition):
            status.transition(order, 'shipped')

    @pytest.mark.parametrize('current', [s for s, _ in status.STATUS_CHOICES])
    @pytest.mark.parametrize('target', [s for s, _ in status.STATUS_CHOICES])
    def test_succeeds_iff_allowed(self, current, target):
        order = make_order(current)
        if target in status.allowed_transitions(current):
            status.transition(order, target, now=NOW)
            assert order.status == target
        else:
            with pytest.raises(InvalidTransition):
                status.transition(order, target, now=NOW)
            assert order.status == current

    def test_delivered_at_set_only_when_delivered(self):
        order = make_order(status.DRAFT)
        for target in (status.CONFIRMED, status.PROCESSING):
            status.transition(order, target, now=NOW)
            assert order.delivered_at is None
        status.transition(order, status.DELIVERED, now=NOW)
        assert order.delivered_at is not None


class TestConfirm:

    def test_confirm_shortcut(self):
        order = make_order(status.DRAFT)

        status.confirm(order, now=NOW)

        assert order.status == status.CONFIRMED
        assert order.confirmed_at == NOW

    def test_confirm_twice_rejected(self):
        order = make_order(status.DRAFT)
        status.confirm(order, now=NOW)

        with pytest.raises(InvalidTransition):
            status.confirm(order)


class TestEnsureDeletable:

    def test_draft_is_deletable(self):
        status.ensure_deletable(make_order(status.DRAFT))

    @pytest.mark.parametrize('current', [
        status.CONFIRMED, status.PROCESSING, status.DELIVERED, status.CANCELLED,
    ])
    def test_non_draft_raises(self, current):
        with pytest.raises(IllegalDeletion) as exc_info:
            status.ensure_deletable(make_order(current))

        assert exc_info.value.code == 'ILLEGAL_DELETION'
        assert exc_info.value.detail == {'order_id': 1, 'status': current}
