"""
Tests for event emission and advisory locks.
"""

import threading
import time

import pytest

from quote_reconciliation import main, notifications
from quote_reconciliation.db.locks import advisory_lock, held_keys
from quote_reconciliation.errors import ValidationError
from quote_reconciliation.notifications import MATCH_NEEDS_REVIEW, ORDER_CREATED, QUOTE_RECEIVED

from conftest import ORG


@pytest.fixture
def received():
    events = []

    def handler(event, payload):
        events.append((event, payload))

    notifications.subscribe(handler)
    yield events
    notifications.unsubscribe(handler)


def test_unknown_event_rejected():
    with pytest.raises(ValueError):
        notifications.emit("order_lost", {})


def test_failing_handler_is_contained(received):
    def broken(event, payload):
        raise RuntimeError("mail server down")

    notifications.subscribe(broken)
    try:
        delivered = notifications.emit(QUOTE_RECEIVED, {"supplier_request_id": "req-1"})
    finally:
        notifications.unsubscribe(broken)

    assert delivered == 1
    assert received == [(QUOTE_RECEIVED, {"supplier_request_id": "req-1"})]


def test_subscribe_is_idempotent(received):
    handler = notifications._handlers[-1]
    notifications.subscribe(handler)
    assert notifications.emit(ORDER_CREATED, {"order_id": "o-1"}) == 1


def test_reconcile_emits_after_commit(received, session_factory, seed, sample_extraction):
    output = main.reconcile(ORG, seed.req_acme, extraction=sample_extraction, session_factory=session_factory)

    assert [event for event, _ in received] == [QUOTE_RECEIVED, MATCH_NEEDS_REVIEW]
    assert received[1][1]["session_id"] == output.session.session_id


def test_order_creation_emits_per_order(received, session_factory, paid_invoice):
    result = main.create_orders_from_invoice(ORG, paid_invoice.invoice, session_factory=session_factory)
    numbers = [payload["order_number"] for event, payload in received if event == ORDER_CREATED]
    assert numbers == [o.order_number for o in result.orders]


def test_nothing_emitted_on_rollback(received, session_factory, seed):
    with pytest.raises(ValidationError):
        main.submit_quote(ORG, seed.req_acme, {"lines": []}, session_factory=session_factory)
    assert received == []


def test_advisory_lock_is_reentrant():
    with advisory_lock(("item", "a"), ("item", "b")):
        with advisory_lock(("item", "a")):
            pass


def test_advisory_lock_serializes_threads():
    order = []

    def worker():
        with advisory_lock(("session", "s-1")):
            order.append("worker")

    with advisory_lock(("session", "s-1")):
        thread = threading.Thread(target=worker)
        thread.start()
        time.sleep(0.1)
        order.append("main")
    thread.join(timeout=5)

    assert order == ["main", "worker"]


def test_advisory_lock_entries_dropped_on_release():
    baseline = held_keys()
    for i in range(1000):
        with advisory_lock(("item", f"i{i}")):
            assert held_keys() == baseline + 1
    assert held_keys() == baseline


def test_advisory_lock_entry_kept_while_nested():
    baseline = held_keys()
    with advisory_lock(("item", "a")):
        with advisory_lock(("item", "a")):
            pass
        assert held_keys() == baseline + 1
        with advisory_lock(("item", "a")):
            pass
    assert held_keys() == baseline


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
