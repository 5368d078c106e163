"""Tests for the intent store and batch store."""

import json
import threading
from decimal import Decimal

import pytest

from anchor_batch.errors import InvalidIntent, InvalidTransition, NotFound
from anchor_batch.store import BatchStore, IntentStore
from anchor_batch.types import IntentStatus, SwapIntent

USER = "0x" + "11" * 20


def _make_intent(amount=Decimal(100), **overrides) -> SwapIntent:
    fields = dict(
        user_address=USER,
        from_token="USDC",
        to_token="USDT",
        from_chain="ethereum",
        to_chain="polygon",
        amount=amount,
    )
    fields.update(overrides)
    return SwapIntent(**fields)


def test_submit_assigns_id_and_pending_status():
    store = IntentStore()
    intent_id = store.submit(_make_intent())

    intent = store.get(intent_id)
    assert intent_id.startswith("intent-")
    assert intent.status is IntentStatus.PENDING
    assert intent.batch_id is None
    assert intent.timestamp > 0
    assert intent.recipient == USER  # defaults to the submitter


def test_submit_ignores_caller_status_and_id():
    """Store owns id and lifecycle fields."""
    store = IntentStore()
    intent_id = store.submit(
        _make_intent(id="mine", status=IntentStatus.SETTLED, batch_id="batch-x", recipient="0xabc")
    )
    intent = store.get(intent_id)
    assert intent_id != "mine"
    assert intent.status is IntentStatus.PENDING
    assert intent.batch_id is None
    assert intent.recipient == "0xabc"


def test_ids_are_unique():
    store = IntentStore()
    ids = {store.submit(_make_intent()) for _ in range(50)}
    assert len(ids) == 50


@pytest.mark.parametrize(
    "overrides",
    [
        {"amount": Decimal(0)},
        {"amount": Decimal(-5)},
        {"amount": Decimal("NaN")},
        {"amount": Decimal("Infinity")},
        {"amount": "abc"},
        {"from_token": ""},
        {"to_chain": "   "},
        {"user_address": None},
    ],
)
def test_submit_rejects_malformed_intents(overrides):
    store = IntentStore()
    with pytest.raises(InvalidIntent):
        store.submit(_make_intent(**overrides))
    assert len(store) == 0


def test_submit_accepts_decimal_strings():
    store = IntentStore()
    intent_id = store.submit(_make_intent(amount="1000.25"))
    assert store.get(intent_id).amount == Decimal("1000.25")


def test_release_orphans_returns_unrecorded_batches_to_pending():
    store = IntentStore()
    kept = store.submit(_make_intent())
    lost = store.submit(_make_intent())
    store.set_status(kept, IntentStatus.MATCHED, "batch-kept")
    store.set_status(lost, IntentStatus.MATCHED, "batch-lost")

    assert store.release_orphans(["batch-kept"]) == 1
    assert store.get(kept).status is IntentStatus.MATCHED
    assert store.get(lost).status is IntentStatus.PENDING
    assert store.get(lost).batch_id is None


def test_pending_preserves_submission_order():
    store = IntentStore()
    ids = [store.submit(_make_intent(amount=str(n))) for n in range(1, 6)]
    assert [i.id for i in store.pending_intents()] == ids


def test_pending_returns_copies():
    """Mutating a snapshot does not touch the store."""
    store = IntentStore()
    intent_id = store.submit(_make_intent())
    snapshot = store.pending_intents()
    snapshot[0].status = IntentStatus.FAILED
    assert store.get(intent_id).status is IntentStatus.PENDING


def test_set_status_forward_transitions():
    store = IntentStore()
    intent_id = store.submit(_make_intent())

    store.set_status(intent_id, IntentStatus.MATCHED, "batch-1")
    assert store.get(intent_id).batch_id == "batch-1"
    assert store.pending_intents() == []

    store.set_status(intent_id, "settled")
    intent = store.get(intent_id)
    assert intent.status is IntentStatus.SETTLED
    assert intent.batch_id == "batch-1"


def test_set_status_same_status_is_noop():
    store = IntentStore()
    intent_id = store.submit(_make_intent())
    store.set_status(intent_id, IntentStatus.PENDING)
    assert store.get(intent_id).status is IntentStatus.PENDING


def test_set_status_unknown_id():
    with pytest.raises(NotFound):
        IntentStore().set_status("intent-missing", IntentStatus.MATCHED)


def test_set_status_rejects_backward_move():
    store = IntentStore()
    intent_id = store.submit(_make_intent())
    store.set_status(intent_id, IntentStatus.MATCHED, "batch-1")
    with pytest.raises(InvalidTransition):
        store.set_status(intent_id, IntentStatus.PENDING)


def test_failed_reachable_from_any_state():
    store = IntentStore()
    pending = store.submit(_make_intent())
    settled = store.submit(_make_intent())
    store.set_status(settled, IntentStatus.MATCHED, "batch-1")
    store.set_status(settled, IntentStatus.SETTLED)

    store.set_status(pending, IntentStatus.FAILED)
    store.set_status(settled, IntentStatus.FAILED)
    assert store.get(pending).status is IntentStatus.FAILED
    assert store.get(settled).status is IntentStatus.FAILED
    with pytest.raises(InvalidTransition):
        store.set_status(pending, IntentStatus.MATCHED)


def test_batch_id_never_rebound():
    store = IntentStore()
    intent_id = store.submit(_make_intent())
    store.set_status(intent_id, IntentStatus.MATCHED, "batch-1")
    with pytest.raises(InvalidTransition):
        store.set_status(intent_id, IntentStatus.SETTLED, "batch-2")
    assert store.get(intent_id).batch_id == "batch-1"


def test_release_only_touches_given_batch():
    store = IntentStore()
    a = store.submit(_make_intent())
    b = store.submit(_make_intent())
    store.set_status(a, IntentStatus.MATCHED, "batch-1")
    store.set_status(b, IntentStatus.MATCHED, "batch-2")

    assert store.release([a, b, "intent-missing"], "batch-1") == 1

    assert store.get(a).status is IntentStatus.PENDING
    assert store.get(a).batch_id is None
    assert store.get(b).status is IntentStatus.MATCHED
    assert store.get(b).batch_id == "batch-2"


def test_mark_settled():
    store = IntentStore()
    a = store.submit(_make_intent())
    b = store.submit(_make_intent())
    store.set_status(a, IntentStatus.MATCHED, "batch-1")

    assert store.mark_settled("batch-1", "0xdead") == 1
    intent = store.get(a)
    assert intent.status is IntentStatus.SETTLED
    assert intent.settlement_tx_hash == "0xdead"
    assert intent.settled_at is not None
    assert store.get(b).status is IntentStatus.PENDING

    with pytest.raises(NotFound):
        store.mark_settled("batch-1")


def test_stats_and_batch_lookup():
    store = IntentStore()
    a = store.submit(_make_intent())
    store.submit(_make_intent())
    store.set_status(a, IntentStatus.MATCHED, "batch-1")

    assert store.stats() == {"total": 2, "pending": 1, "processed": 1}
    assert [i.id for i in store.intents_for_batch("batch-1")] == [a]
    assert len(store.all()) == 2


def test_file_backed_store_survives_restart(tmp_path):
    store = IntentStore(tmp_path)
    a = store.submit(_make_intent(amount="1000.50"))
    b = store.submit(_make_intent(recipient="0xrecipient"))
    store.set_status(a, IntentStatus.MATCHED, "batch-1")

    with open(tmp_path / IntentStore.FILENAME) as f:
        records = json.load(f)
    assert [r["id"] for r in records] == [a, b]
    assert records[0]["amount"] == "1000.5"

    reloaded = IntentStore(tmp_path)
    assert [i.id for i in reloaded.all()] == [a, b]
    assert reloaded.get(a).status is IntentStatus.MATCHED
    assert reloaded.get(a).batch_id == "batch-1"
    assert reloaded.get(a).amount == Decimal("1000.5")
    assert reloaded.get(b).recipient == "0xrecipient"
    assert [i.id for i in reloaded.pending_intents()] == [b]


def test_concurrent_submissions_are_not_lost():
    store = IntentStore()

    def _submit():
        for _ in range(100):
            store.submit(_make_intent())

    threads = [threading.Thread(target=_submit) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store) == 800
    assert store.stats()["pending"] == 800


def test_batch_store_lookup(tmp_path):
    batches = BatchStore(tmp_path)
    with pytest.raises(NotFound):
        batches.get("batch-missing")
    assert batches.latest() is None
    assert len(batches) == 0
