"""通知对账与已读状态测试"""
from types import SimpleNamespace

import pytest

from otcbook.analysis.pipeline import SortField, StatusFilter
from otcbook.data.abi import LogEntry
from otcbook.models.order import CatalogSnapshot
from otcbook.notification.reconciler import EventReconciler, NotificationKind, Role
from otcbook.notification.store import (
    JsonFileStore,
    MemoryStore,
    ReadStateStore,
    ViewState,
    load_view_state,
    save_view_state,
)

from conftest import ALICE, BOB, NOW, FakeLedger, make_order


def _log(event, block, tx, order_id, user=None):
    args = {"orderId": order_id}
    if user is not None:
        args["user"] = user
    return LogEntry(event=event, args=args, block_number=block, tx_hash=tx)


def _catalog(*orders):
    return SimpleNamespace(snapshot=CatalogSnapshot.build({o.order_id: o for o in orders}, len(orders), []))


@pytest.fixture
def ledger():
    ledger = FakeLedger()
    ledger.logs = {
        "OrderCreated": [_log("OrderCreated", 10, "0x01", 1, ALICE)],
        "OrderExecuted": [
            _log("OrderExecuted", 20, "0xaa", 1, BOB),
            _log("OrderExecuted", 30, "0xbb", 2, ALICE),
            _log("OrderExecuted", 40, "0xcc", 1, ALICE),
            _log("OrderExecuted", 60, "0xee", 3, ALICE),
            _log("OrderExecuted", 70, "0xff", 4, ALICE),
        ],
        "OrderUpdated": [
            _log("OrderUpdated", 50, "0xdd", 1),
            _log("OrderUpdated", 55, "0xd2", 2),
        ],
    }
    return ledger


@pytest.fixture
def catalog():
    # 订单 3 不在目录中，订单 4 已过期
    return _catalog(
        make_order(order_id=1, owner=ALICE, expiration=NOW + 3600),
        make_order(order_id=2, owner=BOB, expiration=NOW + 3600),
        make_order(order_id=4, owner=BOB, expiration=NOW - 1),
    )


@pytest.mark.asyncio
async def test_notification_streams(ledger, catalog):
    reconciler = EventReconciler(ledger, catalog, MemoryStore())
    notes = await reconciler.notifications(ALICE, now=NOW)

    assert [(n.tx_ref, n.order_id, n.kind, n.role) for n in notes] == [
        ("0xdd", 1, NotificationKind.UPDATED, Role.SOLD),
        ("0xcc", 1, NotificationKind.FILLED, Role.BOUGHT),
        ("0xbb", 2, NotificationKind.FILLED, Role.BOUGHT),
        ("0xaa", 1, NotificationKind.FILLED, Role.SOLD),
    ]
    assert [n.timestamp for n in notes] == sorted((n.timestamp for n in notes), reverse=True)
    assert notes[0].id == "0xdd-1"


@pytest.mark.asyncio
async def test_no_viewer_no_notifications(ledger, catalog):
    reconciler = EventReconciler(ledger, catalog, MemoryStore())
    assert await reconciler.notifications(None) == []
    assert ledger.log_queries == []


@pytest.mark.asyncio
async def test_checkpoint_limits_rescan(ledger, catalog):
    store = MemoryStore()
    reconciler = EventReconciler(ledger, catalog, store)
    first = await reconciler.notifications(ALICE, now=NOW)
    assert reconciler.checkpoint(ALICE) == 100

    ledger.log_queries.clear()
    assert await reconciler.notifications(ALICE, now=NOW) == first
    assert ledger.log_queries == []

    ledger.block_number = 120
    ledger.logs["OrderExecuted"].append(_log("OrderExecuted", 110, "0x11", 1, BOB))
    notes = await reconciler.notifications(ALICE, now=NOW)

    assert {q[2] for q in ledger.log_queries} == {101}
    assert notes[0].tx_ref == "0x11"
    assert len(notes) == len(first) + 1
    assert reconciler.checkpoint(ALICE) == 120


@pytest.mark.asyncio
async def test_new_and_read_state(ledger, catalog):
    reconciler = EventReconciler(ledger, catalog, MemoryStore())
    notes = await reconciler.notifications(ALICE, now=NOW)
    assert reconciler.unread_count(notes) == 4

    reconciler.mark_read(ALICE, "0xaa-1")
    notes = await reconciler.notifications(ALICE, now=NOW)
    assert reconciler.unread_count(notes) == 3
    assert [n.is_read for n in notes if n.tx_ref == "0xaa"] == [True]

    reconciler.mark_seen(ALICE, now=NOW)
    notes = await reconciler.notifications(ALICE, now=NOW)
    assert reconciler.unread_count(notes) == 0


def test_toggle_read_twice_restores_state():
    state = ReadStateStore(MemoryStore())
    before = state.is_read(ALICE, "0xaa-1")
    assert state.toggle_read(ALICE, "0xaa-1") is True
    assert state.toggle_read(ALICE, "0xaa-1") is False
    assert state.is_read(ALICE, "0xaa-1") == before

    state.mark_read(ALICE, "0xbb-2")
    state.mark_read(ALICE, "0xbb-2")
    state.mark_unread(ALICE, "0xbb-2")
    assert state.read_ids(ALICE) == set()


def test_read_state_is_per_viewer():
    store = MemoryStore()
    state = ReadStateStore(store)
    state.mark_read(ALICE.upper().replace("0X", "0x"), "0xaa-1")
    assert state.is_read(ALICE, "0xaa-1")
    assert not state.is_read(BOB, "0xaa-1")
    assert store.keys("notifications_read") == [f"notifications_read_{ALICE}"]


def test_json_store_persists(tmp_path):
    path = str(tmp_path / "state.json")
    ReadStateStore(JsonFileStore(path)).mark_read(ALICE, "0xaa-1")
    assert ReadStateStore(JsonFileStore(path)).read_ids(ALICE) == {"0xaa-1"}


def test_json_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    store = JsonFileStore(str(path))
    assert store.keys() == []


def test_view_state_round_trip():
    store = MemoryStore()
    save_view_state(store, ViewState(status_filter=StatusFilter.COMPLETED, sort_field=SortField.FILL))
    state = load_view_state(store)
    assert state.status_filter == StatusFilter.COMPLETED
    assert state.sort_field == SortField.FILL

    store.set("view_state", {"status_filter": "bogus"})
    assert load_view_state(store).status_filter == StatusFilter.ACTIVE
