from __future__ import annotations

import threading
import time

import pytest

from closuretree.errors import ConcurrencyError
from closuretree.locking import (
    EXCLUSIVE,
    SHARED,
    LockPlan,
    LockTimeout,
    NodeLockTable,
    lock_table_for,
)

from conftest import make_forest


def test_plan_orders_ids_and_prefers_exclusive() -> None:
    plan = LockPlan.build([5, 2], shared=[2, 9, 1])

    assert plan.ordered() == [(1, SHARED), (2, EXCLUSIVE), (5, EXCLUSIVE), (9, SHARED)]


def test_plan_coverage() -> None:
    held = LockPlan.build([1, 2], shared=[3])

    assert held.covers(LockPlan.build([1], shared=[2, 3]))
    assert held.covers(LockPlan.build([]))
    assert not held.covers(LockPlan.build([3]))
    assert not held.covers(LockPlan.build([1, 4]))
    assert not held.covers(LockPlan.build([], shared=[7]))


def test_shared_locks_do_not_block_each_other() -> None:
    locks = NodeLockTable()

    with locks.hold(LockPlan.build([], shared=[1]), timeout=0.1):
        with locks.hold(LockPlan.build([], shared=[1]), timeout=0.1):
            assert locks.held_count() == 1

    assert locks.held_count() == 0


def test_exclusive_lock_times_out_while_held() -> None:
    locks = NodeLockTable()

    with locks.hold(LockPlan.build([], shared=[1]), timeout=0.1):
        with pytest.raises(LockTimeout) as excinfo:
            with locks.hold(LockPlan.build([1]), timeout=0.01):
                pass

    assert excinfo.value.node_id == 1
    assert locks.held_count() == 0


def test_partial_acquisition_is_released_on_timeout() -> None:
    locks = NodeLockTable()

    with locks.hold(LockPlan.build([3]), timeout=0.1):
        with pytest.raises(LockTimeout):
            with locks.hold(LockPlan.build([1, 2, 3]), timeout=0.01):
                pass
        with locks.hold(LockPlan.build([1, 2]), timeout=0.01):
            pass


def test_waiter_proceeds_after_release() -> None:
    locks = NodeLockTable()
    acquired = threading.Event()
    order: list[str] = []

    def contender() -> None:
        with locks.hold(LockPlan.build([1]), timeout=2.0):
            order.append("contender")
            acquired.set()

    with locks.hold(LockPlan.build([1]), timeout=0.1):
        thread = threading.Thread(target=contender)
        thread.start()
        time.sleep(0.05)
        order.append("owner")

    assert acquired.wait(2.0)
    thread.join(timeout=2.0)
    assert order == ["owner", "contender"]
    assert locks.held_count() == 0


def test_handles_on_one_database_share_node_locks(tmp_path) -> None:
    first = make_forest(tmp_path / "state", max_retries=0, lock_timeout_ms=1)
    second = make_forest(tmp_path / "state", max_retries=0, lock_timeout_ms=1)
    elsewhere = make_forest(tmp_path / "other")
    root = first.insert()
    child = first.insert(root.id)

    assert second.coordinator.locks is first.coordinator.locks
    assert elsewhere.coordinator.locks is not first.coordinator.locks
    assert lock_table_for(tmp_path / "state" / "forest.sqlite3") is first.coordinator.locks

    with first.coordinator.locks.hold(LockPlan.build([child.id]), timeout=1.0):
        with pytest.raises(ConcurrencyError):
            second.move(child.id, None)

    second.move(child.id, None)
    assert first.is_root(child.id)
