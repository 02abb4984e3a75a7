"""
Tests for AllocationEngine: compensating restore/deduct of a record's parts.

Every scenario finishes by checking the ledger still reconciles with
the part quantities, whatever the outcome of the commit.
"""

import pytest

from stock_config.schema import StockLedgerSettings
from stock_kernel.bootstrap import build_stock_kernel
from stock_kernel.domain.allocation import AllocationSet
from stock_kernel.domain.parts import TransactionKind
from stock_kernel.exceptions import (
    ConcurrentModificationConflictError,
    InsufficientStockError,
    PartialCompensationError,
    PartNotFoundError,
    StoreUnavailableError,
)
from stock_kernel.store.memory import InMemoryKeyValueStore
from stock_kernel.store.keys import part_key


def _quantities(kernel, *parts):
    return tuple(kernel.parts.get(p.id).quantity for p in parts)


def _assert_reconciled(kernel):
    assert kernel.reconciliation.unbalanced() == []


class TestCommitScenario:
    """Create, edit and delete a record that holds parts A and B."""

    def test_create_edit_delete(self, kernel, engine, parts_ab):
        a, b = parts_ab

        engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 3}))
        assert _quantities(kernel, a, b) == (7, 5)

        engine.commit("so-1", AllocationSet.of({a.id: 3}), AllocationSet.of({a.id: 1, b.id: 2}))
        assert _quantities(kernel, a, b) == (9, 3)

        engine.release("so-1", AllocationSet.of({a.id: 1, b.id: 2}))
        assert _quantities(kernel, a, b) == (10, 5)

        assert kernel.ledger.net_allocation("so-1").is_empty
        _assert_reconciled(kernel)

    def test_outcome_reports_movements(self, engine, parts_ab):
        a, b = parts_ab
        engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 3}))
        outcome = engine.commit(
            "so-1", AllocationSet.of({a.id: 3}), AllocationSet.of({a.id: 1, b.id: 2})
        )
        assert outcome.restored == {a.id: 3}
        assert outcome.consumed == {a.id: 1, b.id: 2}
        assert outcome.committed == AllocationSet.of({a.id: 1, b.id: 2})
        assert outcome.attempts == 1

    def test_edit_may_use_stock_the_record_already_holds(self, kernel, engine, make_part):
        part = make_part(10)
        engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({part.id: 3}))
        engine.commit("so-1", AllocationSet.of({part.id: 3}), AllocationSet.of({part.id: 10}))
        assert kernel.parts.get(part.id).quantity == 0
        _assert_reconciled(kernel)


class TestPrevalidation:
    """Rejected submissions never write."""

    def test_over_request_rejected_before_any_write(self, kernel, engine, parts_ab):
        a, b = parts_ab
        with pytest.raises(InsufficientStockError) as exc_info:
            engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({b.id: 1, a.id: 999}))
        assert exc_info.value.part_id == a.id
        assert exc_info.value.available == 10
        assert _quantities(kernel, a, b) == (10, 5)
        assert kernel.ledger.all_entries() == []

    def test_edit_over_request_keeps_previous(self, kernel, engine, parts_ab):
        a, _ = parts_ab
        engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 3}))
        entries_before = len(kernel.ledger.all_entries())

        with pytest.raises(InsufficientStockError):
            engine.commit("so-1", AllocationSet.of({a.id: 3}), AllocationSet.of({a.id: 11}))

        assert kernel.parts.get(a.id).quantity == 7
        assert len(kernel.ledger.all_entries()) == entries_before

    def test_unknown_part_rejected(self, kernel, engine, parts_ab):
        a, _ = parts_ab
        with pytest.raises(PartNotFoundError):
            engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 1, "ghost": 1}))
        assert kernel.parts.get(a.id).quantity == 10
        assert kernel.ledger.all_entries() == []

    def test_failure_logged(self, engine, parts_ab, captured_logs):
        a, _ = parts_ab
        with pytest.raises(InsufficientStockError):
            engine.commit("so-9", AllocationSet.empty(), AllocationSet.of({a.id: 50}))
        failed = [r for r in captured_logs() if r["message"] == "allocation_failed"]
        assert failed[-1]["phase"] == "prevalidate"
        assert failed[-1]["record_id"] == "so-9"


class TestSnapshotSink:

    def test_sink_sees_shrunken_hold_then_new(self, engine, parts_ab):
        a, b = parts_ab
        engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 3}))
        snapshots = []

        engine.commit(
            "so-1",
            AllocationSet.of({a.id: 3}),
            AllocationSet.of({a.id: 1, b.id: 1}),
            snapshot_sink=snapshots.append,
        )

        assert snapshots == [AllocationSet.empty(), AllocationSet.of({a.id: 1, b.id: 1})]

    def test_create_does_not_report_empty_restore(self, engine, parts_ab):
        a, _ = parts_ab
        snapshots = []
        engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 2}), snapshots.append)
        assert snapshots == [AllocationSet.of({a.id: 2})]

    def test_release_reports_empty_hold(self, engine, parts_ab):
        a, _ = parts_ab
        engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 2}))
        snapshots = []
        engine.release("so-1", AllocationSet.of({a.id: 2}), snapshots.append)
        assert snapshots == [AllocationSet.empty()]


class TestRaceRecovery:
    """Concurrent writers between validation and deduction."""

    def test_real_shortage_after_restore_reacquires_previous(self, kernel, engine, parts_ab):
        a, b = parts_ab
        engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 3}))
        fired = []

        def rival_sale(event):
            # A counter sale of B lands while so-1 is mid-edit
            if event.kind is TransactionKind.SERVICE_RESTORE and not fired:
                fired.append(event)
                kernel.transactions.record_sale(b.id, 1)

        kernel.event_bus.subscribe(rival_sale, part_id=a.id)
        snapshots = []

        with pytest.raises(InsufficientStockError) as exc_info:
            engine.commit(
                "so-1",
                AllocationSet.of({a.id: 3}),
                AllocationSet.of({a.id: 1, b.id: 5}),
                snapshot_sink=snapshots.append,
            )

        assert exc_info.value.part_id == b.id
        assert _quantities(kernel, a, b) == (7, 4)
        assert kernel.ledger.net_allocation("so-1") == AllocationSet.of({a.id: 3})
        assert snapshots[-1] == AllocationSet.of({a.id: 3})
        _assert_reconciled(kernel)

    def test_shortage_mid_deduct_undoes_applied_lines(self, kernel, engine, parts_ab):
        a, b = parts_ab
        fired = []

        def rival_sale(event):
            if event.kind is TransactionKind.SERVICE_CONSUME and not fired:
                fired.append(event)
                kernel.transactions.record_sale(b.id, 1)

        kernel.event_bus.subscribe(rival_sale, part_id=a.id)

        with pytest.raises(InsufficientStockError):
            engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 2, b.id: 5}))

        assert _quantities(kernel, a, b) == (10, 4)
        assert kernel.ledger.net_allocation("so-1").is_empty
        _assert_reconciled(kernel)


class _RacingStore(InMemoryKeyValueStore):
    """A rival bumps every part CAS while ``races`` > 0."""

    races = 0

    def compare_and_set(self, key, value, expected_version):
        if self.races > 0 and key.startswith("parts/"):
            self.races -= 1
            current = self.get(key)
            super().compare_and_set(key, current.value, current.version)
        return super().compare_and_set(key, value, expected_version)


class TestCasConflictRetry:

    @pytest.fixture
    def racing(self, clock):
        store = _RacingStore()
        settings = StockLedgerSettings(cas_max_attempts=1, allocation_max_attempts=3)
        with build_stock_kernel(settings, clock=clock, store=store) as k:
            yield k, store

    def test_lost_race_is_retried(self, racing):
        kernel, store = racing
        part = kernel.parts.create_part("Chain", quantity=10)
        store.races = 1

        outcome = kernel.allocations.commit("so-1", AllocationSet.empty(), AllocationSet.of({part.id: 3}))

        assert outcome.attempts == 2
        assert kernel.parts.get(part.id).quantity == 7
        _assert_reconciled(kernel)

    def test_exhausted_attempts_leave_stock_unchanged(self, racing):
        kernel, store = racing
        part = kernel.parts.create_part("Chain", quantity=10)
        store.races = 1000

        with pytest.raises(ConcurrentModificationConflictError):
            kernel.allocations.commit("so-1", AllocationSet.empty(), AllocationSet.of({part.id: 3}))

        assert kernel.parts.get(part.id).quantity == 10
        assert kernel.ledger.all_entries() == []


class TestRestoreEdgeCases:

    def test_restore_of_deleted_part_is_skipped(self, kernel, engine, parts_ab, captured_logs):
        a, b = parts_ab
        engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 2, b.id: 1}))
        kernel.parts.delete_part(a.id)

        outcome = engine.release("so-1", AllocationSet.of({a.id: 2, b.id: 1}))

        assert outcome.restored == {b.id: 1}
        assert kernel.parts.get(b.id).quantity == 5
        assert any(
            r["message"] == "allocation_restore_skipped_missing_part" for r in captured_logs()
        )


class TestPartialCompensation:
    """The store fails part-way through; the error reports what is still held."""

    def test_store_failure_during_restore(self, flaky_kernel):
        kernel, flaky = flaky_kernel
        a = kernel.parts.create_part("Brake Pad", quantity=10)
        b = kernel.parts.create_part("Chain Set", quantity=5)
        kernel.allocations.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 3, b.id: 2}))

        flaky.fail_on(lambda op, key, value: op == "compare_and_set" and key == part_key(b.id))
        with pytest.raises(PartialCompensationError) as exc_info:
            kernel.allocations.commit(
                "so-1",
                AllocationSet.of({a.id: 3, b.id: 2}),
                AllocationSet.of({a.id: 1}),
            )
        flaky.heal()

        error = exc_info.value
        assert error.code == "PARTIAL_COMPENSATION"
        assert error.phase == "restore"
        assert error.restored_part_ids == [a.id]
        assert error.held == {b.id: 2}
        # The ledger agrees with the error report
        assert kernel.ledger.net_allocation("so-1").quantities() == error.held
        assert (kernel.parts.get(a.id).quantity, kernel.parts.get(b.id).quantity) == (10, 3)
        _assert_reconciled(kernel)

    def test_retry_from_reported_hold_completes(self, flaky_kernel):
        kernel, flaky = flaky_kernel
        a = kernel.parts.create_part("Brake Pad", quantity=10)
        b = kernel.parts.create_part("Chain Set", quantity=5)
        kernel.allocations.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 3, b.id: 2}))

        flaky.fail_on(lambda op, key, value: op == "compare_and_set" and key == part_key(b.id))
        with pytest.raises(PartialCompensationError):
            kernel.allocations.commit(
                "so-1", AllocationSet.of({a.id: 3, b.id: 2}), AllocationSet.of({a.id: 1})
            )
        flaky.heal()

        held = kernel.ledger.net_allocation("so-1")
        kernel.allocations.commit("so-1", held, AllocationSet.of({a.id: 1}))

        assert (kernel.parts.get(a.id).quantity, kernel.parts.get(b.id).quantity) == (9, 5)
        assert kernel.ledger.net_allocation("so-1") == AllocationSet.of({a.id: 1})
        _assert_reconciled(kernel)


def _fail_ledger_once(monkeypatch, ledger, error):
    """The next ledger write raises ``error``; later writes go through."""
    record_movement = ledger.record_movement
    pending = [error]

    def failing_record_movement(*args, **kwargs):
        if pending:
            raise pending.pop()
        return record_movement(*args, **kwargs)

    monkeypatch.setattr(ledger, "record_movement", failing_record_movement)


class TestLedgerWriteFailure:
    """The part delta lands but its ledger entry does not."""

    def test_conflict_reverts_delta_and_retries(
        self, kernel, engine, parts_ab, monkeypatch, captured_logs
    ):
        a, b = parts_ab
        _fail_ledger_once(
            monkeypatch,
            kernel.ledger,
            ConcurrentModificationConflictError("stock_transaction", entity_type="counter"),
        )

        outcome = engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 3}))

        assert outcome.attempts == 2
        assert _quantities(kernel, a, b) == (7, 5)
        assert [e.delta for e in kernel.ledger.entries_for("so-1")] == [-3]
        assert kernel.ledger.net_allocation("so-1") == AllocationSet.of({a.id: 3})
        assert any(
            r["message"] == "allocation_unlogged_delta_reverted" for r in captured_logs()
        )
        _assert_reconciled(kernel)

    def test_outage_during_restore_keeps_hold_consistent(self, kernel, engine, parts_ab, monkeypatch):
        a, b = parts_ab
        engine.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 3}))
        _fail_ledger_once(
            monkeypatch, kernel.ledger, StoreUnavailableError("create", "transactions/x", 2.0)
        )

        with pytest.raises(PartialCompensationError) as exc_info:
            engine.commit("so-1", AllocationSet.of({a.id: 3}), AllocationSet.of({a.id: 1}))

        error = exc_info.value
        assert error.phase == "restore"
        assert error.held == {a.id: 3}
        assert error.restored_part_ids == []
        assert error.unlogged == {}
        assert _quantities(kernel, a, b) == (7, 5)
        assert kernel.ledger.net_allocation("so-1").quantities() == error.held
        _assert_reconciled(kernel)

    def test_failed_revert_reports_unlogged_delta(self, flaky_kernel):
        kernel, flaky = flaky_kernel
        a = kernel.parts.create_part("Brake Pad", quantity=10)

        flaky.fail_on(lambda op, key, value: op == "create" and key.startswith("transactions/"))
        with pytest.raises(PartialCompensationError) as exc_info:
            kernel.allocations.commit("so-1", AllocationSet.empty(), AllocationSet.of({a.id: 3}))
        flaky.heal()

        error = exc_info.value
        assert error.unlogged == {a.id: -3}
        assert error.held == {}
        assert kernel.parts.get(a.id).quantity == 7
        assert kernel.ledger.entries_for("so-1") == []
        assert [r.drift for r in kernel.reconciliation.unbalanced()] == [-3]
