"""Tests for the document key layout."""

import pytest

from stock_kernel.domain.records import RecordKind
from stock_kernel.store.keys import (
    counter_key,
    is_immutable,
    part_index_key,
    part_key,
    record_key,
    serial_key,
    source_index_key,
    transaction_key,
    unit_key,
    unit_prefix,
    vehicle_key,
)


class TestKeyBuilders:

    def test_layout(self):
        assert part_key("p1") == "parts/p1"
        assert transaction_key("t1") == "transactions/t1"
        assert source_index_key("r1", "t1") == "transactionsBySource/r1/t1"
        assert part_index_key("p1", "t1") == "transactionsByPart/p1/t1"
        assert record_key(RecordKind.SERVICE_ORDER, "r1") == "serviceOrders/r1"
        assert record_key(RecordKind.VEHICLE_SALE, "r1") == "vehicleSales/r1"
        assert vehicle_key("m1") == "vehicles/m1"
        assert unit_key("m1", "u1") == "vehicleUnits/m1/u1"
        assert counter_key("stock_transaction") == "counters/stock_transaction"

    def test_record_key_accepts_kind_value(self):
        assert record_key("vehicle_sale", "r1") == "vehicleSales/r1"

    def test_unit_prefix_all_models(self):
        assert unit_prefix() == "vehicleUnits/"
        assert unit_prefix("m1") == "vehicleUnits/m1/"

    def test_serial_key_is_case_insensitive(self):
        assert serial_key("m1", " MTR-01 ") == serial_key("m1", "mtr-01")

    def test_serial_key_encodes_slash(self):
        assert serial_key("m1", "A/B") == "vehicleSerials/m1/a%2Fb"

    @pytest.mark.parametrize("bad", ["", "a/b"])
    def test_invalid_segment_rejected(self, bad):
        with pytest.raises(ValueError):
            part_key(bad)

    def test_only_ledger_documents_are_immutable(self):
        assert is_immutable("transactions/t1")
        assert is_immutable("transactionsBySource/r1/t1")
        assert is_immutable("transactionsByPart/p1/t1")
        assert not is_immutable("parts/p1")
        assert not is_immutable("counters/stock_transaction")
