"""
Key layout of the stock ledger documents.

Every component builds keys through these helpers so the layout lives in
one place:

    parts/{partId}
    transactions/{transactionId}                      (immutable)
    transactionsBySource/{recordId}/{transactionId}   (immutable)
    transactionsByPart/{partId}/{transactionId}       (immutable)
    serviceOrders/{recordId}
    vehicleSales/{recordId}
    vehicles/{modelId}
    vehicleUnits/{modelId}/{unitId}
    vehicleSerials/{modelId}/{normalizedMotorNumber}
    counters/{name}
"""

from stock_kernel.domain.records import RecordKind
from stock_kernel.domain.vehicles import normalize_serial

PARTS = "parts/"
TRANSACTIONS = "transactions/"
TRANSACTIONS_BY_SOURCE = "transactionsBySource/"
TRANSACTIONS_BY_PART = "transactionsByPart/"
SERVICE_ORDERS = "serviceOrders/"
VEHICLE_SALES = "vehicleSales/"
VEHICLES = "vehicles/"
VEHICLE_UNITS = "vehicleUnits/"
VEHICLE_SERIALS = "vehicleSerials/"
COUNTERS = "counters/"

# Documents under these prefixes are created once and never rewritten.
IMMUTABLE_PREFIXES: tuple[str, ...] = (
    TRANSACTIONS,
    TRANSACTIONS_BY_SOURCE,
    TRANSACTIONS_BY_PART,
)

RECORD_PREFIXES: dict[RecordKind, str] = {
    RecordKind.SERVICE_ORDER: SERVICE_ORDERS,
    RecordKind.VEHICLE_SALE: VEHICLE_SALES,
}


def _segment(value: str) -> str:
    if not value or "/" in value:
        raise ValueError(f"invalid key segment: {value!r}")
    return value


def part_key(part_id: str) -> str:
    return PARTS + _segment(part_id)


def transaction_key(transaction_id: str) -> str:
    return TRANSACTIONS + _segment(transaction_id)


def source_index_prefix(source_record_id: str) -> str:
    return f"{TRANSACTIONS_BY_SOURCE}{_segment(source_record_id)}/"


def source_index_key(source_record_id: str, transaction_id: str) -> str:
    return source_index_prefix(source_record_id) + _segment(transaction_id)


def part_index_prefix(part_id: str) -> str:
    return f"{TRANSACTIONS_BY_PART}{_segment(part_id)}/"


def part_index_key(part_id: str, transaction_id: str) -> str:
    return part_index_prefix(part_id) + _segment(transaction_id)


def record_key(kind: RecordKind, record_id: str) -> str:
    return RECORD_PREFIXES[RecordKind(kind)] + _segment(record_id)


def record_prefix(kind: RecordKind) -> str:
    return RECORD_PREFIXES[RecordKind(kind)]


def vehicle_key(model_id: str) -> str:
    return VEHICLES + _segment(model_id)


def unit_prefix(model_id: str | None = None) -> str:
    if model_id is None:
        return VEHICLE_UNITS
    return f"{VEHICLE_UNITS}{_segment(model_id)}/"


def unit_key(model_id: str, unit_id: str) -> str:
    return unit_prefix(model_id) + _segment(unit_id)


def serial_key(model_id: str, motor_number: str) -> str:
    # Serials may legitimately contain "/", so encode it
    serial = normalize_serial(motor_number).replace("/", "%2F")
    return f"{VEHICLE_SERIALS}{_segment(model_id)}/{serial}"


def counter_key(name: str) -> str:
    return COUNTERS + _segment(name)


def is_immutable(key: str) -> bool:
    return key.startswith(IMMUTABLE_PREFIXES)
