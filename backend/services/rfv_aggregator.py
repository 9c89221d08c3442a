"""
Unique CRM - RFV Aggregator

Folds the sold and executed transaction streams into one accumulator per
customer identity. The identity key is the customer name, case-folded and
whitespace-normalized; both streams share the same accumulators.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from models.customer import RecordKind, TransactionRecord

logger = logging.getLogger("rfv_aggregator")

CONTACT_FIELDS = ("email", "phone", "cpf", "prontuario")

# transaction column -> accumulator field
_RECORD_CONTACT_COLUMNS = {
    "email": "patient_email",
    "phone": "patient_phone",
    "cpf": "patient_cpf",
    "prontuario": "patient_prontuario",
}

_NUMERIC_NAME = re.compile(r"^\d+$")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class KindTotals:
    dates: List[date] = field(default_factory=list)
    total: float = 0.0
    count: int = 0


@dataclass
class CustomerAccumulator:
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    cpf: Optional[str] = None
    prontuario: Optional[str] = None
    by_kind: Dict[RecordKind, KindTotals] = field(
        default_factory=lambda: {kind: KindTotals() for kind in RecordKind}
    )

    @property
    def sold(self) -> KindTotals:
        return self.by_kind[RecordKind.SOLD]

    @property
    def executed(self) -> KindTotals:
        return self.by_kind[RecordKind.EXECUTED]

    def all_dates(self) -> List[date]:
        return self.sold.dates + self.executed.dates


def customer_key(name: Optional[str]) -> str:
    """Case-folded, whitespace-normalized name; '' when unusable"""
    if not name:
        return ""
    return _WHITESPACE.sub(" ", name.strip()).casefold()


def is_misplaced_id(name: str) -> bool:
    """The source feed sometimes puts the CPF in the name column"""
    return bool(_NUMERIC_NAME.match(name.strip()))


def parse_record_date(value) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        logger.warning(f"Unparseable transaction date: {value!r}")
        return None


def merge_contact(acc: CustomerAccumulator, contact: Dict[str, Optional[str]]):
    """Fill each contact field only while it is still empty on the accumulator"""
    for fname in CONTACT_FIELDS:
        incoming = contact.get(fname)
        if incoming and not getattr(acc, fname):
            setattr(acc, fname, incoming)


def fold_record(
    customers: Dict[str, CustomerAccumulator],
    record: TransactionRecord,
    kind: RecordKind,
) -> bool:
    """Fold one transaction into its accumulator. Returns False when skipped."""
    name = record.patient_name
    if not name or is_misplaced_id(name):
        return False

    key = customer_key(name)
    if not key:
        return False

    acc = customers.get(key)
    if acc is None:
        acc = CustomerAccumulator(name=name.strip())
        customers[key] = acc

    totals = acc.by_kind[kind]
    record_date = parse_record_date(record.date)
    if record_date:
        totals.dates.append(record_date)
    totals.total += record.amount
    totals.count += 1

    merge_contact(
        acc,
        {fname: getattr(record, column) for fname, column in _RECORD_CONTACT_COLUMNS.items()},
    )
    return True


def aggregate(
    streams: Dict[RecordKind, Iterable[dict]],
    customers: Optional[Dict[str, CustomerAccumulator]] = None,
) -> Dict[str, CustomerAccumulator]:
    """Aggregate every stream into a single identity-keyed map"""
    customers = {} if customers is None else customers
    for kind, rows in streams.items():
        skipped = 0
        for row in rows:
            try:
                record = TransactionRecord.model_validate(row)
            except ValidationError as e:
                logger.warning(f"{kind.value}: unreadable transaction skipped: {e}")
                skipped += 1
                continue
            if not fold_record(customers, record, kind):
                skipped += 1
        if skipped:
            logger.info(f"{kind.value}: skipped {skipped} records without a usable name")
    return customers
