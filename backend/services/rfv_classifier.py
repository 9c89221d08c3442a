"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Unique CRM - RFV Segmentation                                               ║
║                                                                              ║
║  Recency  : 5 <=30d | 4 <=90d | 3 <=180d | 2 <=365d | 1                      ║
║  Frequency: 5 >=10  | 4 >=5   | 3 >=3    | 2 >=2    | 1                      ║
║  Value    : 5 >=100k| 4 >=50k | 3 >=20k  | 2 >=5k   | 1                      ║
║                                                                              ║
║  Segment: decision table, top to bottom, first match wins.                   ║
║  total_value = max(sold, executed): the two streams measure the same         ║
║  economic activity and are never added together.                             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import datetime
from typing import Callable, List, Optional, Tuple

from models.customer import CustomerProfile, CustomerSegment
from services.rfv_aggregator import CustomerAccumulator, customer_key

RECENCY_DAYS = ((30, 5), (90, 4), (180, 3), (365, 2))
FREQUENCY_COUNTS = ((10, 5), (5, 4), (3, 3), (2, 2))
VALUE_AMOUNTS = ((100000, 5), (50000, 4), (20000, 3), (5000, 2))


def recency_score(days_since_last: int) -> int:
    for max_days, score in RECENCY_DAYS:
        if days_since_last <= max_days:
            return score
    return 1


def frequency_score(total_purchases: int) -> int:
    for min_count, score in FREQUENCY_COUNTS:
        if total_purchases >= min_count:
            return score
    return 1


def value_score(total_value: float) -> int:
    for min_value, score in VALUE_AMOUNTS:
        if total_value >= min_value:
            return score
    return 1


Condition = Callable[[int, int, int], bool]

SEGMENT_RULES: List[Tuple[Condition, CustomerSegment]] = [
    (lambda r, f, v: r >= 4 and f >= 4 and v >= 4, CustomerSegment.CHAMPIONS),
    (lambda r, f, v: r >= 3 and f >= 3 and v >= 3, CustomerSegment.LOYAL),
    (lambda r, f, v: r >= 4 and f >= 2 and v >= 2, CustomerSegment.POTENTIAL),
    (lambda r, f, v: r >= 4 and f >= 1, CustomerSegment.PROMISING),
    (lambda r, f, v: r >= 4, CustomerSegment.NEW),
    (lambda r, f, v: r <= 2 and f >= 3 and v >= 3, CustomerSegment.AT_RISK),
    (lambda r, f, v: r <= 2 and f >= 2 and v >= 4, CustomerSegment.CANNOT_LOSE),
    (lambda r, f, v: r <= 2 and f >= 2, CustomerSegment.HIBERNATING),
    (lambda r, f, v: r <= 2 and f <= 2 and v <= 2, CustomerSegment.LOST),
    (lambda r, f, v: r >= 3 and f >= 2, CustomerSegment.NEED_ATTENTION),
]

FALLBACK_SEGMENT = CustomerSegment.PROMISING


def segment_for(r: int, f: int, v: int) -> CustomerSegment:
    for condition, segment in SEGMENT_RULES:
        if condition(r, f, v):
            return segment
    return FALLBACK_SEGMENT


def classify(acc: CustomerAccumulator, now: datetime) -> Optional[CustomerProfile]:
    """
    Turn an accumulator into an RFV profile.
    Returns None when the customer has no dated activity (not persisted).
    """
    dates = acc.all_dates()
    if not dates:
        return None

    first_date = min(dates)
    last_date = max(dates)
    days_since_last = (now.date() - last_date).days

    total_value = max(acc.sold.total, acc.executed.total)
    total_purchases = acc.sold.count + acc.executed.count

    r = recency_score(days_since_last)
    f = frequency_score(total_purchases)
    v = value_score(total_value)

    return CustomerProfile(
        name=acc.name,
        name_key=customer_key(acc.name),
        email=acc.email,
        phone=acc.phone,
        whatsapp=acc.phone,
        cpf=acc.cpf,
        prontuario=acc.prontuario,
        first_purchase_date=first_date.isoformat(),
        last_purchase_date=last_date.isoformat(),
        total_purchases=total_purchases,
        total_value=total_value,
        average_ticket=total_value / total_purchases if total_purchases else 0.0,
        recency_score=r,
        frequency_score=f,
        value_score=v,
        segment=segment_for(r, f, v),
        days_since_last_purchase=days_since_last,
        updated_at=now.isoformat(),
    )
