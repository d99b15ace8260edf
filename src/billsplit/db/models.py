from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union


class BillStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ItemSource(str, Enum):
    MANUAL = "manual"
    OCR = "ocr"


class ShareType(str, Enum):
    SOLO = "solo"
    SPLIT_WITH_ALL = "split_with_all"
    SPLIT_WITH_SPECIFIC = "split_with_specific"


@dataclass(slots=True)
class Bill:
    id: int
    code: str
    organizer_access_code: str
    tax_amount: Decimal
    tip_amount: Decimal
    status: BillStatus = BillStatus.ACTIVE
    organizer_id: Optional[int] = None
    organizer_phone: Optional[str] = None
    receipt_analyzed: bool = False
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == BillStatus.ACTIVE


@dataclass(slots=True)
class Item:
    id: int
    bill_id: int
    name: str
    price: Decimal
    quantity: int = 1
    source: ItemSource = ItemSource.MANUAL
    display_order: int = 0


@dataclass(slots=True)
class Participant:
    id: int
    bill_id: int
    name: str
    phone_number: str
    plus_one_count: int = 0
    has_responded: bool = False
    last_updated_at: Optional[datetime] = None

    @property
    def person_weight(self) -> int:
        """Number of people this participant pays for, themselves included."""
        return 1 + max(self.plus_one_count or 0, 0)


@dataclass(slots=True)
class Claim:
    id: int
    item_id: int
    participant_id: int
    share_type: ShareType
    share_with_participant_ids: tuple[int, ...] = ()
    quantity_claimed: Decimal = Decimal(1)
    amount_owed: Decimal = Decimal(0)


# Claim requests. A request carries exactly the fields its share type needs.


@dataclass(frozen=True, slots=True)
class SoloClaim:
    quantity: Decimal = Decimal(1)

    share_type = ShareType.SOLO


@dataclass(frozen=True, slots=True)
class SplitWithAll:
    share_type = ShareType.SPLIT_WITH_ALL


@dataclass(frozen=True, slots=True)
class SplitWithSpecific:
    with_ids: frozenset[int] = field(default_factory=frozenset)

    share_type = ShareType.SPLIT_WITH_SPECIFIC


@dataclass(frozen=True, slots=True)
class Unclaim:
    pass


ClaimRequest = Union[SoloClaim, SplitWithAll, SplitWithSpecific, Unclaim]
