from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional


class SettlementStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not SettlementStatus.PENDING


@dataclass(slots=True, frozen=True)
class Balance:
    user_id: str
    group_id: str
    currency: str
    net_amount: int


@dataclass(slots=True, frozen=True)
class ExpenseSplitFact:
    payer_id: str
    participant_id: str
    owed_amount: int
    currency: str


@dataclass(slots=True, frozen=True)
class SettlementSuggestion:
    payer_id: str
    receiver_id: str
    amount: int
    currency: str


@dataclass(slots=True, frozen=True)
class FriendWeight:
    user_a: str
    user_b: str
    weight: float


@dataclass(slots=True)
class Settlement:
    id: int
    group_id: str
    payer_id: str
    receiver_id: str
    amount: int
    currency: str
    status: SettlementStatus
    created_by: str
    created_at: datetime
    updated_at: datetime
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    payment_details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Settlement":
        return cls(
            id=row["id"],
            group_id=row["group_id"],
            payer_id=row["payer_id"],
            receiver_id=row["receiver_id"],
            amount=row["amount"],
            currency=row["currency"],
            status=SettlementStatus(row["status"]),
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            notes=row.get("notes"),
            completed_at=row.get("completed_at"),
            cancel_reason=row.get("cancel_reason"),
            payment_details=dict(row.get("payment_details") or {}),
        )
