from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import pytest

from settleup.config import Settings
from settleup.db.models import ExpenseSplitFact, FriendWeight, Settlement, SettlementStatus
from settleup.services.cache import SuggestionCache
from settleup.services.lifecycle import SettlementLifecycle
from settleup.services.suggestions import SettlementService

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TickingClock:
    def __init__(self) -> None:
        self.ticks = 0

    def __call__(self) -> datetime:
        self.ticks += 1
        return NOW + timedelta(seconds=self.ticks)


class InMemoryLedger:
    """Settlement store and ledger source backed by dicts."""

    def __init__(self, cas_failures: int = 0) -> None:
        self.settlements: dict[int, Settlement] = {}
        self.splits: list[tuple[str, ExpenseSplitFact]] = []
        self.weights: dict[str, list[FriendWeight]] = {}
        self.versions: dict[tuple[str, str], int] = {}
        self.cas_failures = cas_failures
        self.cas_calls = 0
        self.next_id = 1

    def add_split(self, group_id: str, payer_id: str, participant_id: str, amount: int, currency: str = "USD") -> None:
        self.splits.append(
            (group_id, ExpenseSplitFact(payer_id=payer_id, participant_id=participant_id, owed_amount=amount, currency=currency))
        )
        self.versions[(group_id, currency)] = self.versions.get((group_id, currency), 0) + 1

    async def insert_settlement(
        self,
        group_id: str,
        payer_id: str,
        receiver_id: str,
        amount: int,
        currency: str,
        created_by: str,
        notes: Optional[str],
    ) -> Settlement:
        settlement = Settlement(
            id=self.next_id,
            group_id=group_id,
            payer_id=payer_id,
            receiver_id=receiver_id,
            amount=amount,
            currency=currency,
            status=SettlementStatus.PENDING,
            created_by=created_by,
            created_at=NOW,
            updated_at=NOW,
            notes=notes,
        )
        self.settlements[settlement.id] = settlement
        self.next_id += 1
        return dataclasses.replace(settlement)

    async def get_settlement(self, settlement_id: int) -> Optional[Settlement]:
        settlement = self.settlements.get(settlement_id)
        snapshot = dataclasses.replace(settlement) if settlement else None
        # yield after the read so concurrent transitions can observe the same state
        await asyncio.sleep(0)
        return snapshot

    async def list_group_settlements(
        self, group_id: str, status: Optional[SettlementStatus] = None
    ) -> list[Settlement]:
        return [
            dataclasses.replace(s)
            for s in sorted(self.settlements.values(), key=lambda s: s.id, reverse=True)
            if s.group_id == group_id and (status is None or s.status is status)
        ]

    async def compare_and_set_status(
        self,
        settlement_id: int,
        expected: SettlementStatus,
        new: SettlementStatus,
        completed_at: Optional[datetime] = None,
        cancel_reason: Optional[str] = None,
        payment_details: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Settlement]:
        self.cas_calls += 1
        if self.cas_failures > 0:
            self.cas_failures -= 1
            return None
        current = self.settlements.get(settlement_id)
        if current is None or current.status is not expected:
            return None
        updated = dataclasses.replace(
            current,
            status=new,
            completed_at=completed_at or current.completed_at,
            cancel_reason=cancel_reason or current.cancel_reason,
            payment_details=dict(payment_details) if payment_details is not None else current.payment_details,
            updated_at=NOW + timedelta(minutes=1),
        )
        self.settlements[settlement_id] = updated
        return dataclasses.replace(updated)

    async def bump_ledger_version(self, group_id: str, currency: str) -> None:
        self.versions[(group_id, currency)] = self.versions.get((group_id, currency), 0) + 1

    async def ledger_fingerprint(self, group_id: str, currency: str) -> str:
        return str(self.versions.get((group_id, currency), 0))

    async def fetch_expense_splits(self, group_id: str, currency: str) -> list[ExpenseSplitFact]:
        return [fact for group, fact in self.splits if group == group_id and fact.currency == currency]

    async def fetch_completed_settlements(self, group_id: str, currency: str) -> list[Settlement]:
        return [
            dataclasses.replace(s)
            for s in self.settlements.values()
            if s.group_id == group_id and s.currency == currency and s.status is SettlementStatus.COMPLETED
        ]

    async def fetch_friend_weights(self, group_id: str) -> list[FriendWeight]:
        return list(self.weights.get(group_id, []))


class FailingBumpLedger(InMemoryLedger):
    async def bump_ledger_version(self, group_id: str, currency: str) -> None:
        raise ConnectionError("ledger_versions unavailable")


class StubMembers:
    def __init__(self, members: dict[str, set[str]]) -> None:
        self.members = members

    async def fetchval(self, query: str, *args: object) -> object:
        group_id, user_id = args
        return user_id if user_id in self.members.get(str(group_id), set()) else None


class RecordingPayments:
    def __init__(self, fail: bool = False) -> None:
        self.notified: list[Settlement] = []
        self.fail = fail

    async def notify_created(self, settlement: Settlement) -> None:
        if self.fail:
            raise ConnectionError("processor unavailable")
        self.notified.append(settlement)


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def members() -> StubMembers:
    return StubMembers({"g1": {"A", "B", "C", "D"}})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> SuggestionCache:
    return SuggestionCache(ttl_seconds=300, clock=clock)


@pytest.fixture
def payments() -> RecordingPayments:
    return RecordingPayments()


@pytest.fixture
def lifecycle(
    ledger: InMemoryLedger, members: StubMembers, cache: SuggestionCache, payments: RecordingPayments
) -> SettlementLifecycle:
    return SettlementLifecycle(store=ledger, members=members, cache=cache, payments=payments, max_retries=3)


@pytest.fixture
def settings() -> Settings:
    return Settings(DEFAULT_ALGORITHM="min_cash_flow", FRIEND_WEIGHT_THRESHOLD=0.5)


@pytest.fixture
def service(
    ledger: InMemoryLedger, lifecycle: SettlementLifecycle, cache: SuggestionCache, settings: Settings
) -> SettlementService:
    return SettlementService(ledger=ledger, lifecycle=lifecycle, cache=cache, settings=settings, clock=TickingClock())
