"""Settlement state machine.

``pending`` is the only non-terminal state; it moves to ``completed`` or
``cancelled`` exactly once. Every transition is a compare-and-swap on the
stored status, so two racing callers cannot both win.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol

from settleup.db.models import Settlement, SettlementStatus
from settleup.errors import (
    AlreadyCompleted,
    ConcurrentModification,
    InvalidSettlement,
    InvalidTransition,
    SettlementNotFound,
)
from settleup.logging import get_logger
from settleup.services.authz import Repository, assert_group_member
from settleup.services.cache import SuggestionCache

CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class SettlementStore(Protocol):
    async def insert_settlement(
        self,
        group_id: str,
        payer_id: str,
        receiver_id: str,
        amount: int,
        currency: str,
        created_by: str,
        notes: Optional[str],
    ) -> Settlement: ...

    async def get_settlement(self, settlement_id: int) -> Optional[Settlement]: ...

    async def compare_and_set_status(
        self,
        settlement_id: int,
        expected: SettlementStatus,
        new: SettlementStatus,
        completed_at: Optional[datetime] = None,
        cancel_reason: Optional[str] = None,
        payment_details: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Settlement]: ...

    async def bump_ledger_version(self, group_id: str, currency: str) -> None: ...


class PaymentProcessor(Protocol):
    async def notify_created(self, settlement: Settlement) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_currency(currency: str) -> str:
    if not isinstance(currency, str) or not CURRENCY_RE.match(currency):
        raise InvalidSettlement(f"invalid currency code: {currency!r}")
    return currency


class SettlementLifecycle:
    def __init__(
        self,
        store: SettlementStore,
        members: Repository,
        cache: Optional[SuggestionCache] = None,
        payments: Optional[PaymentProcessor] = None,
        max_retries: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._store = store
        self._members = members
        self._cache = cache
        self._payments = payments
        self._max_retries = max_retries
        self._clock = clock
        self._log = get_logger(__name__)

    async def create(
        self,
        group_id: str,
        payer_id: str,
        receiver_id: str,
        amount: int,
        currency: str,
        created_by: str,
        notes: Optional[str] = None,
    ) -> Settlement:
        if payer_id == receiver_id:
            raise InvalidSettlement("payer and receiver must differ")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidSettlement("amount must be a positive number of minor units")
        validate_currency(currency)
        await assert_group_member(self._members, payer_id, group_id)
        await assert_group_member(self._members, receiver_id, group_id)

        settlement = await self._store.insert_settlement(
            group_id=group_id,
            payer_id=payer_id,
            receiver_id=receiver_id,
            amount=amount,
            currency=currency,
            created_by=created_by,
            notes=notes.strip() if notes else None,
        )
        self._log.info(
            "settlement.create",
            settlement_id=settlement.id,
            group_id=group_id,
            currency=currency,
        )
        await self._notify_payments(settlement)
        return settlement

    async def complete(self, settlement_id: int, metadata: Optional[Mapping[str, Any]] = None) -> Settlement:
        settlement = await self._transition(
            settlement_id,
            SettlementStatus.COMPLETED,
            completed_at=self._clock(),
            payment_details=dict(metadata or {}),
        )
        # Only completed settlements move balances, so only this path touches the ledger.
        # The status change is already committed, so the cache is dropped even if the bump fails.
        try:
            await self._store.bump_ledger_version(settlement.group_id, settlement.currency)
        finally:
            if self._cache is not None:
                self._cache.invalidate(settlement.group_id, settlement.currency)
        self._log.info("settlement.complete", settlement_id=settlement_id, group_id=settlement.group_id)
        return settlement

    async def cancel(self, settlement_id: int, reason: Optional[str] = None) -> Settlement:
        settlement = await self._transition(
            settlement_id,
            SettlementStatus.CANCELLED,
            cancel_reason=reason,
        )
        self._log.info("settlement.cancel", settlement_id=settlement_id, group_id=settlement.group_id)
        return settlement

    async def _transition(self, settlement_id: int, target: SettlementStatus, **fields: Any) -> Settlement:
        for attempt in range(1, self._max_retries + 1):
            try:
                return await self._attempt(settlement_id, target, attempt, **fields)
            except ConcurrentModification:
                self._log.warning(
                    "settlement.cas_conflict",
                    settlement_id=settlement_id,
                    target=target.value,
                    attempt=attempt,
                )
        raise ConcurrentModification(settlement_id, self._max_retries)

    async def _attempt(
        self, settlement_id: int, target: SettlementStatus, attempt: int, **fields: Any
    ) -> Settlement:
        current = await self._store.get_settlement(settlement_id)
        if current is None:
            raise SettlementNotFound(settlement_id)

        if current.status.is_terminal:
            if current.status is SettlementStatus.COMPLETED and target is SettlementStatus.COMPLETED:
                raise AlreadyCompleted(current)
            raise InvalidTransition(settlement_id, current.status.value, target.value)

        updated = await self._store.compare_and_set_status(
            settlement_id,
            expected=SettlementStatus.PENDING,
            new=target,
            **fields,
        )
        if updated is None:
            raise ConcurrentModification(settlement_id, attempt)
        return updated

    async def _notify_payments(self, settlement: Settlement) -> None:
        if self._payments is None:
            return
        try:
            await self._payments.notify_created(settlement)
        except Exception:
            # The processor retries on its side; a pending settlement stays valid.
            self._log.exception("settlement.payment_notify_failed", settlement_id=settlement.id)
