from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol

from settleup.config import Settings
from settleup.db.models import (
    Balance,
    ExpenseSplitFact,
    FriendWeight,
    Settlement,
    SettlementStatus,
    SettlementSuggestion,
)
from settleup.errors import AlreadyCompleted, UnbalancedLedger
from settleup.logging import get_logger
from settleup.services.balances import BalanceCalculator
from settleup.services.cache import CachedSuggestions, SuggestionCache
from settleup.services.comparator import ComparisonReport, compare_algorithms
from settleup.services.lifecycle import SettlementLifecycle, validate_currency
from settleup.services.settlement import AlgorithmOptions, get_algorithm, run_algorithm


class LedgerSource(Protocol):
    async def fetch_expense_splits(self, group_id: str, currency: str) -> list[ExpenseSplitFact]: ...

    async def fetch_completed_settlements(self, group_id: str, currency: str) -> list[Settlement]: ...

    async def ledger_fingerprint(self, group_id: str, currency: str) -> str: ...

    async def fetch_friend_weights(self, group_id: str) -> list[FriendWeight]: ...

    async def list_group_settlements(
        self, group_id: str, status: Optional[SettlementStatus] = None
    ) -> list[Settlement]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SettlementService:
    """Entry point used by the orchestration layer."""

    def __init__(
        self,
        ledger: LedgerSource,
        lifecycle: SettlementLifecycle,
        cache: SuggestionCache,
        settings: Settings,
        calculator: Optional[BalanceCalculator] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ledger = ledger
        self._lifecycle = lifecycle
        self._cache = cache
        self._settings = settings
        self._calculator = calculator or BalanceCalculator()
        self._clock = clock
        self._log = get_logger(__name__)

    async def _load_balances(self, group_id: str, currency: str) -> dict[str, int]:
        validate_currency(currency)
        splits = await self._ledger.fetch_expense_splits(group_id, currency)
        settlements = await self._ledger.fetch_completed_settlements(group_id, currency)
        try:
            return self._calculator.calculate(splits, settlements, currency)
        except UnbalancedLedger:
            self._log.error("balances.load_failed", group_id=group_id, currency=currency)
            raise

    async def _options(self, group_id: str, currency: str) -> AlgorithmOptions:
        return AlgorithmOptions(
            currency=currency,
            friend_weights=tuple(await self._ledger.fetch_friend_weights(group_id)),
            friend_weight_threshold=self._settings.friend_weight_threshold,
        )

    async def get_balances(self, group_id: str, currency: str) -> list[Balance]:
        balances = await self._load_balances(group_id, currency)
        return self._calculator.to_balances(group_id, currency, balances)

    async def get_cached_suggestions(
        self, group_id: str, currency: str, algorithm: Optional[str] = None
    ) -> CachedSuggestions:
        name = algorithm or self._settings.default_algorithm
        get_algorithm(name)
        validate_currency(currency)
        fingerprint = await self._ledger.ledger_fingerprint(group_id, currency)

        async def compute() -> CachedSuggestions:
            balances = await self._load_balances(group_id, currency)
            options = await self._options(group_id, currency)
            transactions, used = run_algorithm(name, balances, options)
            self._log.info(
                "suggestions.computed",
                group_id=group_id,
                currency=currency,
                algorithm=used,
                transactions=len(transactions),
            )
            return CachedSuggestions(
                transactions=tuple(transactions),
                algorithm_used=used,
                generated_at=self._clock(),
            )

        return await self._cache.get_or_compute((group_id, currency, fingerprint, name), compute)

    async def compute_suggestions(
        self, group_id: str, currency: str, algorithm: Optional[str] = None
    ) -> list[SettlementSuggestion]:
        cached = await self.get_cached_suggestions(group_id, currency, algorithm)
        return list(cached.transactions)

    async def create_settlement(
        self,
        group_id: str,
        payer_id: str,
        receiver_id: str,
        amount: int,
        currency: str,
        created_by: str,
        notes: Optional[str] = None,
    ) -> Settlement:
        return await self._lifecycle.create(
            group_id=group_id,
            payer_id=payer_id,
            receiver_id=receiver_id,
            amount=amount,
            currency=currency,
            created_by=created_by,
            notes=notes,
        )

    async def complete_settlement(
        self, settlement_id: int, metadata: Optional[Mapping[str, Any]] = None
    ) -> Settlement:
        try:
            return await self._lifecycle.complete(settlement_id, metadata)
        except AlreadyCompleted as exc:
            self._log.info("settlement.complete.noop", settlement_id=settlement_id)
            return exc.settlement

    async def cancel_settlement(self, settlement_id: int, reason: Optional[str] = None) -> Settlement:
        return await self._lifecycle.cancel(settlement_id, reason)

    async def list_settlements(
        self, group_id: str, status: Optional[SettlementStatus] = None
    ) -> list[Settlement]:
        """Newest first; ``status`` narrows the listing to one state."""
        return await self._ledger.list_group_settlements(group_id, status)

    async def compare_algorithms(self, group_id: str, currency: str) -> ComparisonReport:
        balances = await self._load_balances(group_id, currency)
        options = await self._options(group_id, currency)
        return compare_algorithms(balances, options, group_id=group_id)

    def notify_ledger_mutation(self, group_id: str, currency: str) -> int:
        return self._cache.invalidate(group_id, currency)
