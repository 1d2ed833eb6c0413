"""Net balances of a group computed from ledger facts.

Positive amounts mean the user is owed money, negative amounts mean the user
owes money. Everything is integer minor units, so a correctly recorded ledger
always nets to exactly zero per currency.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from settleup.db.models import Balance, ExpenseSplitFact, Settlement, SettlementStatus
from settleup.errors import CurrencyMismatch, UnbalancedLedger
from settleup.logging import get_logger

log = get_logger(__name__)


def _add(balances: dict[str, int], user_id: str, amount: int) -> None:
    balances[user_id] = balances.get(user_id, 0) + amount


def _drop_zero(balances: Mapping[str, int]) -> dict[str, int]:
    return {user_id: amount for user_id, amount in balances.items() if amount != 0}


def assert_zero_sum(balances: Mapping[str, int]) -> None:
    imbalance = sum(balances.values())
    if imbalance != 0:
        nonzero = sum(1 for amount in balances.values() if amount != 0)
        log.error("balances.unbalanced", imbalance=imbalance, nonzero_count=nonzero)
        raise UnbalancedLedger(imbalance=imbalance, nonzero_count=nonzero)


class BalanceCalculator:
    def calculate(
        self,
        splits: Iterable[ExpenseSplitFact],
        settlements: Iterable[Settlement],
        currency: str,
    ) -> dict[str, int]:
        balances: dict[str, int] = {}

        for split in splits:
            if split.currency != currency:
                raise CurrencyMismatch(currency, split.currency)
            if split.payer_id == split.participant_id:
                continue
            _add(balances, split.payer_id, split.owed_amount)
            _add(balances, split.participant_id, -split.owed_amount)

        for settlement in settlements:
            if settlement.currency != currency:
                raise CurrencyMismatch(currency, settlement.currency)
            # Pending and cancelled settlements were never netted.
            if settlement.status is not SettlementStatus.COMPLETED:
                continue
            _add(balances, settlement.payer_id, settlement.amount)
            _add(balances, settlement.receiver_id, -settlement.amount)

        result = _drop_zero(balances)
        assert_zero_sum(result)
        return result

    def calculate_by_currency(
        self,
        splits: Sequence[ExpenseSplitFact],
        settlements: Sequence[Settlement],
    ) -> dict[str, dict[str, int]]:
        currencies = sorted({split.currency for split in splits} | {s.currency for s in settlements})
        return {
            currency: self.calculate(
                [split for split in splits if split.currency == currency],
                [s for s in settlements if s.currency == currency],
                currency,
            )
            for currency in currencies
        }

    def to_balances(self, group_id: str, currency: str, balances: Mapping[str, int]) -> list[Balance]:
        return [
            Balance(user_id=user_id, group_id=group_id, currency=currency, net_amount=amount)
            for user_id, amount in sorted(balances.items())
        ]


def net_debts(debts: Iterable[tuple[str, str, int]]) -> dict[str, int]:
    """Collapse pairwise ``(debtor, creditor, amount)`` debts into net balances."""
    balances: dict[str, int] = {}
    for debtor, creditor, amount in debts:
        _add(balances, debtor, -amount)
        _add(balances, creditor, amount)
    return _drop_zero(balances)
