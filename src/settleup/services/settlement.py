"""Settlement strategies.

Every strategy turns a zero-summed balance map (user id -> minor units,
positive = is owed, negative = owes) into an ordered list of payments that
drives all balances to zero when applied in order.

None of the strategies solve the minimum-transaction problem exactly; that is
NP-hard. They are fast, deterministic approximations that never need more
than ``n - 1`` payments for ``n`` non-zero balances, because every payment
settles at least one side completely.

Tie-break rule shared by all strategies: among equal magnitudes the smallest
user id goes first. With that rule ``min_cash_flow`` and ``greedy`` produce
identical output; they differ only in how the next pair is found.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Protocol, Sequence

from settleup.db.models import FriendWeight, SettlementSuggestion
from settleup.errors import ComputationTimeout, UnbalancedLedger, UnknownAlgorithm
from settleup.logging import get_logger
from settleup.services.balances import assert_zero_sum

MIN_CASH_FLOW = "min_cash_flow"
GREEDY = "greedy"
FRIEND_PREFERENCE = "friend_preference"


@dataclass(slots=True)
class AlgorithmOptions:
    currency: str = ""
    friend_weights: Sequence[FriendWeight] = field(default_factory=tuple)
    friend_weight_threshold: float = 0.0


class Strategy(Protocol):
    def __call__(
        self, balances: Mapping[str, int], options: Optional[AlgorithmOptions] = None
    ) -> list[SettlementSuggestion]: ...


def _prepare(balances: Mapping[str, int]) -> dict[str, int]:
    remaining = {user_id: amount for user_id, amount in balances.items() if amount != 0}
    if len(remaining) == 1:
        raise UnbalancedLedger(imbalance=sum(remaining.values()), nonzero_count=1)
    assert_zero_sum(remaining)
    return remaining


def _iteration_limit(remaining: Mapping[str, int]) -> int:
    return max(len(remaining) - 1, 0)


def _settle_pair(
    remaining: dict[str, int],
    debtor: str,
    creditor: str,
    currency: str,
) -> SettlementSuggestion:
    amount = min(-remaining[debtor], remaining[creditor])
    remaining[debtor] += amount
    remaining[creditor] -= amount
    for user_id in (debtor, creditor):
        if remaining[user_id] == 0:
            del remaining[user_id]
    return SettlementSuggestion(payer_id=debtor, receiver_id=creditor, amount=amount, currency=currency)


def min_cash_flow(
    balances: Mapping[str, int], options: Optional[AlgorithmOptions] = None
) -> list[SettlementSuggestion]:
    """Repeatedly settle the largest debtor against the largest creditor.

    The classic formulation recurses once per payment; this one is a loop
    capped at ``n - 1`` rounds.
    """
    options = options or AlgorithmOptions()
    remaining = _prepare(balances)
    limit = _iteration_limit(remaining)
    transactions: list[SettlementSuggestion] = []

    for _ in range(limit):
        if not remaining:
            break
        debtor = min(remaining, key=lambda user_id: (remaining[user_id], user_id))
        creditor = min(remaining, key=lambda user_id: (-remaining[user_id], user_id))
        transactions.append(_settle_pair(remaining, debtor, creditor, options.currency))

    if remaining:
        raise ComputationTimeout(MIN_CASH_FLOW, limit)
    return transactions


def greedy(
    balances: Mapping[str, int], options: Optional[AlgorithmOptions] = None
) -> list[SettlementSuggestion]:
    options = options or AlgorithmOptions()
    remaining = _prepare(balances)
    limit = _iteration_limit(remaining)

    # heapq is a min-heap: creditors are stored negated, debtors already are.
    creditors = [(-amount, user_id) for user_id, amount in remaining.items() if amount > 0]
    debtors = [(amount, user_id) for user_id, amount in remaining.items() if amount < 0]
    heapq.heapify(creditors)
    heapq.heapify(debtors)

    transactions: list[SettlementSuggestion] = []
    while creditors and debtors:
        if len(transactions) >= limit:
            raise ComputationTimeout(GREEDY, limit)

        credit, creditor = heapq.heappop(creditors)
        debt, debtor = heapq.heappop(debtors)
        amount = min(-credit, -debt)
        transactions.append(
            SettlementSuggestion(payer_id=debtor, receiver_id=creditor, amount=amount, currency=options.currency)
        )

        if -credit > amount:
            heapq.heappush(creditors, (credit + amount, creditor))
        if -debt > amount:
            heapq.heappush(debtors, (debt + amount, debtor))

    return transactions


def friend_weight_index(weights: Iterable[FriendWeight]) -> dict[frozenset[str], float]:
    index: dict[frozenset[str], float] = {}
    for weight in weights:
        if weight.user_a == weight.user_b:
            continue
        key = frozenset((weight.user_a, weight.user_b))
        index[key] = max(index.get(key, weight.weight), weight.weight)
    return index


def friend_preference(
    balances: Mapping[str, int], options: Optional[AlgorithmOptions] = None
) -> list[SettlementSuggestion]:
    """Settle between frequent counterparties first, then run ``greedy``.

    Pairs whose friend weight is above the threshold are matched in descending
    weight order. This can cost extra payments compared to ``greedy`` but keeps
    money flowing between people who already pay each other.
    """
    options = options or AlgorithmOptions()
    remaining = _prepare(balances)
    weights = friend_weight_index(options.friend_weights)

    pairs: list[tuple[float, str, str]] = []
    if weights:
        debtors = sorted(user_id for user_id, amount in remaining.items() if amount < 0)
        creditors = sorted(user_id for user_id, amount in remaining.items() if amount > 0)
        for debtor in debtors:
            for creditor in creditors:
                weight = weights.get(frozenset((debtor, creditor)))
                if weight is not None and weight > options.friend_weight_threshold:
                    pairs.append((weight, debtor, creditor))
        pairs.sort(key=lambda pair: (-pair[0], pair[1], pair[2]))

    transactions: list[SettlementSuggestion] = []
    for _, debtor, creditor in pairs:
        if remaining.get(debtor, 0) < 0 and remaining.get(creditor, 0) > 0:
            transactions.append(_settle_pair(remaining, debtor, creditor, options.currency))

    transactions.extend(greedy(remaining, options))
    return transactions


ALGORITHMS: dict[str, Strategy] = {
    MIN_CASH_FLOW: min_cash_flow,
    GREEDY: greedy,
    FRIEND_PREFERENCE: friend_preference,
}


def get_algorithm(name: str) -> Strategy:
    try:
        return ALGORITHMS[name]
    except KeyError:
        raise UnknownAlgorithm(f"unknown settlement algorithm: {name}") from None


def run_algorithm(
    name: str,
    balances: Mapping[str, int],
    options: Optional[AlgorithmOptions] = None,
) -> tuple[list[SettlementSuggestion], str]:
    """Run a strategy by name, falling back to ``greedy`` if it overruns."""
    strategy = get_algorithm(name)
    try:
        return strategy(balances, options), name
    except ComputationTimeout as exc:
        if name == GREEDY:
            raise
        get_logger(__name__).warning(
            "settlement.algorithm.fallback",
            algorithm=name,
            fallback=GREEDY,
            limit=exc.limit,
        )
        return greedy(balances, options), GREEDY


def apply_suggestions(
    balances: Mapping[str, int], suggestions: Iterable[SettlementSuggestion]
) -> dict[str, int]:
    after = dict(balances)
    for suggestion in suggestions:
        after[suggestion.payer_id] = after.get(suggestion.payer_id, 0) + suggestion.amount
        after[suggestion.receiver_id] = after.get(suggestion.receiver_id, 0) - suggestion.amount
    return after
