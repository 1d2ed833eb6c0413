from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from settleup.db.models import SettlementSuggestion
from settleup.logging import get_logger
from settleup.services.settlement import ALGORITHMS, AlgorithmOptions, friend_weight_index


@dataclass(slots=True, frozen=True)
class AlgorithmRun:
    name: str
    transaction_count: int
    total_amount: int
    average_amount: float
    friendship_utilization: float
    elapsed_ms: float


@dataclass(slots=True)
class ComparisonReport:
    group_id: str
    currency: str
    expected_total: int
    runs: list[AlgorithmRun] = field(default_factory=list)

    @property
    def totals_agree(self) -> bool:
        return all(run.total_amount == self.expected_total for run in self.runs)

    def best(self) -> Optional[AlgorithmRun]:
        if not self.runs:
            return None
        return min(self.runs, key=lambda run: (run.transaction_count, run.elapsed_ms))


def friendship_utilization(
    transactions: Sequence[SettlementSuggestion], weights: Mapping[frozenset[str], float]
) -> float:
    """Mean friend weight over the suggested payments; pairs without a weight count as 0."""
    if not transactions or not weights:
        return 0.0
    score = sum(weights.get(frozenset((t.payer_id, t.receiver_id)), 0.0) for t in transactions)
    return score / len(transactions)


def compare_algorithms(
    balances: Mapping[str, int],
    options: Optional[AlgorithmOptions] = None,
    group_id: str = "",
) -> ComparisonReport:
    options = options or AlgorithmOptions()
    log = get_logger(__name__)
    weights = friend_weight_index(options.friend_weights)
    report = ComparisonReport(
        group_id=group_id,
        currency=options.currency,
        expected_total=sum(amount for amount in balances.values() if amount > 0),
    )

    for name, strategy in ALGORITHMS.items():
        started = time.perf_counter()
        transactions = strategy(balances, options)
        elapsed_ms = (time.perf_counter() - started) * 1000
        total = sum(t.amount for t in transactions)
        report.runs.append(
            AlgorithmRun(
                name=name,
                transaction_count=len(transactions),
                total_amount=total,
                average_amount=total / len(transactions) if transactions else 0.0,
                friendship_utilization=friendship_utilization(transactions, weights),
                elapsed_ms=elapsed_ms,
            )
        )

    if not report.totals_agree:
        log.error(
            "comparison.totals_disagree",
            group_id=group_id,
            currency=options.currency,
            totals={run.name: run.total_amount for run in report.runs},
        )
    log.info(
        "comparison.done",
        group_id=group_id,
        currency=options.currency,
        counts={run.name: run.transaction_count for run in report.runs},
    )
    return report
