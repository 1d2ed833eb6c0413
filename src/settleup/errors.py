from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from settleup.db.models import Settlement


GENERIC_SUGGESTION_FAILURE = "unable to compute settlement suggestions"


class SettlementError(Exception):
    pass


class UnbalancedLedger(SettlementError):
    """Net balances of one group and currency do not sum to zero.

    This is an upstream data bug. The message stays generic so that balance
    data never reaches the caller; details go to the log instead.
    """

    def __init__(self, imbalance: int = 0, nonzero_count: int = 0) -> None:
        super().__init__(GENERIC_SUGGESTION_FAILURE)
        self.imbalance = imbalance
        self.nonzero_count = nonzero_count


class CurrencyMismatch(SettlementError, ValueError):
    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"cannot net {actual} amounts into a {expected} ledger")
        self.expected = expected
        self.actual = actual


class ComputationTimeout(SettlementError):
    def __init__(self, algorithm: str, limit: int) -> None:
        super().__init__(f"{algorithm} exceeded {limit} iterations")
        self.algorithm = algorithm
        self.limit = limit


class UnknownAlgorithm(SettlementError, ValueError):
    pass


class InvalidSettlement(SettlementError, ValueError):
    pass


class SettlementNotFound(SettlementError, LookupError):
    def __init__(self, settlement_id: int) -> None:
        super().__init__(f"settlement {settlement_id} not found")
        self.settlement_id = settlement_id


class InvalidTransition(SettlementError):
    def __init__(self, settlement_id: int, current: str, target: str) -> None:
        super().__init__(f"settlement {settlement_id} cannot move from {current} to {target}")
        self.settlement_id = settlement_id
        self.current = current
        self.target = target


class AlreadyCompleted(SettlementError):
    """Completion was requested for a settlement that is already completed."""

    def __init__(self, settlement: Settlement) -> None:
        super().__init__(f"settlement {settlement.id} is already completed")
        self.settlement = settlement


class ConcurrentModification(SettlementError):
    def __init__(self, settlement_id: int, attempts: int) -> None:
        super().__init__(f"settlement {settlement_id} changed concurrently ({attempts} attempts)")
        self.settlement_id = settlement_id
        self.attempts = attempts
