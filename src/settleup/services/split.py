from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Iterable, Mapping, Sequence

from settleup.db.models import ExpenseSplitFact


class SplitMethod(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    SHARE = "share"
    EQUAL = "equal"


# Fixed amounts are taken first, each later method divides what is left.
SPLIT_ORDER = (SplitMethod.FIXED, SplitMethod.PERCENTAGE, SplitMethod.SHARE, SplitMethod.EQUAL)


class InvalidSplit(ValueError):
    pass


@dataclass(slots=True)
class SplitSpec:
    user_id: str
    method: SplitMethod = SplitMethod.EQUAL
    amount: int = 0
    percentage: Decimal = Decimal("0")
    shares: int = 0


def _floor(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_DOWN))


def assign_remainder(shares: dict[str, int], remainder: int) -> dict[str, int]:
    """Give a rounding remainder to the share with the largest magnitude.

    Ties go to the smallest user id so the result does not depend on input order.
    """
    if remainder == 0 or not shares:
        return shares
    target = min(shares, key=lambda user_id: (-abs(shares[user_id]), user_id))
    shares[target] += remainder
    return shares


def split_amount(amount: int, consumers: Sequence[str]) -> dict[str, int]:
    if amount < 0:
        raise InvalidSplit("amount must be non-negative")
    if not consumers:
        raise InvalidSplit("consumers must not be empty")

    base_share = amount // len(consumers)
    shares = {consumer: base_share for consumer in consumers}
    return assign_remainder(shares, amount - base_share * len(consumers))


def _split_weighted(amount: int, weights: Mapping[str, Decimal]) -> dict[str, int]:
    total_weight = sum(weights.values(), Decimal("0"))
    shares = {
        user_id: _floor(Decimal(amount) * weight / total_weight)
        for user_id, weight in weights.items()
    }
    return assign_remainder(shares, amount - sum(shares.values()))


def _validate(amount: int, specs: Sequence[SplitSpec]) -> None:
    if amount <= 0:
        raise InvalidSplit("expense amount must be positive")
    if not specs:
        raise InvalidSplit("no splits provided")
    user_ids = [spec.user_id for spec in specs]
    if len(user_ids) != len(set(user_ids)):
        raise InvalidSplit("duplicate users in splits")


def split_expense(amount: int, specs: Sequence[SplitSpec]) -> dict[str, int]:
    _validate(amount, specs)

    by_method: dict[SplitMethod, list[SplitSpec]] = {}
    for spec in specs:
        by_method.setdefault(spec.method, []).append(spec)

    result: dict[str, int] = {}
    remaining = amount

    for method in SPLIT_ORDER:
        group = by_method.get(method)
        if not group:
            continue

        if method is SplitMethod.FIXED:
            for spec in group:
                if spec.amount <= 0:
                    raise InvalidSplit(f"invalid fixed amount for user {spec.user_id}")
            part = {spec.user_id: spec.amount for spec in group}
        elif method is SplitMethod.PERCENTAGE:
            if any(spec.percentage <= 0 for spec in group):
                raise InvalidSplit("percentages must be positive")
            if sum((spec.percentage for spec in group), Decimal("0")) != Decimal("100"):
                raise InvalidSplit("percentage splits must total 100%")
            part = _split_weighted(remaining, {spec.user_id: spec.percentage for spec in group})
        elif method is SplitMethod.SHARE:
            if any(spec.shares <= 0 for spec in group):
                raise InvalidSplit("shares must be positive")
            part = _split_weighted(remaining, {spec.user_id: Decimal(spec.shares) for spec in group})
        else:
            part = split_amount(remaining, [spec.user_id for spec in group])

        remaining -= sum(part.values())
        if remaining < 0:
            raise InvalidSplit(f"{method.value} splits exceed the expense amount")
        result.update(part)

    # Whatever is left (fixed-only splits that undershoot) lands on the largest share.
    return assign_remainder(result, remaining)


def merge_shares(shares: Iterable[Mapping[str, int]]) -> dict[str, int]:
    result: dict[str, int] = {}
    for share in shares:
        for user_id, amount in share.items():
            result[user_id] = result.get(user_id, 0) + amount
    return result


def to_split_facts(payer_id: str, shares: Mapping[str, int], currency: str) -> list[ExpenseSplitFact]:
    return [
        ExpenseSplitFact(payer_id=payer_id, participant_id=user_id, owed_amount=amount, currency=currency)
        for user_id, amount in shares.items()
    ]
