# Overview: Integer-cent money helpers shared by billing and settlement.

"""
All amounts are integer cents. Floats never touch stored money.

Proportional splits use the largest-remainder method: every share is floored,
then the cents left over go to the shares with the largest fractional parts
(ties broken by position). The shares always sum to the amount being split.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP


def allocate_proportionally(weights: list[int], total_cents: int) -> list[int]:
    """
    Split total_cents across weights in proportion to each weight.

        >>> allocate_proportionally([10000, 30000], 40000)
        [10000, 30000]
        >>> allocate_proportionally([100, 100, 100], 100)
        [34, 33, 33]

    Zero total weight falls back to an even split so the sum still matches.
    """
    if not weights:
        return []
    if total_cents < 0:
        raise ValueError("total_cents must be >= 0")
    if any(w < 0 for w in weights):
        raise ValueError("weights must be >= 0")

    total_weight = sum(weights)
    if total_weight == 0:
        weights = [1] * len(weights)
        total_weight = len(weights)

    # Exact integer arithmetic: floor share and remainder numerator per weight
    floors = []
    residuals = []
    for idx, weight in enumerate(weights):
        share, residual = divmod(weight * total_cents, total_weight)
        floors.append(share)
        residuals.append((residual, idx))

    leftover = total_cents - sum(floors)
    residuals.sort(key=lambda r: (-r[0], r[1]))
    for residual_idx in range(leftover):
        _, idx = residuals[residual_idx]
        floors[idx] += 1

    return floors


def percentage_of(amount_cents: int, percent) -> int:
    """Percent of an amount, rounded to the nearest cent (half-up)."""
    value = Decimal(amount_cents) * Decimal(str(percent)) / Decimal(100)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def clamp_discount(subtotal_cents: int, discount_cents: int) -> int:
    """Discount that can actually apply: never below zero, never above the subtotal."""
    return max(0, min(discount_cents, subtotal_cents))
