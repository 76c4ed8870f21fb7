from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def ratio_percent(done: int | Decimal, total: int | Decimal) -> Decimal:
    """Exact ``done / total`` as a percentage, capped at 100. Zero when there is no total."""
    if total <= 0:
        return ZERO
    return min(Decimal(done) / Decimal(total) * HUNDRED, HUNDRED)


def to_whole_percent(value: float | Decimal) -> int:
    """Round half up and clamp to 0..100, the form cached on aggregates."""
    rounded = Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(rounded)))


def to_display_percent(value: Decimal) -> float:
    """One decimal place, for results shown to learners. Never cached."""
    return float(value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def fraction_percent(done: int, total: int) -> int:
    return to_whole_percent(ratio_percent(done, total))
