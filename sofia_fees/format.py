from decimal import Decimal, ROUND_HALF_UP, localcontext

WEI_PER_TRUST = 10 ** 18

_FOUR_PLACES = Decimal("0.0001")


def format_trust(value: int | None) -> str:
    """Wei -> TRUST string with at most 4 decimals, trailing zeros trimmed."""
    if value is None:
        return "0"
    with localcontext() as ctx:
        # uint256 has 78 digits; the default 28 would make quantize() fail
        ctx.prec = 100
        amount = (Decimal(int(value)) / WEI_PER_TRUST).quantize(_FOUR_PLACES, rounding=ROUND_HALF_UP)
        s = f"{amount:f}"
    s = s.rstrip("0").rstrip(".")
    return "0" if s in ("", "-0") else s


def wei_to_float(value: int) -> float:
    """Lossy conversion for charts only; never use for sums."""
    return int(value) / WEI_PER_TRUST
