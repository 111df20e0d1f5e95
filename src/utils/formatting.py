from __future__ import annotations

from decimal import Decimal


def format_decimal(value: Decimal) -> str:
    quantized = value.normalize()
    # Avoid scientific notation for integers.
    if quantized == quantized.to_integral():
        return f"{quantized:.0f}"
    return format(quantized, "f")


def format_currency(value: Decimal) -> str:
    cents = value.quantize(Decimal("0.01"))
    return f"{cents:,.2f}"


def format_percent(value: Decimal) -> str:
    return f"{value.quantize(Decimal('0.01')):+.2f}%"


def render_table(headers: tuple[str, ...], rows: list[tuple[str, ...]]) -> str:
    """Left-align the first column, right-align the others."""
    widths = [max(len(header), max((len(row[idx]) for row in rows), default=0)) for idx, header in enumerate(headers)]

    def line(cells: tuple[str, ...]) -> str:
        first, *rest = cells
        parts = [f"{first:<{widths[0]}}"] + [f"{cell:>{width}}" for cell, width in zip(rest, widths[1:])]
        return " ".join(parts)

    header = line(headers)
    lines = [header, "-" * len(header)]
    lines.extend(line(row) for row in rows)
    lines.append("-" * len(header))
    return "\n".join(lines)
