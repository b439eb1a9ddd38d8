from __future__ import annotations

from ..models.processing_result import ImportResult

"""SUMMARY line rendering.

Format::

    SUMMARY source={source} status={ok|failed} units={completed}/{total}
    succeeded={n} failed={n} skipped={n} rows={n} batches={n}
    elapsed_sec={elapsed} throughput_ups={throughput}

(one line; wrapped here for readability)
"""

__all__ = [
    "render_summary_line",
    "format_number",
]


def format_number(value: float) -> str:
    """Integral values without decimals, tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return f"{value:.3f}".rstrip('0').rstrip('.')


def render_summary_line(result: ImportResult) -> str:
    """Render the SUMMARY line of one run.

    Examples:
        >>> from datetime import datetime, timezone
        >>> start = datetime(2023, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        >>> end = datetime(2023, 1, 1, 10, 0, 2, tzinfo=timezone.utc)
        >>> result = ImportResult(
        ...     source="a.xlsx", status="ok", stage="FINALIZED", total_units=10,
        ...     succeeded=10, failed=0, skipped=0, rows=10, start_time=start,
        ...     end_time=end, elapsed_seconds=2.0, throughput_units_per_sec=5.0,
        ... )
        >>> render_summary_line(result)  # doctest: +ELLIPSIS
        'SUMMARY source=a.xlsx status=ok units=10/10 succeeded=10 failed=0 ...'
    """
    completed = result.succeeded + result.failed
    return (
        f"SUMMARY source={result.source} "
        f"status={result.status} "
        f"units={completed}/{result.total_units} "
        f"succeeded={result.succeeded} "
        f"failed={result.failed} "
        f"skipped={result.skipped} "
        f"rows={result.rows} "
        f"batches={result.total_batches} "
        f"elapsed_sec={format_number(result.elapsed_seconds)} "
        f"throughput_ups={format_number(result.throughput_units_per_sec)}"
    )
