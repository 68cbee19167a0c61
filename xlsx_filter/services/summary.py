from __future__ import annotations

from ..models.processing_result import FilterResult

"""Summary line rendering service.

Format:
SUMMARY files={n} sheets={n} rows_in={n} rows_out={n} ratio={r|n/a}
diagnostics={n} elapsed_sec={s}
(single line; the SUMMARY label itself is added by the log formatter)
"""


def _format_number(value: float) -> str:
    # Integers without decimals; very small numbers without scientific notation
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.4f}".rstrip("0").rstrip(".")


def render_summary_line(result: FilterResult, diagnostics: int = 0) -> str:
    """Render the summary line (without the SUMMARY label) for one batch.

    Examples:
        >>> from xlsx_filter.models import FilterLogic, RunSummary
        >>> result = FilterResult(data={}, summary=RunSummary(1, 1, 2, 1), logic=FilterLogic.AND, rule_count=1)
        >>> render_summary_line(result)
        'files=1 sheets=1 rows_in=2 rows_out=1 ratio=0.5 diagnostics=0 elapsed_sec=0'
    """
    summary = result.summary
    ratio = summary.filtered_ratio
    ratio_str = "n/a" if ratio is None else _format_number(ratio)
    return (
        f"files={summary.file_count} "
        f"sheets={summary.sheet_count} "
        f"rows_in={summary.row_in} "
        f"rows_out={summary.row_out} "
        f"ratio={ratio_str} "
        f"diagnostics={diagnostics} "
        f"elapsed_sec={_format_number(result.elapsed_seconds)}"
    )
