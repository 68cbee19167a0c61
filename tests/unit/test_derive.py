from __future__ import annotations

import asyncio

from xlsx_filter.models.config_models import DeriveEntry, ValueKind
from xlsx_filter.services.derive import derive_row


def derive(resolver, row, entries, sheet="Sheet1", message=None):
    return asyncio.run(derive_row(resolver, row, entries, sheet, message or {}))


def test_adds_columns_from_expressions(resolver, evaluator):
    evaluator.scripts["row.Qty * row.Price"] = lambda ctx: ctx["row"]["Qty"] * ctx["row"]["Price"]
    evaluator.scripts["sheet"] = lambda ctx: ctx["sheet"]
    entries = [DeriveEntry("Total", "row.Qty * row.Price"), DeriveEntry("Source", "sheet")]
    out = derive(resolver, {"Qty": 2, "Price": 3}, entries, sheet="Orders")
    assert out == {"Qty": 2, "Price": 3, "Total": 6, "Source": "Orders"}


def test_expressions_see_incoming_row_only(resolver, evaluator):
    evaluator.scripts["a"] = 1
    evaluator.scripts["b"] = lambda ctx: "a" in ctx["row"]
    out = derive(resolver, {"x": 0}, [DeriveEntry("a", "a"), DeriveEntry("b", "b")])
    assert out["b"] is False


def test_overwrites_existing_column(resolver, evaluator):
    evaluator.scripts["99"] = 99
    assert derive(resolver, {"A": 1}, [DeriveEntry("A", "99")]) == {"A": 99}


def test_unevaluable_and_failing_entries_skipped(resolver, evaluator, diagnostics):
    entries = [
        DeriveEntry("", "anything"),
        DeriveEntry("Lit", "x", kind=ValueKind.STR),
        DeriveEntry("Bad", "missing("),
    ]
    out = derive(resolver, {"A": 1}, entries)
    assert out == {"A": 1}
    assert evaluator.expressions == ["missing("]
    assert len(diagnostics.records) == 1


def test_message_fields_in_context(resolver, evaluator):
    evaluator.scripts["batchId"] = lambda ctx: ctx["batchId"]
    assert derive(resolver, {}, [DeriveEntry("Batch", "batchId")], message={"batchId": "b-1"}) == {"Batch": "b-1"}
