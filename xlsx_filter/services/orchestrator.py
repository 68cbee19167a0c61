from __future__ import annotations

import asyncio
import logging
import ntpath
import time
from collections.abc import Callable, Mapping, MutableMapping, Sequence
from typing import Any

from ..logging.error_log import DiagnosticBuffer
from ..models.config_models import ContextScope, OutputSpec, OutputStructure, PipelineConfig, SelectMode
from ..models.error_record import INPUT_ERROR
from ..models.processing_result import FileStat, FilterResult, RunSummary
from .context_store import ContextStore, InMemoryContextStore, deep_get, deep_set
from .derive import derive_row
from .expression import ExpressionEvaluator, JsonataEvaluator
from .progress import ProgressTracker
from .rename import condition_true, rename_row
from .resolver import DynamicResolver
from .rules import row_passes
from .scope import SheetNameFilter
from .select import apply_select, build_column_set

"""Service orchestration for the xlsx filter pipeline.

process_batch() runs one batch (``{data: {file: {sheet: rows}}}``) through:

    filter -> select -> static rename -> conditional rename -> derive

per sheet, per file, and accumulates the run counters. FilterNode wraps it with
input/output plumbing, config loading at batch start and batch serialisation.
Everything is awaited strictly in row order; nothing runs in parallel.
"""

__all__ = [
    "BatchInputError",
    "FilterNode",
    "LOCK_FILE_PREFIX",
    "DEFAULT_CONTEXT_KEY",
    "is_lock_file",
    "process_batch",
    "read_input",
    "write_output",
]

logger = logging.getLogger(__name__)

# Office lock files (~$Book1.xlsx) are never processed
LOCK_FILE_PREFIX = "~$"
# flow/global 出力でパス未指定の場合のキー
DEFAULT_CONTEXT_KEY = "xlsxFilter"


class BatchInputError(Exception):
    """Fatal input problem: the whole invocation fails, no output is written."""


def is_lock_file(file_name: Any) -> bool:
    # ntpath.basename splits on both "/" and "\\" (workbooks often come from Windows hosts)
    return ntpath.basename(str(file_name or "")).startswith(LOCK_FILE_PREFIX)


def _require_data_map(input_obj: Any) -> Mapping[str, Any]:
    data = input_obj.get("data") if isinstance(input_obj, Mapping) else None
    if not isinstance(data, Mapping):
        raise BatchInputError(
            "Input missing or invalid. Expect an object with a 'data' map under the configured path."
        )
    return data


async def _transform_sheet(
    resolver: DynamicResolver,
    config: PipelineConfig,
    rows: Sequence[Mapping[str, Any]],
    sheet: str,
    message: Mapping[str, Any] | None,
    conditional_rename: bool,
) -> list[dict[str, Any]]:
    # 1) row filters
    filtered: list[Mapping[str, Any]] = []
    for row in rows:
        if await row_passes(resolver, config.rules, config.filter_logic, row, sheet, message):
            filtered.append(row)

    # 2a) select keep/drop FIRST, against the original headers
    transformed = [dict(r) for r in filtered]
    if config.select_mode is not SelectMode.NONE and config.select_list:
        columns = await build_column_set(resolver, config.select_list, sheet, message)
        transformed = apply_select(transformed, config.select_mode, columns)

    # 2b) static rename
    if config.rename_list:
        renamed = []
        for r in transformed:
            renamed.append(await rename_row(resolver, r, config.rename_list, sheet, message))
        transformed = renamed

    # 2c) conditional rename (gate evaluated once per batch by the caller)
    if conditional_rename:
        renamed = []
        for r in transformed:
            renamed.append(
                await rename_row(resolver, r, config.conditional_rename.entries, sheet, message)
            )
        transformed = renamed

    # 2d) derived columns
    if config.derive_list:
        derived = []
        for r in transformed:
            derived.append(await derive_row(resolver, r, config.derive_list, sheet, message))
        transformed = derived

    return transformed


def _valid_rows(
    rows: Sequence[Any],
    file_name: str,
    sheet: str,
    diagnostics: DiagnosticBuffer | None,
) -> list[Mapping[str, Any]]:
    valid = []
    for idx, row in enumerate(rows):
        if isinstance(row, Mapping):
            valid.append(row)
        elif diagnostics is not None:
            diagnostics.report(
                INPUT_ERROR,
                f"row is not an object ({type(row).__name__}); dropped",
                file=file_name,
                sheet=sheet,
                row=idx,
            )
    return valid


async def process_batch(
    input_obj: Any,
    config: PipelineConfig,
    resolver: DynamicResolver,
    message: Mapping[str, Any] | None = None,
) -> FilterResult:
    """Run one batch through the pipeline.

    Args:
        input_obj: object holding the ``data`` map (file -> sheet -> rows)
        config: fully-defaulted pipeline configuration
        resolver: resolver bound to this batch's evaluator/store/diagnostics
        message: batch message used for msg lookups and expression context

    Returns:
        FilterResult with the restructured data and counters

    Raises:
        BatchInputError: when ``data`` is missing or not a mapping
    """
    start = time.perf_counter()
    data = _require_data_map(input_obj)
    diagnostics = resolver.diagnostics

    name_filter = SheetNameFilter.compile(
        config.include_sheet_regex, config.exclude_sheet_regex, diagnostics
    )
    cond = config.conditional_rename
    conditional_rename = cond.enabled and await condition_true(resolver, cond, message)
    logger.debug("conditional rename active=%s", conditional_rename)

    hierarchical: dict[str, dict[str, list[dict[str, Any]]]] = {}
    flat: list[dict[str, Any]] = []
    file_stats: list[FileStat] = []
    file_count = sheet_count = row_in = row_out = 0

    with ProgressTracker(len(data), description="Filtering files") as progress:
        for file_name, sheets in data.items():
            file_name = str(file_name)
            if is_lock_file(file_name):
                logger.debug("skip lock file %s", file_name)
                continue

            progress.start_file(file_name)
            resolver.bind_file(file_name)
            file_count += 1
            f_sheets = f_in = f_out = 0

            if not isinstance(sheets, Mapping):
                if sheets is not None and diagnostics is not None:
                    diagnostics.report(INPUT_ERROR, "sheet map is not an object; skipped", file=file_name)
                sheets = {}

            for sheet_name, rows in sheets.items():
                sheet = str(sheet_name)
                if not name_filter.passes(sheet):
                    continue
                sheet_count += 1
                f_sheets += 1
                if not isinstance(rows, (list, tuple)):
                    continue
                row_in += len(rows)
                f_in += len(rows)

                valid = _valid_rows(rows, file_name, sheet, diagnostics)
                transformed = await _transform_sheet(
                    resolver, config, valid, sheet, message, conditional_rename
                )
                row_out += len(transformed)
                f_out += len(transformed)
                logger.debug(
                    "file=%s sheet=%s rows_in=%d rows_out=%d", file_name, sheet, len(rows), len(transformed)
                )

                if config.output.structure is OutputStructure.HIERARCHICAL:
                    hierarchical.setdefault(file_name, {})[sheet] = transformed
                else:
                    flat.extend({"_file": file_name, "_sheet": sheet, **r} for r in transformed)

            file_stats.append(FileStat(file_name=file_name, sheet_count=f_sheets, row_in=f_in, row_out=f_out))
            progress.set_postfix(rows_in=row_in, rows_out=row_out)
            progress.finish_file()

    return FilterResult(
        data=hierarchical if config.output.structure is OutputStructure.HIERARCHICAL else flat,
        summary=RunSummary(
            file_count=file_count, sheet_count=sheet_count, row_in=row_in, row_out=row_out
        ),
        logic=config.filter_logic,
        rule_count=len(config.rules),
        include_summary=config.output.include_summary,
        elapsed_seconds=time.perf_counter() - start,
        file_stats=file_stats,
    )


def read_input(message: Mapping[str, Any], store: ContextStore, config: PipelineConfig) -> Any:
    """Locate the batch object at the configured input scope/path."""
    if config.input_scope is ContextScope.MSG:
        return deep_get(message, config.input_path)
    return store.get(config.input_scope, config.input_path)


def write_output(
    message: MutableMapping[str, Any],
    store: ContextStore,
    value: Any,
    output: OutputSpec,
) -> None:
    """Write the output object to the configured target.

    msg targets default to ``filtered``; flow/global targets default to the
    ``xlsxFilter`` key and merge dotted paths into the existing root object.
    """
    path = (output.path or "").strip()
    if output.target is ContextScope.MSG:
        deep_set(message, path or "filtered", value)
        return
    store.set(output.target, path or DEFAULT_CONTEXT_KEY, value)


class FilterNode:
    """One configured filter: loads config per batch and serialises batches.

    Args:
        config_provider: called at the start of every batch (see ConfigSource)
        evaluator: expression service, JsonataEvaluator by default
        store: flow/global store shared across batches
        diagnostics: diagnostic channel shared across batches
        flush_diagnostics: write buffered diagnostics to disk after each batch;
            otherwise the buffer holds the most recent batch only
    """

    def __init__(
        self,
        config_provider: Callable[[], PipelineConfig],
        *,
        evaluator: ExpressionEvaluator | None = None,
        store: ContextStore | None = None,
        diagnostics: DiagnosticBuffer | None = None,
        environ: Mapping[str, str] | None = None,
        flush_diagnostics: bool = False,
    ) -> None:
        self._config_provider = config_provider
        self.evaluator = evaluator if evaluator is not None else JsonataEvaluator()
        self.store = store if store is not None else InMemoryContextStore()
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticBuffer()
        self.environ = environ
        self.flush_diagnostics = flush_diagnostics
        self.status = "idle"
        self.last_result: FilterResult | None = None
        self._lock = asyncio.Lock()

    async def handle(self, message: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
        """Process one message; the output object is written before returning.

        Raises:
            BatchInputError: when the input object is malformed (nothing is written)
        """
        async with self._lock:
            self.status = "processing"
            if not self.flush_diagnostics:
                # keep only the current batch in memory
                self.diagnostics.clear()
            config = self._config_provider()
            resolver = DynamicResolver(self.evaluator, self.store, self.diagnostics, self.environ)
            try:
                result = await process_batch(
                    read_input(message, self.store, config), config, resolver, message
                )
            except BatchInputError as e:
                self.status = f"error: {e}"
                self.diagnostics.report(INPUT_ERROR, str(e))
                logger.error("batch failed: %s", e)
                raise
            finally:
                if self.flush_diagnostics:
                    self.diagnostics.flush()

            write_output(message, self.store, result.to_output(), config.output)
            self.last_result = result
            self.status = f"{result.summary.row_out}/{result.summary.row_in} rows"
            logger.info(
                "batch done files=%d sheets=%d rows=%s",
                result.summary.file_count,
                result.summary.sheet_count,
                self.status,
            )
            return message
