from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from xlsx_filter.config.loader import ConfigError, ConfigSource
from xlsx_filter.excel.reader import WorkbookReadError, read_directory
from xlsx_filter.logging.init import log_summary, setup_logging
from xlsx_filter.models.config_models import ContextScope, PipelineConfig
from xlsx_filter.services.context_store import InMemoryContextStore, deep_get, deep_set
from xlsx_filter.services.orchestrator import DEFAULT_CONTEXT_KEY, BatchInputError, FilterNode
from xlsx_filter.services.summary import render_summary_line

"""CLI entrypoint.

Flow:
- Load .env (env-typed config values resolve against it)
- Load the config document (no --config: every field at its default)
- Read the batch: a JSON/YAML file holding ``{data: ...}`` or a directory of .xlsx files
- Run one batch, print (or write) the output object, log the SUMMARY line
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv; failures only warn."""
    try:
        if path.exists():
            load_dotenv(dotenv_path=path, override=override)
    except OSError as e:  # pragma: no cover
        logging.getLogger("xlsx_filter").warning("failed to load .env: %s", e)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="xlsx-filter", description="Filter / select / rename spreadsheet rows")
    p.add_argument("--config", help="config document (.json) relative to --root")
    p.add_argument("--root", default=".", help="directory config paths must stay under")
    p.add_argument("--input", required=True, help="batch file (.json/.yml/.yaml) or directory of .xlsx files")
    p.add_argument("--output", help="write the output object here instead of stdout")
    p.add_argument("--header-row", type=int, default=0, help="0-based header row for .xlsx input")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _read_batch(path: Path, header_row: int) -> Any:
    if path.is_dir():
        return read_directory(path, header_row)
    if not path.exists():
        raise BatchInputError(f"input not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except (UnicodeDecodeError, OSError) as e:
        raise BatchInputError(f"cannot read input: {e}") from e
    if path.suffix.lower() in (".yml", ".yaml"):
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise BatchInputError(f"invalid yaml: {e}") from e
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise BatchInputError(f"invalid json: {e}") from e


def _place_input(message: dict[str, Any], store: InMemoryContextStore, config: PipelineConfig, batch: Any) -> None:
    if config.input_scope is ContextScope.MSG:
        deep_set(message, config.input_path, batch)
    else:
        store.set(config.input_scope, config.input_path, batch)


def _collect_output(message: dict[str, Any], store: InMemoryContextStore, config: PipelineConfig) -> Any:
    path = config.output.path.strip()
    if config.output.target is ContextScope.MSG:
        return deep_get(message, path or "filtered")
    return store.get(config.output.target, path or DEFAULT_CONTEXT_KEY)


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None のときのみシステム引数を読む ([] はテストからの明示的な空引数)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        for h in logger.handlers:
            h.setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
        logger.debug("debug mode enabled")

    try:
        source = ConfigSource(args.config, root=args.root) if args.config else ConfigSource()
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    config = source()
    if args.config and not source.from_file:
        logger.error(f"config: could not load {args.config}")
        return EXIT_FATAL

    try:
        batch = _read_batch(Path(args.input), args.header_row)
    except (BatchInputError, WorkbookReadError) as e:
        logger.error(f"input: {e}")
        return EXIT_FATAL

    store = InMemoryContextStore()
    message: dict[str, Any] = {}
    _place_input(message, store, config, batch)

    node = FilterNode(lambda: config, store=store, flush_diagnostics=True)
    try:
        asyncio.run(node.handle(message))
    except BatchInputError as e:
        logger.error(f"processing: {e}")
        return EXIT_FATAL

    text = json.dumps(_collect_output(message, store, config), ensure_ascii=False, indent=2, default=str)
    if args.output:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
        logger.info(f"output written: {args.output}")
    else:
        print(text)

    if node.last_result is not None:
        log_summary(render_summary_line(node.last_result, node.diagnostics.total_reported))
    return EXIT_SUCCESS


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
