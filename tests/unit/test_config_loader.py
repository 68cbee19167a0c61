from __future__ import annotations
import json
import logging
import os
from pathlib import Path

import pytest

from xlsx_filter.config.loader import (
    ConfigError,
    ConfigSource,
    build_pipeline_config,
    create_template,
    load_config_document,
    load_pipeline_config,
    make_template,
    resolve_safe_path,
    save_config_document,
    schema_warnings,
    with_defaults,
)
from xlsx_filter.models.config_models import (
    Comparator,
    ContextScope,
    FilterLogic,
    OutputStructure,
    PipelineConfig,
    SelectMode,
    ValueKind,
)


def test_with_defaults_empty_schema():
    s = with_defaults(None)
    assert s["inputPath"] == "data"
    assert s["inputPathType"] == "msg"
    assert s["filterLogic"] == "AND"
    assert s["rules"] == [] and s["selectList"] == [] and s["renameList"] == [] and s["deriveList"] == []
    assert s["selectMode"] == "none"
    assert s["conditionalRename"]["enabled"] is False
    assert s["output"] == {
        "targetType": "msg",
        "targetPath": "filtered",
        "structure": "hierarchical",
        "includeSummary": True,
    }


def test_with_defaults_keeps_given_values():
    s = with_defaults({"filterLogic": "OR", "output": {"structure": "flat"}})
    assert s["filterLogic"] == "OR"
    assert s["output"]["structure"] == "flat"
    assert s["output"]["targetPath"] == "filtered"


def test_build_pipeline_config_empty_is_pass_through():
    assert build_pipeline_config({}) == PipelineConfig()


def test_build_pipeline_config_full(sample_schema):
    cfg = build_pipeline_config(sample_schema)
    assert cfg.filter_logic is FilterLogic.AND
    (r,) = cfg.rules
    assert r.op is Comparator.GTE
    assert r.column.value == "Amount" and r.column.kind is ValueKind.STR
    assert r.case_sensitive is False and r.coerce is True
    assert cfg.select_mode is SelectMode.DROP
    assert cfg.select_list[0].column.value == "Internal"
    assert cfg.rename_list[0].source.value == "Amount"
    assert cfg.rename_list[0].target.value == "amount"
    assert cfg.output.structure is OutputStructure.HIERARCHICAL


def test_build_pipeline_config_tolerates_malformed_fields(caplog):
    schema = {
        "filterLogic": "XOR",
        "rules": [
            "not-an-object",
            {"col": "A", "colType": "bogus", "op": "~~", "rhs": 1, "coerce": False, "caseSensitive": True},
        ],
        "selectMode": "everything",
        "inputPathType": "elsewhere",
        "deriveList": [{"col": "X", "expr": "1"}],
        "output": {"structure": "tree", "includeSummary": False},
    }
    with caplog.at_level(logging.WARNING, logger="xlsx_filter"):
        cfg = build_pipeline_config(schema)
    assert cfg.filter_logic is FilterLogic.AND
    (r,) = cfg.rules
    assert r.column.kind is ValueKind.STR
    assert r.op is None
    assert r.coerce is False and r.case_sensitive is True
    assert cfg.select_mode is SelectMode.NONE
    assert cfg.input_scope is ContextScope.MSG
    assert cfg.derive_list[0].kind is ValueKind.JSONATA
    assert cfg.output.structure is OutputStructure.FLAT
    assert cfg.output.include_summary is False
    assert "rules[0] is not an object" in caplog.text


def test_schema_warnings_lists_field_paths():
    warnings = schema_warnings({"filterLogic": "XOR", "rules": [{"op": "~~"}]})
    assert any(w.startswith("filterLogic:") for w in warnings)
    assert any(w.startswith("rules.0.op:") for w in warnings)
    assert schema_warnings({}) == []


def test_conditional_rename_parsed():
    cfg = build_pipeline_config({
        "conditionalRename": {
            "enabled": True,
            "whenLhs": "meta.kind",
            "op": "==",
            "rhs": "legacy",
            "list": [{"from": "Old", "to": "New"}],
        }
    })
    cr = cfg.conditional_rename
    assert cr.enabled is True
    assert cr.lhs.kind is ValueKind.MSG and cr.lhs.value == "meta.kind"
    assert cr.entries[0].target.value == "New"


class TestSafePath:
    def test_relative_path_under_root(self, tmp_path: Path):
        assert resolve_safe_path("cfg/a.json", tmp_path) == (tmp_path / "cfg" / "a.json").resolve()

    @pytest.mark.parametrize("raw", ["", None, "../escape.json", "cfg/a.yaml"])
    def test_rejected(self, tmp_path: Path, raw):
        with pytest.raises(ConfigError):
            resolve_safe_path(raw, tmp_path)

    def test_absolute_outside_root_rejected(self, tmp_path: Path):
        with pytest.raises(ConfigError):
            resolve_safe_path(str(tmp_path.parent / "x.json"), tmp_path)

    def test_defaults_to_cwd(self, temp_workdir: Path):
        assert resolve_safe_path("config/filter.json") == (temp_workdir / "config" / "filter.json").resolve()


class TestDocumentIO:
    def test_load_document(self, write_config: Path):
        doc = load_config_document(write_config)
        assert doc["version"] == 1
        assert doc["schema"]["filterLogic"] == "AND"

    def test_load_missing(self, temp_workdir: Path):
        with pytest.raises(ConfigError):
            load_config_document(temp_workdir / "config" / "missing.json")

    def test_load_invalid_json(self, temp_workdir: Path):
        p = temp_workdir / "config" / "bad.json"
        p.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError) as e:
            load_config_document(p)
        assert "invalid json" in str(e.value)

    def test_load_non_utf8_bytes(self, temp_workdir: Path):
        p = temp_workdir / "config" / "bad.json"
        p.write_bytes(b'{"schema": {"x": "\xff\xfe"}}')
        with pytest.raises(ConfigError) as e:
            load_config_document(p)
        assert "cannot read config file" in str(e.value)

    def test_envelope_violation(self, temp_workdir: Path):
        p = temp_workdir / "config" / "bad.json"
        p.write_text(json.dumps({"version": 1, "schema": []}), encoding="utf-8")
        with pytest.raises(ConfigError) as e:
            load_config_document(p)
        assert "config validation failed" in str(e.value)

    def test_load_pipeline_config(self, write_config: Path, temp_workdir: Path):
        cfg = load_pipeline_config("config/filter.json", temp_workdir)
        assert cfg.rules[0].rhs.value == "8"

    def test_save_stamps_updated_at(self, temp_workdir: Path):
        path = save_config_document("config/new/saved.json", {"version": 1, "schema": {}}, temp_workdir)
        doc = json.loads(path.read_text(encoding="utf-8"))
        assert doc["updatedAt"].endswith("Z")
        assert doc["schema"] == {}

    def test_save_requires_object(self, temp_workdir: Path):
        with pytest.raises(ConfigError):
            save_config_document("config/x.json", ["nope"], temp_workdir)

    def test_template(self, temp_workdir: Path):
        assert make_template()["schema"] == with_defaults({})
        path, template = create_template("config/tpl.json", temp_workdir)
        assert json.loads(path.read_text(encoding="utf-8")) == template
        assert template["version"] == 1
        with pytest.raises(ConfigError):
            create_template("config/tpl.json", temp_workdir)


class TestConfigSource:
    def test_embedded_only(self):
        source = ConfigSource(embedded={"filterLogic": "OR"})
        assert source().filter_logic is FilterLogic.OR
        assert source.from_file is False

    def test_file_wins_over_embedded(self, write_config: Path, temp_workdir: Path):
        source = ConfigSource("config/filter.json", root=temp_workdir, embedded={"filterLogic": "OR"})
        cfg = source()
        assert cfg.filter_logic is FilterLogic.AND
        assert len(cfg.rules) == 1
        assert source.from_file is True

    def test_unreadable_file_falls_back(self, temp_workdir: Path):
        source = ConfigSource("config/missing.json", root=temp_workdir, embedded={"filterLogic": "OR"})
        assert source().filter_logic is FilterLogic.OR
        assert source.from_file is False

    def test_undecodable_file_falls_back(self, temp_workdir: Path):
        (temp_workdir / "config" / "bad.json").write_bytes(b'{"schema": {"x": "\xff\xfe"}}')
        source = ConfigSource("config/bad.json", root=temp_workdir, embedded={"filterLogic": "OR"})
        assert source().filter_logic is FilterLogic.OR
        assert source.from_file is False

    def test_bad_path_rejected_up_front(self, temp_workdir: Path):
        with pytest.raises(ConfigError):
            ConfigSource("../x.json", root=temp_workdir)

    def _rewrite(self, path: Path, schema: dict, mtime: float) -> None:
        path.write_text(json.dumps({"version": 1, "schema": schema}), encoding="utf-8")
        os.utime(path, (mtime, mtime))

    def test_watch_reloads_after_debounce(self, temp_workdir: Path):
        path = temp_workdir / "config" / "w.json"
        self._rewrite(path, {"filterLogic": "AND"}, 1000.0)
        now = [1000.0]
        source = ConfigSource("config/w.json", root=temp_workdir, watch=True, debounce_seconds=5, clock=lambda: now[0])
        assert source().filter_logic is FilterLogic.AND

        self._rewrite(path, {"filterLogic": "OR"}, 2000.0)
        now[0] = 2001.0
        assert source().filter_logic is FilterLogic.AND  # still inside the debounce window
        now[0] = 2010.0
        assert source().filter_logic is FilterLogic.OR

    def test_failed_reload_keeps_previous(self, temp_workdir: Path):
        path = temp_workdir / "config" / "w.json"
        self._rewrite(path, {"filterLogic": "OR"}, 1000.0)
        source = ConfigSource("config/w.json", root=temp_workdir, watch=True, debounce_seconds=0, clock=lambda: 5000.0)
        assert source().filter_logic is FilterLogic.OR
        path.write_text("{broken", encoding="utf-8")
        os.utime(path, (3000.0, 3000.0))
        assert source().filter_logic is FilterLogic.OR

    def test_deleted_file_keeps_previous(self, temp_workdir: Path):
        path = temp_workdir / "config" / "w.json"
        self._rewrite(path, {"filterLogic": "OR"}, 1000.0)
        source = ConfigSource("config/w.json", root=temp_workdir, watch=True, debounce_seconds=0, clock=lambda: 5000.0)
        assert source().filter_logic is FilterLogic.OR
        path.unlink()
        assert source().filter_logic is FilterLogic.OR
        assert source.from_file is True

    def test_without_watch_file_is_read_once(self, temp_workdir: Path):
        path = temp_workdir / "config" / "w.json"
        self._rewrite(path, {"filterLogic": "OR"}, 1000.0)
        source = ConfigSource("config/w.json", root=temp_workdir, clock=lambda: 5000.0)
        assert source().filter_logic is FilterLogic.OR
        self._rewrite(path, {"filterLogic": "AND"}, 2000.0)
        assert source().filter_logic is FilterLogic.OR
