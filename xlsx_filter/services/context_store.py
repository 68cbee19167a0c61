from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from typing import Any, Protocol

from ..models.config_models import ContextScope

"""Host context store (flow/global shared state) and dotted-path helpers.

The message scope is the batch message itself and is handled with deep_get /
deep_set; flow and global values live behind the ContextStore protocol so the
engine can run without a host runtime.
"""

__all__ = [
    "ContextStore",
    "InMemoryContextStore",
    "deep_get",
    "deep_set",
    "split_path",
]


def split_path(path: Any) -> list[str]:
    return [p for p in str(path).split(".") if p] if path is not None else []


def deep_get(root: Any, path: Any) -> Any:
    """Walk a dotted path (``a.b.0.c``); missing segments yield None."""
    parts = split_path(path)
    if root is None or not parts:
        return None
    cur = root
    for part in parts:
        if cur is None:
            return None
        if isinstance(cur, Mapping):
            cur = cur.get(part)
        elif isinstance(cur, list) and part.isdigit():
            idx = int(part)
            cur = cur[idx] if idx < len(cur) else None
        else:
            return None
    return cur


def deep_set(root: MutableMapping[str, Any], path: Any, value: Any) -> None:
    """Set a value at a dotted path, creating (or replacing) intermediate dicts."""
    parts = split_path(path)
    if not parts:
        raise ValueError("empty path")
    cur = root
    for part in parts[:-1]:
        nxt = cur.get(part)
        if not isinstance(nxt, MutableMapping):
            nxt = {}
            cur[part] = nxt
        cur = nxt
    cur[parts[-1]] = value


class ContextStore(Protocol):
    def get(self, scope: ContextScope, path: str) -> Any: ...

    def set(self, scope: ContextScope, path: str, value: Any) -> None: ...


class InMemoryContextStore:
    """Dict-backed flow/global store.

    Values are shared across batches; reads and writes are not locked because
    batches never interleave.
    """

    def __init__(
        self,
        flow: Mapping[str, Any] | None = None,
        global_: Mapping[str, Any] | None = None,
    ) -> None:
        self._scopes: dict[ContextScope, dict[str, Any]] = {
            ContextScope.FLOW: dict(flow or {}),
            ContextScope.GLOBAL: dict(global_ or {}),
        }

    def _bucket(self, scope: ContextScope | str) -> dict[str, Any]:
        key = ContextScope(scope)
        if key is ContextScope.MSG:
            raise ValueError("message scope is not held by the context store")
        return self._scopes[key]

    def get(self, scope: ContextScope | str, path: str) -> Any:
        return deep_get(self._bucket(scope), path)

    def set(self, scope: ContextScope | str, path: str, value: Any) -> None:
        deep_set(self._bucket(scope), path, value)

    def snapshot(self, scope: ContextScope | str) -> dict[str, Any]:
        return dict(self._bucket(scope))
