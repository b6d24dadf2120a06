"""Path-addressed document store.

The production store is a hosted realtime database owned by the frontend; the
backend only needs get/set/update/delete on slash-separated paths plus change
notification. ``InMemoryDocumentStore`` implements that contract for local
development and tests: last write wins per path, and a write notifies every
subscriber whose path is an ancestor or descendant of the written path.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()

Listener = Callable[[Any], None]


class DocumentStore(Protocol):
    async def get(self, path: str) -> Any: ...

    async def set(self, path: str, value: Any) -> None: ...

    async def update(self, path: str, values: dict[str, Any]) -> None: ...

    async def delete(self, path: str) -> None: ...

    def subscribe(self, path: str, listener: Listener) -> Callable[[], None]: ...


def split_path(path: str) -> list[str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts:
        raise ValueError("Store path must not be empty")
    return parts


def _child(node: Any, key: str) -> Any:
    if isinstance(node, dict):
        return node.get(key)
    if isinstance(node, list) and key.isdigit() and int(key) < len(node):
        return node[int(key)]
    return None


def _related(a: list[str], b: list[str]) -> bool:
    """True when one path is a prefix of (or equal to) the other."""
    n = min(len(a), len(b))
    return a[:n] == b[:n]


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._root: dict[str, Any] = {}
        self._listeners: list[tuple[list[str], Listener]] = []

    def _read(self, parts: list[str]) -> Any:
        node: Any = self._root
        for key in parts:
            node = _child(node, key)
            if node is None:
                return None
        return node

    def _write(self, parts: list[str], value: Any) -> None:
        node: Any = self._root
        for key in parts[:-1]:
            nxt = _child(node, key)
            if not isinstance(nxt, (dict, list)):
                nxt = {}
                self._assign(node, key, nxt)
            node = nxt
        if value is None:
            self._remove(node, parts[-1])
        else:
            self._assign(node, parts[-1], copy.deepcopy(value))

    @staticmethod
    def _assign(node: Any, key: str, value: Any) -> None:
        if isinstance(node, list) and key.isdigit() and int(key) < len(node):
            node[int(key)] = value
        elif isinstance(node, dict):
            node[key] = value
        else:
            raise ValueError(f"Cannot write key {key!r} under a {type(node).__name__}")

    @staticmethod
    def _remove(node: Any, key: str) -> None:
        if isinstance(node, dict):
            node.pop(key, None)
        elif isinstance(node, list) and key.isdigit() and int(key) < len(node):
            node[int(key)] = None

    def _notify(self, parts: list[str]) -> None:
        for listener_parts, listener in list(self._listeners):
            if not _related(listener_parts, parts):
                continue
            try:
                listener(copy.deepcopy(self._read(listener_parts)))
            except Exception:
                logger.exception("store_listener_failed", path="/".join(listener_parts))

    async def get(self, path: str) -> Any:
        return copy.deepcopy(self._read(split_path(path)))

    async def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        self._write(parts, value)
        self._notify(parts)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        base = split_path(path)
        for key, value in values.items():
            self._write(base + split_path(key), value)
        self._notify(base)

    async def delete(self, path: str) -> None:
        await self.set(path, None)

    def subscribe(self, path: str, listener: Listener) -> Callable[[], None]:
        entry = (split_path(path), listener)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe
