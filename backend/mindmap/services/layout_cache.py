"""
Layout cache keyed by data fingerprint.

Two levels: an in-memory LRU and, when a directory is configured, one JSON
file per fingerprint. Disk hits are promoted to memory. Unreadable or expired
records are treated as misses and removed.

The memory map and counters are guarded by a lock so the cache can be used
from executor threads; disk I/O happens outside the lock.
"""
from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Iterable, Optional, Union

from pydantic import BaseModel, ValidationError

from mindmap.models.mindmap import StoredLayout

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class CacheReadError(RuntimeError):
    """Raised when a stored layout cannot be read or decoded."""

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"failed to read cached layout {path}: {detail}")


class LayoutCacheMetrics(BaseModel):
    hits: int = 0
    misses: int = 0
    memory_entries: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class LayoutCache:
    """Fingerprint -> StoredLayout store."""

    def __init__(
        self,
        cache_dir: Optional[Union[str, Path]] = None,
        max_memory_entries: int = 50,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ) -> None:
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.max_memory_entries = max_memory_entries
        self.ttl_seconds = ttl_seconds
        self._memory: "OrderedDict[str, StoredLayout]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()
        if self.cache_dir is not None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)

    def get(self, fingerprint: str) -> Optional[StoredLayout]:
        with self._lock:
            layout = self._memory.get(fingerprint)
            if layout is not None:
                self._memory.move_to_end(fingerprint)
                self._hits += 1
                layout = layout.model_copy(deep=True)
        if layout is not None:
            logger.debug("[LayoutCache] memory hit %s", fingerprint[:12])
            return layout

        try:
            layout = self._read_disk(fingerprint)
        except CacheReadError as exc:
            logger.warning("[LayoutCache] %s; treating as miss", exc)
            self._remove_file(exc.path)
            layout = None

        if layout is None:
            with self._lock:
                self._misses += 1
            logger.debug("[LayoutCache] miss %s", fingerprint[:12])
            return None

        with self._lock:
            self._remember(fingerprint, layout)
            self._hits += 1
        logger.debug("[LayoutCache] disk hit %s", fingerprint[:12])
        return layout.model_copy(deep=True)

    def set(self, fingerprint: str, layout: StoredLayout) -> None:
        if layout.fingerprint != fingerprint:
            layout = layout.model_copy(update={"fingerprint": fingerprint})
        with self._lock:
            self._remember(fingerprint, layout.model_copy(deep=True))
        if self.cache_dir is not None:
            self._write_disk(fingerprint, layout)
        logger.info(
            "[LayoutCache] stored layout %s (%d nodes, %d connections)",
            fingerprint[:12],
            len(layout.nodes),
            len(layout.connections),
        )

    def invalidate(self, node_ids: Iterable[str]) -> int:
        """Drop every cached layout containing any of `node_ids`."""
        affected = set(node_ids)
        if not affected:
            return 0
        removed = set()
        with self._lock:
            for fingerprint, layout in list(self._memory.items()):
                if layout.node_ids() & affected:
                    self._memory.pop(fingerprint, None)
                    removed.add(fingerprint)
        for path in self._disk_files():
            try:
                layout = self._load_file(path)
            except CacheReadError as exc:
                logger.warning("[LayoutCache] %s; removing", exc)
                self._remove_file(path)
                continue
            if layout.node_ids() & affected:
                self._remove_file(path)
                removed.add(path.stem)
        logger.info("[LayoutCache] invalidated %d layouts for %d nodes", len(removed), len(affected))
        return len(removed)

    def invalidate_all(self) -> None:
        with self._lock:
            self._memory.clear()
        for path in self._disk_files():
            self._remove_file(path)
        logger.info("[LayoutCache] cleared")

    def metrics(self) -> LayoutCacheMetrics:
        with self._lock:
            return LayoutCacheMetrics(
                hits=self._hits,
                misses=self._misses,
                memory_entries=len(self._memory),
            )

    def _remember(self, fingerprint: str, layout: StoredLayout) -> None:
        # caller holds self._lock
        self._memory[fingerprint] = layout
        self._memory.move_to_end(fingerprint)
        while len(self._memory) > self.max_memory_entries:
            self._memory.popitem(last=False)

    def _path(self, fingerprint: str) -> Path:
        return self.cache_dir / f"{fingerprint}.json"

    def _disk_files(self):
        if self.cache_dir is None or not self.cache_dir.exists():
            return []
        return sorted(self.cache_dir.glob("*.json"))

    def _read_disk(self, fingerprint: str) -> Optional[StoredLayout]:
        if self.cache_dir is None:
            return None
        path = self._path(fingerprint)
        if not path.exists():
            return None
        age = time.time() - path.stat().st_mtime
        if age > self.ttl_seconds:
            logger.info("[LayoutCache] expired layout %s (age %.0fs)", fingerprint[:12], age)
            self._remove_file(path)
            return None
        layout = self._load_file(path)
        if layout.fingerprint != fingerprint:
            raise CacheReadError(path, "fingerprint mismatch")
        return layout

    @staticmethod
    def _load_file(path: Path) -> StoredLayout:
        try:
            return StoredLayout.from_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError) as exc:
            raise CacheReadError(path, str(exc)) from exc

    def _write_disk(self, fingerprint: str, layout: StoredLayout) -> None:
        path = self._path(fingerprint)
        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(layout.to_json())
            os.replace(tmp_name, path)
        except OSError as exc:
            logger.error("[LayoutCache] failed to write %s: %s", path, exc)
            self._remove_file(Path(tmp_name))

    @staticmethod
    def _remove_file(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("[LayoutCache] failed to remove %s: %s", path, exc)
