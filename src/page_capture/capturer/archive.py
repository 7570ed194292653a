"""Zip archive builder for the flat and timestamped archive strategies.

Entries are accumulated in memory, keyed by path (the last write of a path
wins), and only serialised by :meth:`ArchiveBuilder.generate`.  Output is
deterministic: entries are written in path order and stamped with the
capture time, so generating an unchanged builder twice yields identical
bytes.
"""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from datetime import datetime

from page_capture.capturer.config import COMPRESSION_LEVEL

# Oldest timestamp the zip format can represent.
_ZIP_EPOCH: tuple[int, int, int, int, int, int] = (1980, 1, 1, 0, 0, 0)


@dataclass(frozen=True)
class ArchiveEntry:
    path: str
    data: bytes
    compress: bool


class ArchiveBuilder:
    """Accumulates :class:`ArchiveEntry` objects and renders one zip.

    Args:
        timestamp: Modification time written to every entry.
    """

    def __init__(self, timestamp: datetime | None = None) -> None:
        if timestamp is None or timestamp.year < 1980:
            self._date_time = _ZIP_EPOCH
        else:
            self._date_time = (
                timestamp.year,
                timestamp.month,
                timestamp.day,
                timestamp.hour,
                timestamp.minute,
                timestamp.second,
            )
        self._entries: dict[str, ArchiveEntry] = {}
        self._generated: bytes | None = None

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def paths(self) -> list[str]:
        return sorted(self._entries)

    def add(self, path: str, data: bytes, *, compress: bool) -> None:
        """Add or replace the entry at *path*."""
        self._entries[path] = ArchiveEntry(path=path, data=data, compress=compress)
        self._generated = None

    def generate(self) -> bytes:
        """Render the archive.

        The rendered bytes are cached until the next :meth:`add`.
        """
        if self._generated is not None:
            return self._generated

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            for path in sorted(self._entries):
                entry = self._entries[path]
                info = zipfile.ZipInfo(path, date_time=self._date_time)
                info.external_attr = 0o644 << 16
                if entry.compress:
                    info.compress_type = zipfile.ZIP_DEFLATED
                    zf.writestr(info, entry.data, compresslevel=COMPRESSION_LEVEL)
                else:
                    info.compress_type = zipfile.ZIP_STORED
                    zf.writestr(info, entry.data)
        self._generated = buffer.getvalue()
        return self._generated
