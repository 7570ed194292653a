"""Capture session state.

A capture session covers one top-level capture: the document, its frames and
every sub-resource they reference.  All of them share the session's filename
set, access map and (for archive strategies) archive builder.

Session state only ever grows while the capture runs, and it is mutated
between suspension points of a single event loop, so no locking is needed.
The :class:`SessionStore` is handed to the orchestrator explicitly; there is
no module-level registry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from page_capture.capturer.access import AccessMap
from page_capture.capturer.archive import ArchiveBuilder
from page_capture.capturer.config import DEFAULT_FILES

logger = logging.getLogger(__name__)

_SESSION_ID_FORMAT = "%Y%m%d%H%M%S"


def session_id_from_datetime(moment: datetime) -> str:
    """Format *moment* (UTC) as ``YYYYMMDDhhmmssSSS``."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime(_SESSION_ID_FORMAT) + f"{moment.microsecond // 1000:03d}"


def session_id_to_datetime(session_id: str) -> datetime | None:
    """Parse a session ID back into an aware UTC datetime.

    Returns ``None`` if *session_id* is not time-derived.
    """
    try:
        moment = datetime.strptime(session_id[:14], _SESSION_ID_FORMAT)
        millis = int(session_id[14:17] or 0)
    except ValueError:
        return None
    return moment.replace(microsecond=millis * 1000, tzinfo=timezone.utc)


@dataclass
class CaptureSession:
    """State shared by everything captured under one session ID.

    Attributes:
        session_id: Time-derived session ID.
        filenames: Lowercased names allocated so far, seeded with the
            reserved metadata names.
        access: In-flight/memoized fetches of the session.
        archive: Archive builder, created on first use by an archive strategy.
        failures: Source URLs of resources that degraded to an error
            placeholder.
    """

    session_id: str
    filenames: set[str] = field(default_factory=lambda: set(DEFAULT_FILES))
    access: AccessMap = field(default_factory=AccessMap)
    archive: ArchiveBuilder | None = None
    failures: list[str] = field(default_factory=list)

    def get_archive(self) -> ArchiveBuilder:
        if self.archive is None:
            self.archive = ArchiveBuilder(session_id_to_datetime(self.session_id))
        return self.archive


class SessionStore:
    """Owns the :class:`CaptureSession` objects of running captures."""

    def __init__(self) -> None:
        self._sessions: dict[str, CaptureSession] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def new_session_id(self, now: datetime | None = None) -> str:
        """Return an unused time-derived session ID.

        If the millisecond is already taken, the next free millisecond is used.
        """
        moment = now or datetime.now(tz=timezone.utc)
        session_id = session_id_from_datetime(moment)
        while session_id in self._sessions:
            moment += timedelta(milliseconds=1)
            session_id = session_id_from_datetime(moment)
        self._sessions[session_id] = CaptureSession(session_id)
        return session_id

    def get(self, session_id: str) -> CaptureSession:
        """Return the session for *session_id*, creating it on first reference."""
        session = self._sessions.get(session_id)
        if session is None:
            session = CaptureSession(session_id)
            self._sessions[session_id] = session
        return session

    def discard(self, session_id: str) -> None:
        """Tear down a finished session."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        if session.failures:
            logger.warning(
                "capturer: session %s finished with %d unsaved resource(s)",
                session_id,
                len(session.failures),
            )
        logger.debug(
            "capturer: session %s closed (%d filenames, %d accesses)",
            session_id,
            len(session.filenames),
            len(session.access),
        )
