"""Unit tests for capture session IDs and the session registry."""

from __future__ import annotations

from datetime import datetime, timezone

from page_capture.capturer.session_store import (
    SessionStore,
    session_id_from_datetime,
    session_id_to_datetime,
)

_MOMENT = datetime(2023, 1, 1, 0, 0, 0, 250000, tzinfo=timezone.utc)


class TestSessionIds:
    def test_format(self) -> None:
        assert session_id_from_datetime(_MOMENT) == "20230101000000250"

    def test_parse_back(self) -> None:
        assert session_id_to_datetime("20230101000000250") == _MOMENT

    def test_non_time_id_parses_to_none(self) -> None:
        assert session_id_to_datetime("my-session") is None


class TestSessionStore:
    def test_new_ids_are_unique_within_a_millisecond(self) -> None:
        store = SessionStore()
        first = store.new_session_id(now=_MOMENT)
        second = store.new_session_id(now=_MOMENT)
        assert (first, second) == ("20230101000000250", "20230101000000251")
        assert len(store) == 2

    def test_get_creates_on_first_reference(self) -> None:
        store = SessionStore()
        session = store.get("20230101000000000")
        assert store.get("20230101000000000") is session
        assert session.filenames == {"index.rdf", "index.dat"}

    def test_discard_removes_session(self) -> None:
        store = SessionStore()
        store.get("s1").failures.append("https://example.com/missing.png")
        store.discard("s1")
        assert "s1" not in store
        store.discard("s1")

    def test_archive_stamped_with_session_time(self) -> None:
        session = SessionStore().get("20230101000000000")
        archive = session.get_archive()
        assert session.get_archive() is archive
        assert archive._date_time == (2023, 1, 1, 0, 0, 0)
