"""Tests for the connection request lifecycle.

Covers:
- Requesting: self-reference, unknown addressee, duplicates in both directions
- Responding: addressee-only, exactly once, accept/decline timestamps
- Re-requesting after a decline
- Viewer-relative status and the messaging gate
- Listing with filters and cursors
"""

import threading
from datetime import UTC, datetime
from uuid import uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from conecta.errors import ApiError, ApiErrorCode
from conecta.schemas.connection import ConnectionOut, ViewerStatusOut
from conecta.services import connections as connections_service
from conecta.services.connections import derive_viewer_status
from tests.factories import (
    create_accepted_connection,
    create_pending_connection,
    create_test_user,
)


def _error_code(exc_info) -> ApiErrorCode:
    return exc_info.value.code


class TestRequestConnection:
    def test_creates_pending_record(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)

        connection = connections_service.request_connection(
            db_session, alice, bruno, "  Hola, me interesa tu proyecto  "
        )

        assert connection.status == "pending"
        assert connection.requester_id == alice
        assert connection.addressee_id == bruno
        assert connection.message == "Hola, me interesa tu proyecto"
        assert connection.responded_at is None
        assert connection.accepted_at is None

    def test_blank_note_stored_as_null(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)

        connection = connections_service.request_connection(db_session, alice, bruno, "   ")

        assert connection.message is None

    def test_self_request_rejected(self, db_session: Session):
        alice = create_test_user(db_session)

        with pytest.raises(ApiError) as exc_info:
            connections_service.request_connection(db_session, alice, alice)

        assert _error_code(exc_info) == ApiErrorCode.E_SELF_REFERENCE

    def test_unknown_addressee_rejected(self, db_session: Session):
        alice = create_test_user(db_session)

        with pytest.raises(ApiError) as exc_info:
            connections_service.request_connection(db_session, alice, uuid4())

        assert _error_code(exc_info) == ApiErrorCode.E_USER_NOT_FOUND

    def test_note_too_long_rejected(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)

        with pytest.raises(ApiError) as exc_info:
            connections_service.request_connection(db_session, alice, bruno, "x" * 501)

        assert _error_code(exc_info) == ApiErrorCode.E_VALIDATION_FAILED

    def test_note_with_nul_rejected(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)

        with pytest.raises(ApiError) as exc_info:
            connections_service.request_connection(db_session, alice, bruno, "Hola\x00")

        assert _error_code(exc_info) == ApiErrorCode.E_VALIDATION_FAILED
        assert connections_service.viewer_status(db_session, alice, other_user_id=bruno).status == "none"

    def test_duplicate_request_rejected(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        connections_service.request_connection(db_session, alice, bruno)

        with pytest.raises(ApiError) as exc_info:
            connections_service.request_connection(db_session, alice, bruno)

        assert _error_code(exc_info) == ApiErrorCode.E_CONNECTION_EXISTS
        assert exc_info.value.status_code == 409

    def test_reverse_direction_also_rejected(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        connections_service.request_connection(db_session, alice, bruno)

        with pytest.raises(ApiError) as exc_info:
            connections_service.request_connection(db_session, bruno, alice)

        assert _error_code(exc_info) == ApiErrorCode.E_CONNECTION_EXISTS

    def test_request_after_accept_rejected(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        create_accepted_connection(db_session, alice, bruno)

        with pytest.raises(ApiError) as exc_info:
            connections_service.request_connection(db_session, bruno, alice)

        assert _error_code(exc_info) == ApiErrorCode.E_CONNECTION_EXISTS

    def test_new_request_allowed_after_decline(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        first = connections_service.request_connection(db_session, alice, bruno)
        connections_service.respond_to_connection(db_session, bruno, first.id, accept=False)

        second = connections_service.request_connection(db_session, bruno, alice)

        assert second.id != first.id
        assert second.status == "pending"
        history = db_session.execute(
            text("SELECT status FROM connections WHERE id = :id"), {"id": first.id}
        ).scalar()
        assert history == "declined"


class TestRespondToConnection:
    def test_accept_sets_timestamps(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        pending = create_pending_connection(db_session, alice, bruno)

        connection = connections_service.respond_to_connection(
            db_session, bruno, pending.id, accept=True
        )

        assert connection.status == "accepted"
        assert connection.responded_at is not None
        assert connection.accepted_at is not None

    def test_decline_leaves_accepted_at_null(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        pending = create_pending_connection(db_session, alice, bruno)

        connection = connections_service.respond_to_connection(
            db_session, bruno, pending.id, accept=False
        )

        assert connection.status == "declined"
        assert connection.responded_at is not None
        assert connection.accepted_at is None

    def test_requester_cannot_respond(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        pending = create_pending_connection(db_session, alice, bruno)

        with pytest.raises(ApiError) as exc_info:
            connections_service.respond_to_connection(db_session, alice, pending.id, accept=True)

        assert _error_code(exc_info) == ApiErrorCode.E_FORBIDDEN

    def test_outsider_cannot_respond(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        carla = create_test_user(db_session)
        pending = create_pending_connection(db_session, alice, bruno)

        with pytest.raises(ApiError) as exc_info:
            connections_service.respond_to_connection(db_session, carla, pending.id, accept=True)

        assert _error_code(exc_info) == ApiErrorCode.E_FORBIDDEN

    def test_unknown_connection_not_found(self, db_session: Session):
        bruno = create_test_user(db_session)

        with pytest.raises(ApiError) as exc_info:
            connections_service.respond_to_connection(db_session, bruno, uuid4(), accept=True)

        assert _error_code(exc_info) == ApiErrorCode.E_CONNECTION_NOT_FOUND

    @pytest.mark.parametrize("first,second", [(True, True), (True, False), (False, True)])
    def test_second_response_rejected(self, db_session: Session, first, second):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        pending = create_pending_connection(db_session, alice, bruno)
        connections_service.respond_to_connection(db_session, bruno, pending.id, accept=first)

        with pytest.raises(ApiError) as exc_info:
            connections_service.respond_to_connection(db_session, bruno, pending.id, accept=second)

        assert _error_code(exc_info) == ApiErrorCode.E_INVALID_TRANSITION

    def test_failed_response_leaves_record_unchanged(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        pending = create_pending_connection(db_session, alice, bruno)

        with pytest.raises(ApiError):
            connections_service.respond_to_connection(db_session, alice, pending.id, accept=True)

        current = connections_service.get_connection(db_session, bruno, pending.id)
        assert current.status == "pending"
        assert current.responded_at is None


class TestViewerStatus:
    def test_no_record_is_none(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)

        result = connections_service.viewer_status(db_session, alice, other_user_id=bruno)

        assert result.status == "none"
        assert result.connection_id is None

    def test_pending_seen_from_both_sides(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        pending = create_pending_connection(db_session, alice, bruno)

        sent = connections_service.viewer_status(db_session, alice, other_user_id=bruno)
        received = connections_service.viewer_status(db_session, bruno, other_user_id=alice)

        assert sent.status == "pending_sent"
        assert received.status == "pending_received"
        assert sent.connection_id == received.connection_id == pending.id

    def test_accepted_is_symmetric(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        create_accepted_connection(db_session, alice, bruno)

        assert connections_service.viewer_status(db_session, alice, other_user_id=bruno).status == (
            "accepted"
        )
        assert connections_service.viewer_status(db_session, bruno, other_user_id=alice).status == (
            "accepted"
        )

    def test_declined_reported_until_new_request(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        pending = create_pending_connection(db_session, alice, bruno)
        connections_service.respond_to_connection(db_session, bruno, pending.id, accept=False)

        assert connections_service.viewer_status(db_session, alice, other_user_id=bruno).status == (
            "declined"
        )

        connections_service.request_connection(db_session, alice, bruno)

        assert connections_service.viewer_status(db_session, alice, other_user_id=bruno).status == (
            "pending_sent"
        )

    def test_self_is_none(self, db_session: Session):
        alice = create_test_user(db_session)

        assert connections_service.viewer_status(db_session, alice, other_user_id=alice).status == (
            "none"
        )

    def test_by_connection_id(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        pending = create_pending_connection(db_session, alice, bruno)

        result = connections_service.viewer_status(db_session, bruno, connection_id=pending.id)

        assert result.status == "pending_received"

    def test_by_connection_id_masks_outsiders(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        carla = create_test_user(db_session)
        pending = create_pending_connection(db_session, alice, bruno)

        with pytest.raises(ApiError) as exc_info:
            connections_service.viewer_status(db_session, carla, connection_id=pending.id)

        assert _error_code(exc_info) == ApiErrorCode.E_CONNECTION_NOT_FOUND

    @pytest.mark.parametrize("both", [True, False])
    def test_exactly_one_selector_required(self, db_session: Session, both):
        alice = create_test_user(db_session)
        kwargs = {"other_user_id": uuid4(), "connection_id": uuid4()} if both else {}

        with pytest.raises(ApiError) as exc_info:
            connections_service.viewer_status(db_session, alice, **kwargs)

        assert _error_code(exc_info) == ApiErrorCode.E_INVALID_REQUEST


class TestCanMessage:
    def test_only_accepted_allows_messaging(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        assert not connections_service.can_message(db_session, alice, bruno)

        pending = create_pending_connection(db_session, alice, bruno)
        assert not connections_service.can_message(db_session, alice, bruno)

        connections_service.respond_to_connection(db_session, bruno, pending.id, accept=True)
        assert connections_service.can_message(db_session, alice, bruno)
        assert connections_service.can_message(db_session, bruno, alice)

    def test_declined_blocks_messaging(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        pending = create_pending_connection(db_session, alice, bruno)
        connections_service.respond_to_connection(db_session, bruno, pending.id, accept=False)

        assert not connections_service.can_message(db_session, alice, bruno)

    def test_self_never_allowed(self, db_session: Session):
        alice = create_test_user(db_session)

        assert not connections_service.can_message(db_session, alice, alice)


class TestListConnections:
    def test_filters_by_role_and_status(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        carla = create_test_user(db_session)
        sent = create_pending_connection(db_session, alice, bruno)
        received = create_accepted_connection(db_session, carla, alice)

        everything, _ = connections_service.list_connections(db_session, alice)
        outgoing, _ = connections_service.list_connections(db_session, alice, role="requester")
        incoming, _ = connections_service.list_connections(db_session, alice, role="addressee")
        accepted, _ = connections_service.list_connections(db_session, alice, status="accepted")

        assert {c.id for c in everything} == {sent.id, received.id}
        assert [c.id for c in outgoing] == [sent.id]
        assert [c.id for c in incoming] == [received.id]
        assert [c.id for c in accepted] == [received.id]

    def test_outsiders_see_nothing(self, db_session: Session):
        alice = create_test_user(db_session)
        bruno = create_test_user(db_session)
        carla = create_test_user(db_session)
        create_pending_connection(db_session, alice, bruno)

        connections, page = connections_service.list_connections(db_session, carla)

        assert connections == []
        assert page.next_cursor is None

    def test_cursor_pagination_walks_all_records(self, db_session: Session):
        alice = create_test_user(db_session)
        created = []
        for _ in range(5):
            other = create_test_user(db_session)
            created.append(create_pending_connection(db_session, alice, other).id)

        seen = []
        cursor = None
        while True:
            page_items, page = connections_service.list_connections(
                db_session, alice, limit=2, cursor=cursor
            )
            seen.extend(c.id for c in page_items)
            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        assert len(seen) == 5
        assert set(seen) == set(created)

    def test_invalid_cursor_rejected(self, db_session: Session):
        alice = create_test_user(db_session)

        with pytest.raises(ApiError) as exc_info:
            connections_service.list_connections(db_session, alice, cursor="not-a-cursor")

        assert _error_code(exc_info) == ApiErrorCode.E_INVALID_CURSOR


class TestConnectionRaces:
    """Races need independent connections, so these use direct_db."""

    def _users(self, direct_db, count: int):
        user_ids = [uuid4() for _ in range(count)]
        with direct_db.session() as s:
            for user_id in user_ids:
                create_test_user(s, user_id)
        for user_id in user_ids:
            direct_db.register_cleanup("users", "id", user_id)
        return user_ids

    def test_simultaneous_crossed_requests_create_one_record(self, direct_db):
        alice, bruno = self._users(direct_db, 2)
        barrier = threading.Barrier(2)
        results: list[object] = []

        def request(requester, addressee):
            barrier.wait(timeout=5)
            with direct_db.session() as s:
                try:
                    results.append(connections_service.request_connection(s, requester, addressee))
                except ApiError as e:
                    results.append(e)

        threads = [
            threading.Thread(target=request, args=(alice, bruno), daemon=True),
            threading.Thread(target=request, args=(bruno, alice), daemon=True),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        errors = [r for r in results if isinstance(r, ApiError)]
        assert len(results) == 2
        assert len(errors) == 1
        assert errors[0].code == ApiErrorCode.E_CONNECTION_EXISTS

        with direct_db.session() as s:
            count = s.execute(
                text("""
                    SELECT count(*) FROM connections
                    WHERE requester_id IN (:a, :b) AND addressee_id IN (:a, :b)
                """),
                {"a": alice, "b": bruno},
            ).scalar()
        assert count == 1

    def test_simultaneous_responses_apply_once(self, direct_db):
        alice, bruno = self._users(direct_db, 2)
        with direct_db.session() as s:
            pending = create_pending_connection(s, alice, bruno)

        barrier = threading.Barrier(2)
        results: list[object] = []

        def respond(accept: bool):
            barrier.wait(timeout=5)
            with direct_db.session() as s:
                try:
                    results.append(
                        connections_service.respond_to_connection(s, bruno, pending.id, accept)
                    )
                except ApiError as e:
                    results.append(e)

        threads = [
            threading.Thread(target=respond, args=(True,), daemon=True),
            threading.Thread(target=respond, args=(False,), daemon=True),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        errors = [r for r in results if isinstance(r, ApiError)]
        winners = [r for r in results if not isinstance(r, ApiError)]
        assert len(winners) == 1
        assert len(errors) == 1
        assert errors[0].code == ApiErrorCode.E_INVALID_TRANSITION

        with direct_db.session() as s:
            stored = s.execute(
                text("SELECT status FROM connections WHERE id = :id"), {"id": pending.id}
            ).scalar()
        assert stored == winners[0].status


class TestDeriveViewerStatus:
    """Pure mapping from a record to the viewer's status; no database."""

    def _connection(self, requester, addressee, status: str) -> ConnectionOut:
        now = datetime.now(UTC)
        return ConnectionOut(
            id=uuid4(),
            requester_id=requester,
            addressee_id=addressee,
            status=status,
            created_at=now,
            updated_at=now,
            responded_at=None if status == "pending" else now,
            accepted_at=now if status == "accepted" else None,
        )

    def test_none_without_record(self):
        assert derive_viewer_status(None, uuid4()) == ViewerStatusOut(status="none")

    def test_pending_depends_on_side(self):
        alice, bruno = uuid4(), uuid4()
        connection = self._connection(alice, bruno, "pending")

        assert derive_viewer_status(connection, alice).status == "pending_sent"
        assert derive_viewer_status(connection, bruno).status == "pending_received"

    @pytest.mark.parametrize("status", ["accepted", "declined"])
    def test_terminal_states_are_symmetric(self, status):
        alice, bruno = uuid4(), uuid4()
        connection = self._connection(alice, bruno, status)

        assert derive_viewer_status(connection, alice) == derive_viewer_status(connection, bruno)
        assert derive_viewer_status(connection, alice).connection_id == connection.id
