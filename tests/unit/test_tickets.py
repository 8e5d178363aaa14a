"""
Tests for ticket check-in, validation and cancellation.
"""
import pytest
from httpx import AsyncClient
from unittest.mock import patch, AsyncMock

from app.core.permissions import Role
from app.core.exceptions import AlreadyScannedError, ConflictError, NotFoundError, AuthorizationError
from app.services import tickets_service
from tests.utils.factories import TicketFactory, ScanFactory, UserFactory, make_claims
from tests.utils.mocks import MockDBConnection, GateStore, patch_db


@pytest.fixture
def gate():
    conn = MockDBConnection()
    store = GateStore(TicketFactory.create(id=1), UserFactory.create(id=7, name="Gate Keeper"))
    store.install(conn)
    with patch_db(conn, 'app.services.tickets_service'):
        yield store, conn


class TestCheckIn:

    @pytest.mark.asyncio
    async def test_first_scan_marks_ticket_used_and_attended(self, gate):
        store, conn = gate

        result = await tickets_service.check_in(store.ticket["qr_code"], scanner_id=7)

        assert result.ticket.status.value == "used"
        assert result.ticket.attendance.value == "attended"
        assert result.scan.ticket_id == 1
        assert result.scan.user_id == 7
        assert result.scanner.name == "Gate Keeper"
        assert conn.count_calls("fetchrow", "INSERT INTO scan_history") == 1

    @pytest.mark.asyncio
    async def test_second_scan_reports_original_scan(self, gate):
        store, conn = gate
        first = await tickets_service.check_in(store.ticket["qr_code"], scanner_id=7)

        with pytest.raises(AlreadyScannedError) as exc_info:
            await tickets_service.check_in(store.ticket["qr_code"], scanner_id=8)

        data = exc_info.value.data
        assert exc_info.value.status_code == 409
        assert data["scan_history"]["id"] == first.scan.id
        assert data["scan_history"]["user_id"] == 7
        assert data["scanned_by"] == "Gate Keeper"
        # Only the first scan wrote a record
        assert conn.count_calls("fetchrow", "INSERT INTO scan_history") == 1

    @pytest.mark.asyncio
    async def test_lost_race_is_reported_as_already_scanned(self, gate):
        store, conn = gate
        # A concurrent scan committed between our lookup and our insert
        concurrent = ScanFactory.create(id=55, ticket_id=1, user_id=9)
        lookups = iter([None, {**concurrent, "scanner_name": "Other Gate"}])
        conn.fetchrow_returns["FROM scan_history sh"] = lambda *args: next(lookups)
        conn.fetchrow_returns["INSERT INTO scan_history"] = None

        with pytest.raises(AlreadyScannedError) as exc_info:
            await tickets_service.check_in(store.ticket["qr_code"], scanner_id=7)

        assert exc_info.value.data["scan_history"]["id"] == 55
        assert exc_info.value.data["scanned_by"] == "Other Gate"
        assert not conn.was_called_with("execute", "UPDATE tickets SET status = 'used'")

    @pytest.mark.asyncio
    async def test_cancelled_ticket_is_rejected(self, gate):
        store, conn = gate
        store.ticket = {**store.ticket, "status": "cancelled"}

        with pytest.raises(ConflictError) as exc_info:
            await tickets_service.check_in(store.ticket["qr_code"], scanner_id=7)

        assert not isinstance(exc_info.value, AlreadyScannedError)
        assert exc_info.value.message == "Ticket has been cancelled"
        assert exc_info.value.data["id"] == 1
        assert not conn.was_called_with("fetchrow", "INSERT INTO scan_history")

    @pytest.mark.asyncio
    async def test_unknown_code(self, gate):
        with pytest.raises(NotFoundError):
            await tickets_service.check_in("TKT-UNKNOWN", scanner_id=7)


class TestValidate:

    @pytest.mark.asyncio
    async def test_valid_ticket(self, gate):
        store, conn = gate

        validation = await tickets_service.validate(store.ticket["qr_code"])

        assert validation.valid is True
        assert validation.ticket.can_check_in is True
        assert not conn.was_called_with("fetchrow", "INSERT INTO scan_history")

    @pytest.mark.asyncio
    async def test_scanned_ticket_is_not_valid(self, gate):
        store, conn = gate
        await tickets_service.check_in(store.ticket["qr_code"], scanner_id=7)

        validation = await tickets_service.validate(store.ticket["qr_code"])

        assert validation.valid is False
        assert validation.already_scanned is True
        assert validation.ticket.can_check_in is False


class TestUsability:

    def test_reasons(self):
        assert tickets_service.unusable_reason({"status": "active", "attendance": "not_attended"}) is None
        assert tickets_service.unusable_reason({"status": "used", "attendance": "attended"}) == "Ticket has already been used"
        assert tickets_service.unusable_reason({"status": "cancelled", "attendance": "not_attended"}) == "Ticket has been cancelled"

    def test_only_active_unattended_tickets_can_be_used(self):
        assert tickets_service.can_be_used({"status": "active", "attendance": "not_attended"})
        assert not tickets_service.can_be_used({"status": "used", "attendance": "attended"})


class TestIssueTickets:

    @pytest.mark.asyncio
    async def test_batch_continues_numbering(self):
        conn = MockDBConnection()
        conn.set_fetchval_return("SELECT COUNT(*) FROM tickets", 2)
        conn.set_fetch_return(
            "INSERT INTO tickets",
            lambda transaction_id, codes: [
                TicketFactory.create(id=i + 1, transaction_id=transaction_id, qr_code=code)
                for i, code in enumerate(codes)
            ]
        )

        tickets = await tickets_service.issue_tickets(conn, 5, "ORD-1767225600-AB12CD34", 2)

        assert len(tickets) == 2
        assert tickets[0].qr_code.startswith("TKT-ORD-1767225600-AB12CD34-3-")
        assert tickets[1].qr_code.startswith("TKT-ORD-1767225600-AB12CD34-4-")


class TestCancelTicket:

    @pytest.mark.asyncio
    async def test_used_ticket_cannot_be_cancelled(self):
        conn = MockDBConnection()
        ticket = TicketFactory.create(id=1, status="used", attendance="attended")
        conn.set_fetchrow_return("FROM tickets WHERE id", ticket)
        conn.set_fetchrow_return("FROM tickets tk", TicketFactory.detail(ticket, owner_id=3))

        with patch_db(conn, 'app.services.tickets_service'):
            with pytest.raises(ConflictError):
                await tickets_service.cancel_ticket(1, make_claims(3, Role.USER))

    @pytest.mark.asyncio
    async def test_stranger_cannot_cancel(self):
        conn = MockDBConnection()
        ticket = TicketFactory.create(id=1)
        conn.set_fetchrow_return("FROM tickets WHERE id", ticket)
        conn.set_fetchrow_return("FROM tickets tk", TicketFactory.detail(ticket, owner_id=3))
        conn.set_fetchval_return("FROM event_users", False)

        with patch_db(conn, 'app.services.tickets_service'):
            with pytest.raises(AuthorizationError):
                await tickets_service.cancel_ticket(1, make_claims(99, Role.USER))

    @pytest.mark.asyncio
    async def test_owner_cancels_without_restoring_quota(self):
        conn = MockDBConnection()
        ticket = TicketFactory.create(id=1)
        conn.set_fetchrow_return("FROM tickets WHERE id", ticket)
        conn.set_fetchrow_return("FROM tickets tk", TicketFactory.detail({**ticket, "status": "cancelled"}, owner_id=3))

        with patch_db(conn, 'app.services.tickets_service'):
            detail = await tickets_service.cancel_ticket(1, make_claims(3, Role.USER))

        assert detail.status.value == "cancelled"
        assert conn.was_called_with("execute", "UPDATE tickets SET status = 'cancelled'")
        assert not conn.was_called_with("fetchval", "UPDATE ticket_types")


class TestScanEndpoint:
    """POST /api/tiket/scan"""

    @pytest.mark.asyncio
    async def test_requires_scan_permission(self, client: AsyncClient, login_as):
        login_as(3, Role.USER)

        response = await client.post("/api/tiket/scan", json={"qr_code": "TKT-X"})

        assert response.status_code == 403
        body = response.json()
        assert body["success"] is False
        assert body["errors"]["required_permission"] == ["tiket.scan"]

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client: AsyncClient):
        response = await client.post("/api/tiket/scan", json={"qr_code": "TKT-X"})

        assert response.status_code == 401
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_already_scanned_carries_scan_data(self, client: AsyncClient, login_as):
        login_as(4, Role.PANITIA)
        error = AlreadyScannedError(data={"scanned_by": "Gate Keeper", "scanned_at": "2026-01-01T10:00:00+00:00"})

        with patch('app.services.tickets_service.check_in', new_callable=AsyncMock, side_effect=error):
            response = await client.post("/api/tiket/check-in", json={"qr_code": "TKT-X"})

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Ticket has already been scanned"
        assert body["data"]["scanned_by"] == "Gate Keeper"

    @pytest.mark.asyncio
    async def test_missing_qr_code_is_validation_error(self, client: AsyncClient, login_as):
        login_as(4, Role.PANITIA)

        response = await client.post("/api/tiket/scan", json={})

        assert response.status_code == 422
        body = response.json()
        assert body["message"] == "Validation error"
        assert "qr_code" in body["errors"]


def attended_row(ticket_id: int) -> dict:
    ticket = TicketFactory.create(id=ticket_id, status="used", attendance="attended")
    return {
        **TicketFactory.detail(ticket, owner_id=3),
        "scanned_at": ticket["created_at"],
        "scanned_by": "Gate Keeper",
    }


class TestAttendedTickets:
    """GET /api/tiket/scan-history"""

    @pytest.mark.asyncio
    async def test_lists_attended_tickets(self):
        conn = MockDBConnection()
        conn.set_fetchval_return("SELECT COUNT(*) FROM tickets", 2)
        conn.set_fetch_return("LEFT JOIN scan_history sh", [attended_row(1), attended_row(2)])

        with patch_db(conn, 'app.services.tickets_service'):
            page = await tickets_service.get_attended_tickets(make_claims(4, Role.PANITIA))

        assert page.total == 2
        assert [t.scanned_by for t in page.items] == ["Gate Keeper", "Gate Keeper"]
        assert all(t.attendance.value == "attended" for t in page.items)
        query, args = conn.get_call_history()[-1][1:]
        assert "tk.attendance = 'attended'" in query
        assert "event_users" not in query
        assert args == (20, 0)

    @pytest.mark.asyncio
    async def test_event_organizer_sees_own_events_only(self):
        conn = MockDBConnection()

        with patch_db(conn, 'app.services.tickets_service'):
            await tickets_service.get_attended_tickets(make_claims(2, Role.EO), event_id=9, page=2)

        query, args = conn.get_call_history()[-1][1:]
        assert "SELECT event_id FROM event_users WHERE user_id = $2" in query
        assert args == (9, 2, 20, 20)

    @pytest.mark.asyncio
    async def test_endpoint_requires_scan_permission(self, client: AsyncClient, login_as):
        login_as(3, Role.USER)

        response = await client.get("/api/tiket/scan-history")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_endpoint_is_not_a_ticket_id(self, client: AsyncClient, login_as):
        login_as(4, Role.PANITIA)
        conn = MockDBConnection()
        conn.set_fetchval_return("SELECT COUNT(*) FROM tickets", 1)
        conn.set_fetch_return("LEFT JOIN scan_history sh", [attended_row(5)])

        with patch_db(conn, 'app.services.tickets_service'):
            response = await client.get("/api/tiket/scan-history?per_page=5")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Scan history retrieved successfully"
        assert body["data"]["per_page"] == 5
        assert body["data"]["items"][0]["id"] == 5
