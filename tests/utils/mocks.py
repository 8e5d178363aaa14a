"""
Mocks for the database and external services.
"""
from contextlib import ExitStack
from unittest.mock import patch
from typing import Optional, List, Any

from tests.utils.factories import TicketFactory, ScanFactory


def _resolve(value: Any, args: tuple) -> Any:
    if callable(value):
        return value(*args)
    return value


class MockDBConnection:
    """
    asyncpg connection mock.

    Return values are matched by a substring of the query, first match wins.
    A callable value is called with the query arguments, which lets a test
    keep state between calls.
    """

    def __init__(self):
        self.fetchrow_returns = {}
        self.fetch_returns = {}
        self.fetchval_returns = {}
        self.execute_returns = {}
        self._call_history = []

    def set_fetchrow_return(self, query_contains: str, value: Any):
        self.fetchrow_returns[query_contains] = value

    def set_fetch_return(self, query_contains: str, value: Any):
        self.fetch_returns[query_contains] = value

    def set_fetchval_return(self, query_contains: str, value: Any):
        self.fetchval_returns[query_contains] = value

    def set_execute_return(self, query_contains: str, value: Any):
        self.execute_returns[query_contains] = value

    async def fetchrow(self, query: str, *args) -> Optional[dict]:
        self._call_history.append(("fetchrow", query, args))

        for key, value in self.fetchrow_returns.items():
            if key in query:
                return _resolve(value, args)
        return None

    async def fetch(self, query: str, *args) -> List[dict]:
        self._call_history.append(("fetch", query, args))

        for key, value in self.fetch_returns.items():
            if key in query:
                return _resolve(value, args)
        return []

    async def fetchval(self, query: str, *args) -> Any:
        self._call_history.append(("fetchval", query, args))

        for key, value in self.fetchval_returns.items():
            if key in query:
                return _resolve(value, args)
        return None

    async def execute(self, query: str, *args) -> str:
        self._call_history.append(("execute", query, args))

        for key, value in self.execute_returns.items():
            if key in query:
                return _resolve(value, args)
        return "UPDATE 1"

    def get_call_history(self) -> List[tuple]:
        return self._call_history

    def was_called_with(self, method: str, query_contains: str) -> bool:
        """Whether a method was called with a query containing the text"""
        return self.count_calls(method, query_contains) > 0

    def count_calls(self, method: str, query_contains: str) -> int:
        return sum(
            1 for call in self._call_history
            if call[0] == method and query_contains in call[1]
        )


class MockDBContextManager:
    """Context manager mock for get_db_connection"""

    def __init__(self, connection: MockDBConnection = None):
        self.connection = connection or MockDBConnection()

    async def __aenter__(self):
        return self.connection

    async def __aexit__(self, *args):
        return False


def patch_db(connection: MockDBConnection, *modules: str) -> ExitStack:
    """
    Patch get_db_connection where it is imported.

    Usage:
        with patch_db(conn, 'app.services.tickets_service'):
            ...
    """
    stack = ExitStack()
    for module in modules:
        stack.enter_context(patch(
            f'{module}.get_db_connection',
            side_effect=lambda *args, **kwargs: MockDBContextManager(connection)
        ))
    return stack


class GateStore:
    """One ticket and its scan record, shared by the queries of a check-in"""

    def __init__(self, ticket: dict, scanner: dict):
        self.ticket = ticket
        self.scanner = scanner
        self.scan = None
        self.next_scan_id = 100

    def install(self, conn: MockDBConnection):
        conn.set_fetchval_return("SELECT qr_code FROM tickets WHERE id", self.code_for)
        conn.set_fetchrow_return("FROM tickets WHERE qr_code", self.lock_ticket)
        conn.set_fetchrow_return("FROM tickets tk", lambda *args: TicketFactory.detail(self.ticket))
        conn.set_fetchrow_return("FROM scan_history sh", self.fetch_scan)
        conn.set_fetchrow_return("INSERT INTO scan_history", self.insert_scan)
        conn.set_fetchrow_return("FROM users WHERE id", lambda *args: self.scanner)
        conn.set_execute_return("UPDATE tickets SET status = 'used'", self.mark_used)

    def code_for(self, ticket_id):
        return self.ticket["qr_code"] if ticket_id == self.ticket["id"] else None

    def lock_ticket(self, qr_code):
        return self.ticket if qr_code == self.ticket["qr_code"] else None

    def fetch_scan(self, ticket_id):
        if self.scan is None:
            return None
        return {**self.scan, "scanner_name": self.scanner["name"]}

    def insert_scan(self, ticket_id, user_id):
        if self.scan is not None:
            return None
        self.next_scan_id += 1
        self.scan = ScanFactory.create(id=self.next_scan_id, ticket_id=ticket_id, user_id=user_id)
        return self.scan

    def mark_used(self, ticket_id):
        self.ticket = {**self.ticket, "status": "used", "attendance": "attended"}
        return "UPDATE 1"


class MockMidtransGateway:
    """Stand-in for MidtransGateway that never leaves the process"""

    def __init__(self, token: str = "snap-token-123"):
        self.token = token
        self.intents = []

    @property
    def name(self) -> str:
        return "midtrans"

    @property
    def display_name(self) -> str:
        return "Midtrans"

    async def create_payment_intent(self, data):
        from app.services.gateways.base import PaymentIntent

        self.intents.append(data)
        return PaymentIntent(
            order_id=data.order_id,
            token=self.token,
            checkout_url=f"https://app.sandbox.midtrans.com/snap/v2/vtweb/{self.token}",
            amount=data.amount,
            extra_data={"client_key": "client-key"},
        )
