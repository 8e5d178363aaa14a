"""
Tests for order ids, ticket codes and QR images.
"""
import re
import pytest
from httpx import AsyncClient
from unittest.mock import patch, AsyncMock

from app.core.permissions import Role
from app.core.exceptions import AuthorizationError
from app.utils.qr_generator import (
    generate_order_id, generate_ticket_code, generate_ticket_codes, generate_qr_image
)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class TestOrderId:

    def test_paid_order_id_format(self):
        order_id = generate_order_id(now=1767225600)
        assert re.fullmatch(r"ORD-1767225600-[A-Z0-9]{8}", order_id)

    def test_free_order_id_format(self):
        order_id = generate_order_id(free=True, now=1767225600)
        assert re.fullmatch(r"FREE-1767225600-[A-Z0-9]{8}", order_id)

    def test_order_ids_are_unique(self):
        ids = {generate_order_id(now=1767225600) for _ in range(200)}
        assert len(ids) == 200


class TestTicketCode:

    def test_code_embeds_order_and_sequence(self):
        code = generate_ticket_code("ORD-1767225600-AB12CD34", 3)

        assert re.fullmatch(r"TKT-ORD-1767225600-AB12CD34-3-[0-9A-F]{8}", code)

    def test_batch_is_numbered_from_start(self):
        codes = generate_ticket_codes("FREE-1767225600-ZZZZ0000", 3, start=4)

        for sequence, code in zip((4, 5, 6), codes):
            assert re.fullmatch(rf"TKT-FREE-1767225600-ZZZZ0000-{sequence}-[0-9A-F]{{8}}", code)
        assert len(set(codes)) == 3


class TestQRImage:

    def test_generate_png(self):
        image = generate_qr_image("TKT-ORD-1767225600-AB12CD34-1-0A0B0C0D")
        assert image.startswith(PNG_SIGNATURE)


class TestQRImageEndpoint:
    """GET /api/tiket/{id}/qr-image"""

    @pytest.mark.asyncio
    async def test_returns_png(self, client: AsyncClient, login_as):
        login_as(3, Role.USER)
        code = "TKT-ORD-1767225600-AB12CD34-1-0A0B0C0D"

        with patch('app.services.tickets_service.get_ticket_code', new_callable=AsyncMock, return_value=code):
            response = await client.get("/api/tiket/10/qr-image")

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.headers["x-ticket-code"] == code
        assert response.content.startswith(PNG_SIGNATURE)

    @pytest.mark.asyncio
    async def test_foreign_ticket_is_forbidden(self, client: AsyncClient, login_as):
        login_as(3, Role.USER)

        with patch(
            'app.services.tickets_service.get_ticket_code',
            new_callable=AsyncMock,
            side_effect=AuthorizationError("You can only view your own tickets")
        ):
            response = await client.get("/api/tiket/10/qr-image")

        assert response.status_code == 403
        assert response.json() == {"success": False, "message": "You can only view your own tickets"}
