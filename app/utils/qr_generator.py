import qrcode
from io import BytesIO
import secrets
import string
import time
from typing import Optional, List

ORDER_ID_ALPHABET = string.ascii_uppercase + string.digits


def _random_suffix(length: int = 8) -> str:
    return "".join(secrets.choice(ORDER_ID_ALPHABET) for _ in range(length))


def generate_order_id(free: bool = False, now: Optional[int] = None) -> str:
    """
    Order identifier for a transaction.

    Paid path: ORD-<unix seconds>-<8 upper alnum>
    Free path: FREE-<unix seconds>-<8 upper alnum>
    """
    prefix = "FREE" if free else "ORD"
    timestamp = int(now if now is not None else time.time())
    return f"{prefix}-{timestamp}-{_random_suffix()}"


def generate_ticket_code(order_id: str, sequence: int) -> str:
    """QR payload for one ticket: TKT-<order id>-<sequence>-<8 upper hex>"""
    return f"TKT-{order_id}-{sequence}-{secrets.token_hex(4).upper()}"


def generate_ticket_codes(order_id: str, quantity: int, start: int = 1) -> List[str]:
    """Codes for a whole batch, numbered from start"""
    return [generate_ticket_code(order_id, start + i) for i in range(quantity)]


def generate_qr_image(data: str, size: int = 10, border: int = 2) -> bytes:
    """
    Generate QR code image as PNG bytes.
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    # Convert to bytes
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    buffer.seek(0)

    return buffer.getvalue()
