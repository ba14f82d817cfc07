import io
import random
import secrets
import time
import uuid

import qrcode

from errors import InfrastructureFailure
from models import utcnow

ID_ATTEMPTS = 20


def generate_ticket_id() -> str:
    """Generate a ticket ID like ESP2026-482913"""
    return f"ESP{utcnow().year}-{random.randint(100000, 999999)}"


def generate_ticket_qr(ticket_id: str) -> str:
    """Opaque QR payload: the ticket id plus a random suffix"""
    return f"{ticket_id}-{uuid.uuid4().hex[:8]}"


def generate_transaction_id() -> str:
    return f"TXN{int(time.time() * 1000)}{random.randint(0, 999):03d}"


def generate_refund_id() -> str:
    return f"REF{int(time.time() * 1000)}{random.randint(0, 999):03d}"


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


def generate_access_code(user_id: str) -> str:
    """Temporary access code: user suffix, base36 clock and a random tail"""
    return f"{user_id[-6:]}-{_base36(int(time.time() * 1000))}-{secrets.token_hex(4)}"


def unique_id(generate, exists, taken=()) -> str:
    """Draw ids from ``generate`` until one is neither in ``taken`` nor ``exists``"""
    for _ in range(ID_ATTEMPTS):
        candidate = generate()
        if candidate not in taken and not exists(candidate):
            return candidate
    raise InfrastructureFailure("Unable to allocate a unique identifier")


def render_qr_png(data: str) -> bytes:
    """Render a QR code for ``data`` as PNG bytes"""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer)
    return buffer.getvalue()
