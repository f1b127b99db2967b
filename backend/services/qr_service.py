"""QR code encoding for booking passes."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from io import BytesIO
from typing import Any

import qrcode

from backend.domain.errors import QrEncodingError
from backend.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class QrPayload:
    """Fields printed on a booking pass; the encoded image is opaque to callers."""

    booking_code: str
    temple_name: str
    date: str
    time_window: str
    visitors: int
    user_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "bookingId": self.booking_code,
            "temple": self.temple_name,
            "date": self.date,
            "time": self.time_window,
            "visitors": self.visitors,
            "user": self.user_name,
        }


class QrCodeService:
    """Render booking payloads as PNG data URLs."""

    def __init__(self, box_size: int = 10, border: int = 4) -> None:
        self._box_size = box_size
        self._border = border

    def encode(self, payload: QrPayload) -> str:
        try:
            qr = qrcode.QRCode(version=None, box_size=self._box_size, border=self._border)
            qr.add_data(json.dumps(payload.to_dict(), separators=(",", ":")))
            qr.make(fit=True)
            image = qr.make_image(fill_color="black", back_color="white")
            buffer = BytesIO()
            image.save(buffer, format="PNG")
        except Exception as exc:
            logger.exception("QR encoding failed for booking %s", payload.booking_code)
            raise QrEncodingError(f"Failed to generate QR code: {exc}") from exc
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:image/png;base64,{encoded}"
