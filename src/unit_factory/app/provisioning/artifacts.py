"""QR identity artifacts for production units.

Each unit carries a scannable QR code whose payload is a URL of the form::

    {app_base_url}/unit/{uuid}

The uuid is an opaque identifier minted per unit, not the serial number, so
serial re-allocation leaves the artifact unchanged. The image is
rendered at error-correction level H with a mark at the center (a white disc,
optionally carrying a logo), which level H can absorb.

Rendering is pure: the same identifier and mark produce the same PNG bytes.
"""

from __future__ import annotations

import io
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import qrcode
from PIL import Image, ImageDraw
from qrcode.constants import ERROR_CORRECT_H
from qrcode.exceptions import DataOverflowError

from ..errors import ArtifactGenerationFailed
from ..settings import DEFAULT_APP_BASE_URL, DEFAULT_QR_SIZE_PX

logger = logging.getLogger(__name__)

ARTIFACT_CONTENT_TYPE = "image/png"
UNIT_PATH_SEGMENT = "unit"

# Share of the QR width covered by the center disc. Level H recovers ~30%.
MARK_RATIO = 0.27
# Share of the disc covered by the logo, when one is configured.
LOGO_RATIO = 0.7


def build_payload(identifier: str, app_base_url: str = DEFAULT_APP_BASE_URL) -> str:
    return f"{app_base_url.rstrip('/')}/{UNIT_PATH_SEGMENT}/{identifier}"


def parse_artifact_payload(
    scanned_text: str,
    app_base_url: str = DEFAULT_APP_BASE_URL,
) -> str:
    """Extract the unit uuid from a scanned QR payload.

    Raises ValueError when the host does not match ``app_base_url`` or the
    path is not ``/unit/{uuid}``.
    """
    parsed = urlparse(scanned_text.strip())
    expected_host = urlparse(app_base_url).hostname
    if not parsed.hostname or parsed.hostname != expected_host:
        raise ValueError(
            f"invalid QR code: wrong domain (expected {expected_host}, got {parsed.hostname})"
        )
    segments = [s for s in parsed.path.split("/") if s]
    if len(segments) != 2 or segments[0] != UNIT_PATH_SEGMENT:
        raise ValueError("invalid QR code: expected /unit/{uuid}")
    try:
        return str(uuid.UUID(segments[1]))
    except ValueError:
        raise ValueError(f"invalid QR code: {segments[1]!r} is not a uuid") from None


def artifact_key(identifier: str) -> str:
    """Blob key for a unit's QR image."""
    return f"qr-codes/{identifier}.png"


@dataclass(frozen=True, slots=True)
class QrArtifactGenerator:
    """Render QR PNGs with an embedded center mark."""

    app_base_url: str = DEFAULT_APP_BASE_URL
    size_px: int = DEFAULT_QR_SIZE_PX
    mark_path: Path | None = None
    box_size: int = 10
    border: int = 4

    def generate(self, identifier: str) -> bytes:
        """Return PNG bytes for ``identifier``.

        Raises:
            ArtifactGenerationFailed: the payload does not fit at level H, or
                the mark image cannot be read.
        """
        payload = build_payload(identifier, self.app_base_url)
        qr = qrcode.QRCode(
            version=None,
            error_correction=ERROR_CORRECT_H,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(payload)
        try:
            qr.make(fit=True)
        except (DataOverflowError, ValueError) as exc:
            raise ArtifactGenerationFailed(identifier, f"payload does not fit: {exc}") from exc

        code = qr.make_image(fill_color="black", back_color="white").get_image()
        code = code.convert("RGB").resize((self.size_px, self.size_px), Image.Resampling.NEAREST)
        self._embed_mark(code, identifier)

        buf = io.BytesIO()
        code.save(buf, format="PNG", optimize=False)
        data = buf.getvalue()
        logger.debug("QR artifact rendered for %s (%d bytes)", identifier, len(data))
        return data

    def _embed_mark(self, code: Image.Image, identifier: str) -> None:
        disc = max(1, int(self.size_px * MARK_RATIO))
        origin = (self.size_px - disc) // 2
        draw = ImageDraw.Draw(code)
        draw.ellipse(
            (origin, origin, origin + disc - 1, origin + disc - 1),
            fill="white",
        )
        if self.mark_path is None:
            return

        try:
            with Image.open(self.mark_path) as raw:
                logo = raw.convert("RGBA")
        except OSError as exc:
            raise ArtifactGenerationFailed(
                identifier, f"cannot load mark {self.mark_path}: {exc}"
            ) from exc

        logo_size = max(1, int(disc * LOGO_RATIO))
        logo = logo.resize((logo_size, logo_size), Image.Resampling.LANCZOS)
        offset = origin + (disc - logo_size) // 2
        code.paste(logo, (offset, offset), logo)
