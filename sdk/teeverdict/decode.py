"""
Format-hinted decoding of raw attestation evidence.
"""

import base64
import binascii
import re
from datetime import datetime
from typing import Optional, Union

from .evidence import Evidence, EvidenceKind
from .exceptions import DecodeError
from .nitro import parse_attestation_document
from .quote import parse_quote

DCAP_HINTS = {"sgx": EvidenceKind.SGX, "tdx": EvidenceKind.TDX, "dcap": None}
NITRO_HINTS = {"nitro", "aws-nitro", "nitro-enclave"}

HEX_RE = re.compile(r"^(0x)?[0-9a-fA-F]+$")


def _to_bytes(raw: Union[bytes, bytearray, str]) -> bytes:
    """Accept raw bytes, hex text or base64 text."""
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw)
    if not isinstance(raw, str):
        raise DecodeError(f"Cannot decode evidence from {type(raw).__name__}")

    text = "".join(raw.split())
    if not text:
        raise DecodeError("Empty evidence")
    if HEX_RE.match(text) and len(text) % 2 == 0:
        return bytes.fromhex(text[2:] if text.startswith("0x") else text)
    try:
        return base64.b64decode(text + "=" * (-len(text) % 4), validate=True)
    except (binascii.Error, ValueError):
        pass
    try:
        return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Evidence is neither hex nor base64: {e}")


def decode_evidence(
    raw: Union[bytes, bytearray, str],
    format_hint: str,
    collected_at: Optional[datetime] = None,
) -> Evidence:
    """
    Decode ``raw`` evidence according to ``format_hint``.

    ``"sgx"`` and ``"tdx"`` also require the decoded quote to be of that
    kind; ``"dcap"`` accepts either. ``collected_at`` is only used for DCAP
    quotes, which carry no timestamp of their own.
    """
    hint = (format_hint or "").strip().lower()
    data = _to_bytes(raw)

    if hint in DCAP_HINTS:
        quote = parse_quote(data, collected_at=collected_at)
        expected = DCAP_HINTS[hint]
        if expected is not None and quote.kind is not expected:
            raise DecodeError(
                f"Expected a {expected.value} quote, got {quote.kind.value}", data
            )
        return quote
    if hint in NITRO_HINTS:
        return parse_attestation_document(data)
    raise DecodeError(f"Unknown evidence format {format_hint!r}", data)
