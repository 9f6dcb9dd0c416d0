"""
Caller-supplied reference values: what the relying party expects to see.

These change per application (allow-lists) or per request (nonces,
report-data bindings), so they travel next to the policy instead of inside
it.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Mapping, Optional, Tuple

from cryptography.hazmat.primitives import serialization

from . import config
from .exceptions import ConfigurationError

REPORT_DATA_SIZE = 64


@dataclass(frozen=True)
class ReferenceValues:
    measurements: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    report_data: Optional[bytes] = None
    nonce: Optional[bytes] = None
    max_evidence_age: Optional[timedelta] = None
    max_collateral_age: Optional[timedelta] = None
    min_tcb_evaluation_data_number: Optional[int] = None
    clock_skew: timedelta = field(
        default_factory=lambda: timedelta(seconds=config.CLOCK_SKEW_SEC)
    )

    def __post_init__(self) -> None:
        normalized = {}
        for name, allowed in dict(self.measurements).items():
            if isinstance(allowed, str):
                allowed = (allowed,)
            values = tuple(str(value).lower() for value in allowed)
            if not values:
                raise ConfigurationError(f"Allow-list for {name} is empty")
            normalized[str(name).lower()] = values
        object.__setattr__(self, "measurements", normalized)

        for label in ("max_evidence_age", "max_collateral_age", "clock_skew"):
            value = getattr(self, label)
            if value is not None and value < timedelta(0):
                raise ConfigurationError(f"{label} must not be negative")

    @classmethod
    def from_allowlist(cls, allowlist: Mapping[str, Any]) -> "ReferenceValues":
        """
        Build reference values from an allow-list document.

        Expected shape::

            {
              "measurements": {"mrenclave": ["abc123..."], "mrsigner": "..."},
              "report_data": "<hex>",
              "nonce": "<hex>",
              "max_evidence_age_sec": 300,
              "max_collateral_age_sec": 2592000,
              "min_tcb_evaluation_data_number": 17
            }
        """
        try:
            measurements = allowlist.get("measurements") or {}
            report_data = _hex_or_none(allowlist.get("report_data"))
            nonce = _hex_or_none(allowlist.get("nonce"))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid allow-list: {e}")

        kwargs: dict = {
            "measurements": measurements,
            "report_data": report_data,
            "nonce": nonce,
            "max_evidence_age": _seconds_or_none(allowlist.get("max_evidence_age_sec")),
            "max_collateral_age": _seconds_or_none(allowlist.get("max_collateral_age_sec")),
            "min_tcb_evaluation_data_number": allowlist.get("min_tcb_evaluation_data_number"),
        }
        if allowlist.get("clock_skew_sec") is not None:
            kwargs["clock_skew"] = timedelta(seconds=int(allowlist["clock_skew_sec"]))
        return cls(**kwargs)


def _hex_or_none(value: Optional[str]) -> Optional[bytes]:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise TypeError(f"expected a hex string, got {type(value).__name__}")
    if value.startswith("0x"):
        value = value[2:]
    return bytes.fromhex(value)


def _seconds_or_none(value: Optional[Any]) -> Optional[timedelta]:
    if value is None:
        return None
    return timedelta(seconds=int(value))


def padded_report_data(value: bytes) -> bytes:
    """Right-pad a binding value with zeros to the 64-byte report-data field."""
    if len(value) > REPORT_DATA_SIZE:
        raise ConfigurationError(
            f"Report data too long: {len(value)} > {REPORT_DATA_SIZE}"
        )
    return value.ljust(REPORT_DATA_SIZE, b"\x00")


def report_data_for_key(public_key) -> bytes:
    """SHA-256 of the key's SubjectPublicKeyInfo, zero-padded to 64 bytes."""
    data = public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return padded_report_data(hashlib.sha256(data).digest())
