"""
DCAP collateral: TCB info and QE identity.

The structures mirror Intel PCS v3/v4 JSON responses. Each keeps the exact
signed byte span of its body so the TCB check can verify the signature
without re-serializing anything.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional, Sequence, Tuple, Union
from urllib.parse import unquote

from cryptography import x509

from .exceptions import DecodeError
from .quote import extract_certificates


class TcbStatus(str, Enum):
    UP_TO_DATE = "UpToDate"
    SW_HARDENING_NEEDED = "SWHardeningNeeded"
    CONFIGURATION_NEEDED = "ConfigurationNeeded"
    CONFIGURATION_AND_SW_HARDENING_NEEDED = "ConfigurationAndSWHardeningNeeded"
    OUT_OF_DATE = "OutOfDate"
    OUT_OF_DATE_CONFIGURATION_NEEDED = "OutOfDateConfigurationNeeded"
    REVOKED = "Revoked"

    @classmethod
    def parse(cls, value: str) -> "TcbStatus":
        aliases = {
            "ConfigNeeded": cls.CONFIGURATION_NEEDED,
            "ConfigAndSWHardeningNeeded": cls.CONFIGURATION_AND_SW_HARDENING_NEEDED,
            "OutOfDateConfigNeeded": cls.OUT_OF_DATE_CONFIGURATION_NEEDED,
        }
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            raise DecodeError(f"Unknown TCB status: {value}")

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    @property
    def is_out_of_date(self) -> bool:
        return self in (TcbStatus.OUT_OF_DATE, TcbStatus.OUT_OF_DATE_CONFIGURATION_NEEDED)


_STATUS_ORDER = [
    TcbStatus.UP_TO_DATE,
    TcbStatus.SW_HARDENING_NEEDED,
    TcbStatus.CONFIGURATION_NEEDED,
    TcbStatus.CONFIGURATION_AND_SW_HARDENING_NEEDED,
    TcbStatus.OUT_OF_DATE,
    TcbStatus.OUT_OF_DATE_CONFIGURATION_NEEDED,
    TcbStatus.REVOKED,
]


@dataclass(frozen=True)
class TcbLevel:
    sgx_svns: Tuple[int, ...]         # 16 components
    pce_svn: int
    status: TcbStatus
    tdx_svns: Optional[Tuple[int, ...]] = None
    tcb_date: Optional[datetime] = None
    advisory_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TcbInfo:
    id: str                           # "SGX" or "TDX"
    version: int
    issue_date: datetime
    next_update: datetime
    fmspc: str
    pce_id: str
    tcb_evaluation_data_number: int
    levels: Tuple[TcbLevel, ...]      # newest first
    body: bytes
    signature: bytes
    issuer_chain: Tuple[x509.Certificate, ...]

    name = "TCB info"


@dataclass(frozen=True)
class QeTcbLevel:
    isv_svn: int
    status: TcbStatus
    tcb_date: Optional[datetime] = None
    advisory_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class QeIdentity:
    id: str                           # "QE", "TD_QE" or "QVE"
    version: int
    issue_date: datetime
    next_update: datetime
    tcb_evaluation_data_number: int
    miscselect: int
    miscselect_mask: int
    attributes: bytes
    attributes_mask: bytes
    mrsigner: bytes
    isv_prod_id: int
    levels: Tuple[QeTcbLevel, ...]
    body: bytes
    signature: bytes
    issuer_chain: Tuple[x509.Certificate, ...]

    name = "QE identity"


SignedCollateral = Union[TcbInfo, QeIdentity]


@dataclass(frozen=True)
class Collateral:
    """Collateral supplied by the caller for one verification."""

    tcb_info: Optional[TcbInfo] = None
    qe_identity: Optional[QeIdentity] = None
    crls: Tuple[x509.CertificateRevocationList, ...] = ()

    def signed_items(self) -> Iterator[SignedCollateral]:
        if self.tcb_info is not None:
            yield self.tcb_info
        if self.qe_identity is not None:
            yield self.qe_identity


EMPTY_COLLATERAL = Collateral()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp as used by Intel PCS ("...Z")."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise DecodeError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _signed_span(text: str, key: str) -> Tuple[Any, bytes]:
    """Return the decoded value of top-level ``key`` and its exact source bytes."""
    match = re.search(r'"%s"\s*:\s*' % re.escape(key), text)
    if match is None:
        raise DecodeError(f"Collateral is missing {key}")
    try:
        value, end = json.JSONDecoder().raw_decode(text, match.end())
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid {key} JSON: {e}")
    return value, text[match.end():end].encode("utf-8")


def _signature(document: dict) -> bytes:
    try:
        signature = bytes.fromhex(document["signature"])
    except (KeyError, TypeError, ValueError):
        raise DecodeError("Collateral signature missing or not hex")
    if len(signature) != 64:
        raise DecodeError(f"Collateral signature must be 64 bytes, got {len(signature)}")
    return signature


def _issuer_chain(chain: Union[str, bytes, Sequence[x509.Certificate]]) -> Tuple[x509.Certificate, ...]:
    if isinstance(chain, str):
        chain = unquote(chain).encode()
    if isinstance(chain, bytes):
        return tuple(extract_certificates(chain))
    return tuple(chain)


def _text(response: Union[str, bytes]) -> str:
    if isinstance(response, bytes):
        try:
            return response.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Collateral is not UTF-8: {e}")
    return response


def _sgx_components(tcb: dict) -> Tuple[int, ...]:
    if "sgxtcbcomponents" in tcb:
        components = tuple(int(c.get("svn", 0)) for c in tcb["sgxtcbcomponents"])
    else:
        components = tuple(int(tcb.get(f"sgxtcbcomp{i:02d}svn", 0)) for i in range(1, 17))
    if len(components) != 16:
        raise DecodeError(f"TCB level must have 16 SGX components, got {len(components)}")
    return components


def parse_tcb_info(
    response: Union[str, bytes],
    issuer_chain: Union[str, bytes, Sequence[x509.Certificate]],
) -> TcbInfo:
    """
    Parse a PCS TCB info response ``{"tcbInfo": {...}, "signature": "..."}``.

    ``issuer_chain`` is the TCB-Info-Issuer-Chain header (URL-encoded PEM),
    raw PEM bytes, or already loaded certificates (signing cert first).
    """
    text = _text(response)
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid TCB info JSON: {e}")
    info, body = _signed_span(text, "tcbInfo")

    try:
        levels = []
        for level in info["tcbLevels"]:
            tcb = level["tcb"]
            tdx = tcb.get("tdxtcbcomponents")
            levels.append(TcbLevel(
                sgx_svns=_sgx_components(tcb),
                pce_svn=int(tcb["pcesvn"]),
                status=TcbStatus.parse(level["tcbStatus"]),
                tdx_svns=tuple(int(c.get("svn", 0)) for c in tdx) if tdx is not None else None,
                tcb_date=parse_timestamp(level["tcbDate"]) if level.get("tcbDate") else None,
                advisory_ids=tuple(level.get("advisoryIDs", [])),
            ))
        return TcbInfo(
            id=info.get("id", "SGX"),
            version=int(info["version"]),
            issue_date=parse_timestamp(info["issueDate"]),
            next_update=parse_timestamp(info["nextUpdate"]),
            fmspc=str(info["fmspc"]).upper(),
            pce_id=str(info.get("pceId", "")),
            tcb_evaluation_data_number=int(info.get("tcbEvaluationDataNumber", 0)),
            levels=tuple(levels),
            body=body,
            signature=_signature(document),
            issuer_chain=_issuer_chain(issuer_chain),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Malformed TCB info: {e}")


def parse_qe_identity(
    response: Union[str, bytes],
    issuer_chain: Union[str, bytes, Sequence[x509.Certificate]],
) -> QeIdentity:
    """Parse a PCS enclave identity response ``{"enclaveIdentity": {...}, "signature": "..."}``."""
    text = _text(response)
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid QE identity JSON: {e}")
    identity, body = _signed_span(text, "enclaveIdentity")

    try:
        levels = tuple(
            QeTcbLevel(
                isv_svn=int(level["tcb"]["isvsvn"]),
                status=TcbStatus.parse(level["tcbStatus"]),
                tcb_date=parse_timestamp(level["tcbDate"]) if level.get("tcbDate") else None,
                advisory_ids=tuple(level.get("advisoryIDs", [])),
            )
            for level in identity["tcbLevels"]
        )
        return QeIdentity(
            id=identity.get("id", "QE"),
            version=int(identity["version"]),
            issue_date=parse_timestamp(identity["issueDate"]),
            next_update=parse_timestamp(identity["nextUpdate"]),
            tcb_evaluation_data_number=int(identity.get("tcbEvaluationDataNumber", 0)),
            miscselect=int(identity["miscselect"], 16),
            miscselect_mask=int(identity["miscselectMask"], 16),
            attributes=bytes.fromhex(identity["attributes"]),
            attributes_mask=bytes.fromhex(identity["attributesMask"]),
            mrsigner=bytes.fromhex(identity["mrsigner"]),
            isv_prod_id=int(identity["isvprodid"]),
            levels=levels,
            body=body,
            signature=_signature(document),
            issuer_chain=_issuer_chain(issuer_chain),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Malformed QE identity: {e}")
