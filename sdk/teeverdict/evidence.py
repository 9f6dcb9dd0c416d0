"""
Typed attestation evidence.

Evidence is a tagged union of three frozen variants: SGX DCAP quotes, TDX
quotes and AWS Nitro attestation documents. Every variant exposes the same
read-only surface (kind, certificate chain, measurements, report data,
timestamp, nonce) so checks never have to inspect concrete types.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple, Union

from cryptography import x509


class EvidenceKind(str, Enum):
    SGX = "SGX"
    TDX = "TDX"
    NITRO = "NITRO"


DCAP_KINDS = frozenset({EvidenceKind.SGX, EvidenceKind.TDX})
ALL_KINDS = frozenset(EvidenceKind)


@dataclass(frozen=True)
class QuoteHeader:
    """DCAP quote header structure (48 bytes)."""
    version: int              # 2 bytes
    att_key_type: int         # 2 bytes (2 = ECDSA-256-with-P-256)
    tee_type: int             # 4 bytes (0x00 = SGX, 0x81 = TDX)
    qe_svn: int               # 2 bytes
    pce_svn: int              # 2 bytes
    qe_vendor_id: bytes       # 16 bytes (Intel QE: 939a7233...)
    user_data: bytes          # 20 bytes


@dataclass(frozen=True)
class EnclaveReport:
    """SGX report body structure (384 bytes), used for enclaves and the QE."""
    cpu_svn: bytes            # 16 bytes
    misc_select: int          # 4 bytes
    attributes: bytes         # 16 bytes
    mr_enclave: bytes         # 32 bytes
    mr_signer: bytes          # 32 bytes
    isv_prod_id: int          # 2 bytes
    isv_svn: int              # 2 bytes
    report_data: bytes        # 64 bytes


@dataclass(frozen=True)
class TDReport:
    """TD report body structure (584 bytes)."""
    tee_tcb_svn: bytes        # 16 bytes
    mr_seam: bytes            # 48 bytes
    mr_signer_seam: bytes     # 48 bytes
    seam_attributes: bytes    # 8 bytes
    td_attributes: bytes      # 8 bytes
    xfam: bytes               # 8 bytes
    mr_td: bytes              # 48 bytes
    mr_config_id: bytes       # 48 bytes
    mr_owner: bytes           # 48 bytes
    mr_owner_config: bytes    # 48 bytes
    rtmr0: bytes              # 48 bytes
    rtmr1: bytes              # 48 bytes
    rtmr2: bytes              # 48 bytes
    rtmr3: bytes              # 48 bytes
    report_data: bytes        # 64 bytes


@dataclass(frozen=True)
class PckTcb:
    """Platform TCB recorded in the PCK certificate's SGX extension."""
    cpu_svn_components: Tuple[int, ...]   # 16 components
    pce_svn: int


@dataclass(frozen=True)
class QuoteSignature:
    """ECDSA quote signature data and its certification data."""
    ecdsa_signature: bytes    # 64 bytes (r || s)
    attestation_key: bytes    # 64 bytes (x || y)
    qe_report: EnclaveReport
    qe_report_raw: bytes      # 384 bytes, as signed by the PCK key
    qe_report_signature: bytes  # 64 bytes (r || s)
    qe_auth_data: bytes
    cert_data_type: int
    pck_chain: Tuple[x509.Certificate, ...]


@dataclass(frozen=True)
class SgxQuote:
    """Parsed SGX DCAP quote."""
    header: QuoteHeader
    report: EnclaveReport
    signature: QuoteSignature
    signed_data: bytes        # header + report body
    fmspc: Optional[str] = None
    pck_tcb: Optional[PckTcb] = None
    collected_at: Optional[datetime] = None

    kind = EvidenceKind.SGX

    @property
    def cert_chain(self) -> Tuple[x509.Certificate, ...]:
        return self.signature.pck_chain

    @property
    def report_data(self) -> bytes:
        return self.report.report_data

    @property
    def timestamp(self) -> Optional[datetime]:
        return self.collected_at

    @property
    def nonce(self) -> Optional[bytes]:
        return None

    @property
    def measurements(self) -> Dict[str, str]:
        return {
            "mrenclave": self.report.mr_enclave.hex(),
            "mrsigner": self.report.mr_signer.hex(),
            "isv_prod_id": str(self.report.isv_prod_id),
            "isv_svn": str(self.report.isv_svn),
            "attributes": self.report.attributes.hex(),
            "misc_select": f"{self.report.misc_select:08x}",
        }


@dataclass(frozen=True)
class TdxQuote:
    """Parsed TDX DCAP quote."""
    header: QuoteHeader
    report: TDReport
    signature: QuoteSignature
    signed_data: bytes
    fmspc: Optional[str] = None
    pck_tcb: Optional[PckTcb] = None
    collected_at: Optional[datetime] = None

    kind = EvidenceKind.TDX

    @property
    def cert_chain(self) -> Tuple[x509.Certificate, ...]:
        return self.signature.pck_chain

    @property
    def report_data(self) -> bytes:
        return self.report.report_data

    @property
    def timestamp(self) -> Optional[datetime]:
        return self.collected_at

    @property
    def nonce(self) -> Optional[bytes]:
        return None

    @property
    def measurements(self) -> Dict[str, str]:
        r = self.report
        return {
            "mr_seam": r.mr_seam.hex(),
            "mr_signer_seam": r.mr_signer_seam.hex(),
            "td_attributes": r.td_attributes.hex(),
            "xfam": r.xfam.hex(),
            "mr_td": r.mr_td.hex(),
            "mr_config_id": r.mr_config_id.hex(),
            "mr_owner": r.mr_owner.hex(),
            "mr_owner_config": r.mr_owner_config.hex(),
            "rtmr0": r.rtmr0.hex(),
            "rtmr1": r.rtmr1.hex(),
            "rtmr2": r.rtmr2.hex(),
            "rtmr3": r.rtmr3.hex(),
        }


@dataclass(frozen=True)
class NitroDocument:
    """Parsed AWS Nitro Enclaves attestation document (COSE_Sign1)."""
    protected: bytes          # serialized protected header
    payload: bytes            # serialized CBOR payload, as signed
    signature: bytes          # raw r || s
    algorithm: Optional[int]  # COSE alg id from the protected header
    module_id: str
    digest: str
    issued_at: datetime
    pcrs: Mapping[int, bytes]
    certificate: x509.Certificate
    cabundle: Tuple[x509.Certificate, ...]   # root first, as shipped
    public_key: Optional[bytes] = None
    user_data: Optional[bytes] = None
    nonce_value: Optional[bytes] = None

    kind = EvidenceKind.NITRO

    @property
    def cert_chain(self) -> Tuple[x509.Certificate, ...]:
        # leaf first, then intermediates towards the root
        return (self.certificate,) + tuple(reversed(self.cabundle))

    @property
    def report_data(self) -> bytes:
        return self.user_data or b""

    @property
    def timestamp(self) -> Optional[datetime]:
        return self.issued_at

    @property
    def nonce(self) -> Optional[bytes]:
        return self.nonce_value

    @property
    def measurements(self) -> Dict[str, str]:
        values = {f"pcr{index}": value.hex() for index, value in sorted(self.pcrs.items())}
        values["module_id"] = self.module_id
        return values


Evidence = Union[SgxQuote, TdxQuote, NitroDocument]
