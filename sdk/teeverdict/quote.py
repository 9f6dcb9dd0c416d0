"""
DCAP quote decoding.

Parses SGX (v3 and v4) and TDX (v4) ECDSA quotes into the typed evidence
structures the checks consume. Decoding never verifies anything; it only
refuses input that cannot be laid out as a quote.
"""

import struct
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple, Union

from cryptography import x509

from .evidence import EnclaveReport, PckTcb, QuoteHeader, QuoteSignature, SgxQuote, TDReport, TdxQuote
from .exceptions import DecodeError

HEADER_SIZE = 48
ENCLAVE_REPORT_SIZE = 384
TD_REPORT_SIZE = 584

TEE_TYPE_SGX = 0x00
TEE_TYPE_TDX = 0x81

ATT_KEY_TYPE_ECDSA_P256 = 2

CERT_DATA_PCK_CHAIN = 5
CERT_DATA_QE_REPORT = 6

INTEL_QE_VENDOR_ID = bytes.fromhex("939a7233f79c4ca9940a0db3957f0607")

SGX_EXTENSIONS_OID = x509.ObjectIdentifier("1.2.840.113741.1.13.1")
# DER body of OID 1.2.840.113741.1.13.1; children append one arc byte
SGX_OID_PREFIX = bytes.fromhex("2a864886f84d010d01")
SGX_OID_TCB = SGX_OID_PREFIX + b"\x02"
SGX_OID_FMSPC = SGX_OID_PREFIX + b"\x04"
PCE_SVN_ARC = 17

DER_INTEGER = 0x02
DER_OCTET_STRING = 0x04
DER_OID = 0x06
DER_SEQUENCE = 0x30

PEM_BEGIN = b"-----BEGIN CERTIFICATE-----"
PEM_END = b"-----END CERTIFICATE-----"


def parse_quote_header(data: bytes) -> QuoteHeader:
    """Parse the 48-byte quote header."""
    if len(data) < HEADER_SIZE:
        raise DecodeError("Quote header too short", data)

    version, att_key_type, tee_type, qe_svn, pce_svn = struct.unpack("<HHIHH", data[0:12])
    return QuoteHeader(
        version=version,
        att_key_type=att_key_type,
        tee_type=tee_type,
        qe_svn=qe_svn,
        pce_svn=pce_svn,
        qe_vendor_id=data[12:28],
        user_data=data[28:48],
    )


def parse_enclave_report(data: bytes) -> EnclaveReport:
    """Parse a 384-byte SGX report body."""
    if len(data) < ENCLAVE_REPORT_SIZE:
        raise DecodeError(f"Enclave report too short: {len(data)} < {ENCLAVE_REPORT_SIZE}", data)

    return EnclaveReport(
        cpu_svn=data[0:16],
        misc_select=struct.unpack("<I", data[16:20])[0],
        attributes=data[48:64],
        mr_enclave=data[64:96],
        mr_signer=data[128:160],
        isv_prod_id=struct.unpack("<H", data[256:258])[0],
        isv_svn=struct.unpack("<H", data[258:260])[0],
        report_data=data[320:384],
    )


def parse_td_report(data: bytes) -> TDReport:
    """Parse the 584-byte TD report body."""
    if len(data) < TD_REPORT_SIZE:
        raise DecodeError(f"TD report too short: {len(data)} < {TD_REPORT_SIZE}", data)

    offset = 0

    def read(size: int) -> bytes:
        nonlocal offset
        result = data[offset:offset + size]
        offset += size
        return result

    return TDReport(
        tee_tcb_svn=read(16),
        mr_seam=read(48),
        mr_signer_seam=read(48),
        seam_attributes=read(8),
        td_attributes=read(8),
        xfam=read(8),
        mr_td=read(48),
        mr_config_id=read(48),
        mr_owner=read(48),
        mr_owner_config=read(48),
        rtmr0=read(48),
        rtmr1=read(48),
        rtmr2=read(48),
        rtmr3=read(48),
        report_data=read(64),
    )


class _Cursor:
    def __init__(self, data: bytes, what: str):
        self.data = data
        self.offset = 0
        self.what = what

    def take(self, size: int) -> bytes:
        if self.offset + size > len(self.data):
            raise DecodeError(
                f"{self.what} truncated at offset {self.offset} (need {size} bytes)",
                self.data,
            )
        result = self.data[self.offset:self.offset + size]
        self.offset += size
        return result

    def u16(self) -> int:
        return struct.unpack("<H", self.take(2))[0]

    def u32(self) -> int:
        return struct.unpack("<I", self.take(4))[0]


def extract_certificates(cert_data: bytes) -> List[x509.Certificate]:
    """Extract X.509 certificates from PEM-encoded data, in order."""
    certs = []
    for part in cert_data.split(PEM_END):
        start = part.find(PEM_BEGIN)
        if start == -1:
            continue
        pem = part[start:] + PEM_END
        try:
            certs.append(x509.load_pem_x509_certificate(pem))
        except ValueError as e:
            raise DecodeError(f"Invalid certificate in certification data: {e}", cert_data)
    return certs


def _der_items(data: bytes) -> Iterator[Tuple[int, bytes]]:
    """Iterate (tag, content) pairs of consecutive DER TLVs."""
    offset = 0
    while offset < len(data):
        if offset + 2 > len(data):
            raise DecodeError("Truncated DER element", data)
        tag = data[offset]
        length = data[offset + 1]
        offset += 2
        if length & 0x80:
            count = length & 0x7F
            length = int.from_bytes(data[offset:offset + count], "big")
            offset += count
        content = data[offset:offset + length]
        if len(content) != length:
            raise DecodeError("Truncated DER element", data)
        offset += length
        yield tag, content


def _sgx_extension_entries(cert: x509.Certificate) -> Dict[bytes, Tuple[int, bytes]]:
    """Map OID body -> (tag, content) for the top-level SGX extension entries."""
    try:
        ext = cert.extensions.get_extension_for_oid(SGX_EXTENSIONS_OID)
    except x509.ExtensionNotFound:
        return {}
    value = getattr(ext.value, "value", b"")
    entries = {}
    for tag, outer in _der_items(value):
        if tag != DER_SEQUENCE:
            continue
        for tag, body in _der_items(outer):
            if tag != DER_SEQUENCE:
                continue
            items = list(_der_items(body))
            if len(items) == 2 and items[0][0] == DER_OID:
                entries[items[0][1]] = items[1]
    return entries


def extract_fmspc_from_cert(cert: x509.Certificate) -> Optional[str]:
    """
    Extract FMSPC (Family-Model-Stepping-Platform-CustomSKU) from a PCK
    certificate's SGX extension (1.2.840.113741.1.13.1).
    """
    tag, content = _sgx_extension_entries(cert).get(SGX_OID_FMSPC, (None, b""))
    if tag != DER_OCTET_STRING or len(content) != 6:
        return None
    return content.hex().upper()


def extract_pck_tcb(cert: x509.Certificate) -> Optional[PckTcb]:
    """Extract the platform TCB (16 CPUSVN components and PCESVN) from a PCK certificate."""
    tag, content = _sgx_extension_entries(cert).get(SGX_OID_TCB, (None, b""))
    if tag != DER_SEQUENCE:
        return None

    svns: Dict[int, int] = {}
    for item_tag, item in _der_items(content):
        if item_tag != DER_SEQUENCE:
            continue
        parts = list(_der_items(item))
        if len(parts) != 2 or parts[0][0] != DER_OID or parts[1][0] != DER_INTEGER:
            continue
        oid = parts[0][1]
        if oid[:-1] != SGX_OID_TCB:
            continue
        svns[oid[-1]] = int.from_bytes(parts[1][1], "big")

    components = tuple(svns.get(arc) for arc in range(1, 17))
    if None in components or PCE_SVN_ARC not in svns:
        return None
    return PckTcb(cpu_svn_components=components, pce_svn=svns[PCE_SVN_ARC])


def _parse_qe_certification(cursor: _Cursor) -> Tuple[EnclaveReport, bytes, bytes, bytes, int, bytes]:
    qe_report_raw = cursor.take(ENCLAVE_REPORT_SIZE)
    qe_report_signature = cursor.take(64)
    qe_auth_data = cursor.take(cursor.u16())
    cert_data_type = cursor.u16()
    cert_data = cursor.take(cursor.u32())
    return (
        parse_enclave_report(qe_report_raw),
        qe_report_raw,
        qe_report_signature,
        qe_auth_data,
        cert_data_type,
        cert_data,
    )


def parse_signature_data(sig_data: bytes, version: int) -> QuoteSignature:
    """Parse the ECDSA quote signature data for quote ``version``."""
    cursor = _Cursor(sig_data, "Signature data")
    ecdsa_signature = cursor.take(64)
    attestation_key = cursor.take(64)

    if version == 3:
        qe_report, qe_raw, qe_sig, qe_auth, cert_type, cert_data = _parse_qe_certification(cursor)
    elif version == 4:
        outer_type = cursor.u16()
        outer = cursor.take(cursor.u32())
        if outer_type != CERT_DATA_QE_REPORT:
            raise DecodeError(
                f"Unsupported v4 certification data type {outer_type} (expected {CERT_DATA_QE_REPORT})",
                sig_data,
            )
        inner = _Cursor(outer, "QE report certification data")
        qe_report, qe_raw, qe_sig, qe_auth, cert_type, cert_data = _parse_qe_certification(inner)
    else:
        raise DecodeError(f"Unsupported quote version {version}", sig_data)

    chain: Tuple[x509.Certificate, ...] = ()
    if cert_type == CERT_DATA_PCK_CHAIN:
        chain = tuple(extract_certificates(cert_data))

    return QuoteSignature(
        ecdsa_signature=ecdsa_signature,
        attestation_key=attestation_key,
        qe_report=qe_report,
        qe_report_raw=qe_raw,
        qe_report_signature=qe_sig,
        qe_auth_data=qe_auth,
        cert_data_type=cert_type,
        pck_chain=chain,
    )


def parse_quote(
    quote_bytes: bytes,
    collected_at: Optional[datetime] = None,
) -> Union[SgxQuote, TdxQuote]:
    """
    Parse a complete DCAP quote.

    ``collected_at`` is when the relying party obtained the quote; DCAP
    quotes carry no timestamp of their own.
    """
    if len(quote_bytes) < HEADER_SIZE + ENCLAVE_REPORT_SIZE + 4:
        raise DecodeError(f"Quote too short: {len(quote_bytes)} bytes", quote_bytes)

    header = parse_quote_header(quote_bytes[0:HEADER_SIZE])
    if header.version not in (3, 4):
        raise DecodeError(f"Unsupported quote version {header.version}", quote_bytes)
    if header.att_key_type != ATT_KEY_TYPE_ECDSA_P256:
        raise DecodeError(
            f"Unsupported attestation key type {header.att_key_type} (expected ECDSA-256-with-P-256)",
            quote_bytes,
        )

    if header.version == 3 or header.tee_type == TEE_TYPE_SGX:
        body_size = ENCLAVE_REPORT_SIZE
    elif header.tee_type == TEE_TYPE_TDX:
        body_size = TD_REPORT_SIZE
    else:
        raise DecodeError(f"Unknown TEE type {header.tee_type:#x}", quote_bytes)

    body_end = HEADER_SIZE + body_size
    if len(quote_bytes) < body_end + 4:
        raise DecodeError(f"Quote too short: {len(quote_bytes)} bytes", quote_bytes)

    sig_len = struct.unpack("<I", quote_bytes[body_end:body_end + 4])[0]
    if len(quote_bytes) < body_end + 4 + sig_len:
        raise DecodeError("Quote truncated: missing signature data", quote_bytes)

    signature = parse_signature_data(quote_bytes[body_end + 4:body_end + 4 + sig_len], header.version)
    pck = signature.pck_chain[0] if signature.pck_chain else None
    fmspc = extract_fmspc_from_cert(pck) if pck is not None else None
    pck_tcb = extract_pck_tcb(pck) if pck is not None else None
    signed_data = quote_bytes[0:body_end]

    if body_size == TD_REPORT_SIZE:
        return TdxQuote(
            header=header,
            report=parse_td_report(quote_bytes[HEADER_SIZE:body_end]),
            signature=signature,
            signed_data=signed_data,
            fmspc=fmspc,
            pck_tcb=pck_tcb,
            collected_at=collected_at,
        )
    return SgxQuote(
        header=header,
        report=parse_enclave_report(quote_bytes[HEADER_SIZE:body_end]),
        signature=signature,
        signed_data=signed_data,
        fmspc=fmspc,
        pck_tcb=pck_tcb,
        collected_at=collected_at,
    )
