"""
AWS Nitro Enclaves attestation document decoding.

An attestation document is a COSE_Sign1 structure
``[protected, unprotected, payload, signature]`` whose payload is a CBOR map
produced by the Nitro Security Module.
"""

from collections.abc import Mapping
from datetime import datetime, timezone

import cbor2
from cryptography import x509

from .evidence import NitroDocument
from .exceptions import DecodeError

COSE_SIGN1_TAG = 18
COSE_HEADER_ALG = 1
COSE_ALG_ES384 = -35

REQUIRED_FIELDS = ("module_id", "digest", "timestamp", "pcrs", "certificate", "cabundle")


def parse_attestation_document(doc_bytes: bytes) -> NitroDocument:
    """Parse a COSE_Sign1 Nitro attestation document."""
    try:
        cose = cbor2.loads(doc_bytes)
    except (cbor2.CBORDecodeError, ValueError) as e:
        raise DecodeError(f"Invalid CBOR: {e}", doc_bytes)

    if isinstance(cose, cbor2.CBORTag):
        if cose.tag != COSE_SIGN1_TAG:
            raise DecodeError(f"Unexpected CBOR tag {cose.tag} (expected COSE_Sign1)", doc_bytes)
        cose = cose.value

    if not isinstance(cose, (list, tuple)) or len(cose) != 4:
        raise DecodeError("Not a valid COSE_Sign1 structure", doc_bytes)

    protected, _unprotected, payload, signature = cose
    if not isinstance(protected, bytes) or not isinstance(payload, bytes) or not isinstance(signature, bytes):
        raise DecodeError("COSE_Sign1 members must be byte strings", doc_bytes)

    algorithm = None
    if protected:
        try:
            header = cbor2.loads(protected)
        except (cbor2.CBORDecodeError, ValueError) as e:
            raise DecodeError(f"Invalid protected header: {e}", doc_bytes)
        if isinstance(header, Mapping):
            algorithm = header.get(COSE_HEADER_ALG)

    try:
        attestation = cbor2.loads(payload)
    except (cbor2.CBORDecodeError, ValueError) as e:
        raise DecodeError(f"Invalid attestation payload: {e}", doc_bytes)
    if not isinstance(attestation, Mapping):
        raise DecodeError("Attestation payload is not a map", doc_bytes)

    missing = [name for name in REQUIRED_FIELDS if attestation.get(name) is None]
    if missing:
        raise DecodeError(f"Attestation payload missing: {', '.join(missing)}", doc_bytes)

    pcrs = attestation["pcrs"]
    if not isinstance(pcrs, Mapping) or not all(
        isinstance(index, int) and isinstance(value, bytes) for index, value in pcrs.items()
    ):
        raise DecodeError("PCRs must map integer indexes to byte strings", doc_bytes)

    try:
        certificate = x509.load_der_x509_certificate(attestation["certificate"])
        cabundle = tuple(x509.load_der_x509_certificate(der) for der in attestation["cabundle"])
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Invalid certificate in attestation document: {e}", doc_bytes)

    timestamp = attestation["timestamp"]
    if not isinstance(timestamp, int):
        raise DecodeError("Attestation timestamp must be an integer", doc_bytes)

    return NitroDocument(
        protected=protected,
        payload=payload,
        signature=signature,
        algorithm=algorithm,
        module_id=str(attestation["module_id"]),
        digest=str(attestation["digest"]),
        issued_at=datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc),
        pcrs=dict(pcrs),
        certificate=certificate,
        cabundle=cabundle,
        public_key=attestation.get("public_key"),
        user_data=attestation.get("user_data"),
        nonce_value=attestation.get("nonce"),
    )


def signature_structure(doc: NitroDocument) -> bytes:
    """COSE Sig_structure for a Sign1 message with empty external AAD."""
    return cbor2.dumps(["Signature1", doc.protected, b"", doc.payload])
