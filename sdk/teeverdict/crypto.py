"""
ECDSA helpers shared by the checks.

Attestation formats carry signatures as raw ``r || s`` and keys as raw
``x || y``; cryptography wants DER signatures and key objects.
"""

from typing import Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

CURVE_HASHES = {
    "secp256r1": hashes.SHA256,
    "secp384r1": hashes.SHA384,
}


class UnsupportedKey(Exception):
    """Key type or curve the verifiers do not handle."""
    pass


def raw_to_der(signature: bytes) -> bytes:
    """Convert a raw ``r || s`` ECDSA signature to DER."""
    if not signature or len(signature) % 2:
        raise InvalidSignature(f"Unexpected raw ECDSA signature length: {len(signature)}")
    half = len(signature) // 2
    r = int.from_bytes(signature[:half], "big")
    s = int.from_bytes(signature[half:], "big")
    return encode_dss_signature(r, s)


def p256_key_from_raw(point: bytes) -> ec.EllipticCurvePublicKey:
    """Build a P-256 public key from a raw 64-byte ``x || y`` point."""
    if len(point) != 64:
        raise ValueError(f"Raw P-256 key must be 64 bytes, got {len(point)}")
    return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), b"\x04" + point)


def hash_for_key(public_key) -> hashes.HashAlgorithm:
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise UnsupportedKey(f"Unsupported key algorithm {type(public_key).__name__}")
    hash_cls = CURVE_HASHES.get(public_key.curve.name)
    if hash_cls is None:
        raise UnsupportedKey(f"Unsupported curve {public_key.curve.name}")
    return hash_cls()


def verify_raw_signature(public_key, signature: bytes, data: bytes) -> bool:
    """
    Verify a raw ``r || s`` signature, hashing with the curve's native hash.

    Returns False on mismatch; raises UnsupportedKey for keys we cannot use.
    """
    algorithm = hash_for_key(public_key)
    try:
        public_key.verify(raw_to_der(signature), data, ec.ECDSA(algorithm))
    except InvalidSignature:
        return False
    return True


def issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> Tuple[bool, str]:
    """Check issuer name linkage and the issuer's signature over ``cert``."""
    try:
        cert.verify_directly_issued_by(issuer)
    except ValueError as e:
        return False, f"issuer mismatch: {e}"
    except InvalidSignature:
        return False, "signature does not verify"
    except TypeError as e:
        return False, f"unsupported issuer key: {e}"
    return True, "ok"


def signed_by_key(cert: x509.Certificate, public_key) -> bool:
    """Check ``cert``'s signature with a bare public key."""
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        return False
    try:
        public_key.verify(
            cert.signature,
            cert.tbs_certificate_bytes,
            ec.ECDSA(cert.signature_hash_algorithm),
        )
    except (InvalidSignature, TypeError, ValueError):
        return False
    return True


def is_self_signed(cert: x509.Certificate) -> bool:
    if cert.issuer != cert.subject:
        return False
    return signed_by_key(cert, cert.public_key())
