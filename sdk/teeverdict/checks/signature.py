"""
DCAP quote signature verification.

A quote is trusted through three links: the attestation key signs the
header and report body, the PCK key signs the QE report, and the QE report
data commits to the attestation key.
"""

import hashlib

from cryptography.hazmat.primitives.asymmetric import ec

from ..anchors import TrustAnchorStore
from ..collateral import Collateral
from ..crypto import UnsupportedKey, p256_key_from_raw, verify_raw_signature
from ..evidence import DCAP_KINDS, Evidence
from ..quote import ATT_KEY_TYPE_ECDSA_P256
from ..results import CheckResult, ReasonCode, VerificationContext, failed, passed
from .base import Check


class SignatureCheck(Check):
    """ECDSA signatures over an SGX/TDX quote."""

    check_id = "signature"
    supported_kinds = DCAP_KINDS

    def _check(
        self,
        evidence: Evidence,
        collateral: Collateral,
        anchors: TrustAnchorStore,
        context: VerificationContext,
    ) -> CheckResult:
        if evidence.header.att_key_type != ATT_KEY_TYPE_ECDSA_P256:
            return failed(
                self.check_id, ReasonCode.UNSUPPORTED_ALGORITHM,
                f"Attestation key type {evidence.header.att_key_type} is not ECDSA-256-with-P-256",
            )

        sig = evidence.signature
        try:
            attestation_key = p256_key_from_raw(sig.attestation_key)
        except ValueError as e:
            return failed(self.check_id, ReasonCode.SIGNATURE_INVALID, f"Invalid attestation key: {e}")

        if not verify_raw_signature(attestation_key, sig.ecdsa_signature, evidence.signed_data):
            return failed(
                self.check_id, ReasonCode.SIGNATURE_INVALID,
                "Quote signature does not verify with the attestation key",
            )

        if not evidence.cert_chain:
            return failed(
                self.check_id, ReasonCode.CHAIN_BROKEN,
                "No PCK certificate to verify the QE report signature",
            )
        pck_key = evidence.cert_chain[0].public_key()
        if not isinstance(pck_key, ec.EllipticCurvePublicKey) or not isinstance(pck_key.curve, ec.SECP256R1):
            return failed(
                self.check_id, ReasonCode.UNSUPPORTED_ALGORITHM,
                f"PCK key {type(pck_key).__name__} is not EC P-256",
            )
        try:
            qe_signed = verify_raw_signature(pck_key, sig.qe_report_signature, sig.qe_report_raw)
        except UnsupportedKey as e:
            return failed(self.check_id, ReasonCode.UNSUPPORTED_ALGORITHM, str(e))
        if not qe_signed:
            return failed(
                self.check_id, ReasonCode.SIGNATURE_INVALID,
                "QE report signature does not verify with the PCK key",
            )

        expected = hashlib.sha256(sig.attestation_key + sig.qe_auth_data).digest()
        if sig.qe_report.report_data[:32] != expected:
            return failed(
                self.check_id, ReasonCode.SIGNATURE_INVALID,
                "QE report data does not bind the attestation key",
            )
        if any(sig.qe_report.report_data[32:]):
            return failed(
                self.check_id, ReasonCode.SIGNATURE_INVALID,
                "QE report data is not zero after the attestation key hash",
            )

        return passed(self.check_id, "Quote, QE report and attestation key binding verified")
