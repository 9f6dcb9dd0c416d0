from ..anchors import TrustAnchorStore
from ..collateral import Collateral
from ..crypto import UnsupportedKey, verify_raw_signature
from ..evidence import Evidence, EvidenceKind
from ..nitro import COSE_ALG_ES384, signature_structure
from ..results import CheckResult, ReasonCode, VerificationContext, failed, passed
from .base import Check
from .chain import verify_chain


class NitroDocumentCheck(Check):
    """COSE_Sign1 envelope and embedded certificate chain of a Nitro document."""

    check_id = "nitro_document"
    supported_kinds = frozenset({EvidenceKind.NITRO})

    def _check(
        self,
        evidence: Evidence,
        collateral: Collateral,
        anchors: TrustAnchorStore,
        context: VerificationContext,
    ) -> CheckResult:
        if evidence.algorithm != COSE_ALG_ES384:
            return failed(
                self.check_id, ReasonCode.UNSUPPORTED_ALGORITHM,
                f"COSE algorithm {evidence.algorithm!r} is not ES384",
            )

        try:
            ok = verify_raw_signature(
                evidence.certificate.public_key(),
                evidence.signature,
                signature_structure(evidence),
            )
        except UnsupportedKey as e:
            return failed(self.check_id, ReasonCode.UNSUPPORTED_ALGORITHM, f"Signing certificate: {e}")
        if not ok:
            return failed(
                self.check_id, ReasonCode.SIGNATURE_INVALID,
                "COSE signature does not verify with the document certificate",
            )

        chain_result = verify_chain(
            self.check_id,
            evidence.cert_chain,
            anchors,
            evidence.kind,
            context.evaluated_at,
            skew=context.reference.clock_skew,
            crls=collateral.crls,
        )
        if not chain_result.passed:
            return chain_result

        return passed(
            self.check_id,
            f"COSE signature verified; {chain_result.explanation}",
            module_id=evidence.module_id,
        )
