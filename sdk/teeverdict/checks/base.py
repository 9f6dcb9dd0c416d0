import logging
from typing import FrozenSet

from ..anchors import TrustAnchorStore
from ..collateral import Collateral
from ..evidence import ALL_KINDS, Evidence, EvidenceKind
from ..results import CheckResult, ReasonCode, VerificationContext, failed, passed

logger = logging.getLogger(__name__)


class Check:
    """
    An atomic verification step.

    Subclasses implement ``_check``. Callers go through ``check``, which
    never raises: evidence of an unsupported kind and unexpected errors on
    malformed input both come back as failing results.
    """

    check_id: str = "check"
    supported_kinds: FrozenSet[EvidenceKind] = ALL_KINDS

    def check(
        self,
        evidence: Evidence,
        collateral: Collateral,
        anchors: TrustAnchorStore,
        context: VerificationContext,
    ) -> CheckResult:
        kind = getattr(evidence, "kind", None)
        if kind not in self.supported_kinds:
            return failed(
                self.check_id,
                ReasonCode.UNSUPPORTED_EVIDENCE,
                f"{self.check_id} does not handle {kind.value if kind else type(evidence).__name__} evidence",
            )
        try:
            return self._check(evidence, collateral, anchors, context)
        except Exception as e:
            logger.warning("%s failed on malformed input: %s", self.check_id, e)
            return failed(self.check_id, ReasonCode.MALFORMED_EVIDENCE, f"Malformed input: {e}")

    def _check(
        self,
        evidence: Evidence,
        collateral: Collateral,
        anchors: TrustAnchorStore,
        context: VerificationContext,
    ) -> CheckResult:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class AlwaysPass(Check):
    """Constant PASS, for placeholder branches and policy tests."""

    check_id = "always_pass"

    def _check(self, evidence, collateral, anchors, context) -> CheckResult:
        return passed(self.check_id, "Constant pass")


class AlwaysFail(Check):
    """Constant FAIL; an ``Or`` branch that must never satisfy on its own."""

    check_id = "always_fail"

    def _check(self, evidence, collateral, anchors, context) -> CheckResult:
        return failed(self.check_id, ReasonCode.ALWAYS_FAIL, "Constant failure")
