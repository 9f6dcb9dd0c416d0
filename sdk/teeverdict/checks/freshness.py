"""
Replay protection: evidence age, collateral validity windows and nonces.

Windows are inputs from the caller; nothing here decides how fresh is
fresh enough.
"""

import hmac

from ..anchors import TrustAnchorStore
from ..collateral import Collateral
from ..evidence import Evidence
from ..results import CheckResult, ReasonCode, VerificationContext, failed, passed
from .base import Check


class FreshnessCheck(Check):
    """Evidence and collateral timestamps within the acceptance windows."""

    check_id = "freshness"

    def _check(
        self,
        evidence: Evidence,
        collateral: Collateral,
        anchors: TrustAnchorStore,
        context: VerificationContext,
    ) -> CheckResult:
        reference = context.reference
        now = context.evaluated_at
        skew = reference.clock_skew
        checked = []

        if reference.max_evidence_age is not None:
            issued = evidence.timestamp
            if issued is None:
                return failed(
                    self.check_id, ReasonCode.EVIDENCE_TIMESTAMP_MISSING,
                    f"{evidence.kind.value} evidence carries no timestamp to age-check",
                )
            if issued > now + skew:
                return failed(
                    self.check_id, ReasonCode.STALE,
                    f"Evidence timestamp {issued.isoformat()} is in the future",
                )
            if now - issued > reference.max_evidence_age + skew:
                return failed(
                    self.check_id, ReasonCode.STALE,
                    f"Evidence from {issued.isoformat()} is older than "
                    f"{int(reference.max_evidence_age.total_seconds())}s",
                )
            checked.append("evidence age")

        if reference.nonce is not None:
            nonce = evidence.nonce
            if nonce is None or not hmac.compare_digest(nonce, reference.nonce):
                return failed(
                    self.check_id, ReasonCode.NONCE_MISMATCH,
                    "Evidence nonce does not match the expected nonce",
                )
            checked.append("nonce")

        for item in collateral.signed_items():
            if now + skew < item.issue_date:
                return failed(
                    self.check_id, ReasonCode.STALE,
                    f"{item.name} issued in the future ({item.issue_date.isoformat()})",
                )
            if now - skew > item.next_update:
                return failed(
                    self.check_id, ReasonCode.STALE,
                    f"{item.name} expired at {item.next_update.isoformat()}",
                )
            if reference.max_collateral_age is not None and now - item.issue_date > reference.max_collateral_age:
                return failed(
                    self.check_id, ReasonCode.STALE,
                    f"{item.name} issued {item.issue_date.isoformat()} is older than "
                    f"{int(reference.max_collateral_age.total_seconds())}s",
                )
            minimum = reference.min_tcb_evaluation_data_number
            if minimum is not None and item.tcb_evaluation_data_number < minimum:
                return failed(
                    self.check_id, ReasonCode.STALE,
                    f"{item.name} TCB evaluation data number {item.tcb_evaluation_data_number} "
                    f"is below {minimum}",
                )
            checked.append(item.name)

        return passed(
            self.check_id,
            f"Fresh: {', '.join(checked)}" if checked else "No freshness constraints applied",
            checked=checked,
        )
