import hmac

from ..anchors import TrustAnchorStore
from ..collateral import Collateral
from ..evidence import Evidence
from ..results import CheckResult, ReasonCode, VerificationContext, failed, passed
from .base import Check


class ReportDataCheck(Check):
    """
    Report data must equal the expected binding byte for byte.

    No padding or case normalization happens here; callers that bind a
    short value use ``padded_report_data`` to build the full field.
    """

    check_id = "report_data"

    def _check(
        self,
        evidence: Evidence,
        collateral: Collateral,
        anchors: TrustAnchorStore,
        context: VerificationContext,
    ) -> CheckResult:
        expected = context.reference.report_data
        if expected is None:
            return failed(
                self.check_id, ReasonCode.REPORT_DATA_EXPECTATION_MISSING,
                "No expected report data supplied",
            )

        actual = evidence.report_data
        if len(actual) != len(expected) or not hmac.compare_digest(actual, expected):
            return failed(
                self.check_id, ReasonCode.REPORT_DATA_MISMATCH,
                f"Report data does not match the expected {len(expected)}-byte value",
                actual=actual,
            )
        return passed(self.check_id, "Report data matches the expected binding")
