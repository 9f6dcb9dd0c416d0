from ..anchors import TrustAnchorStore
from ..collateral import Collateral
from ..evidence import Evidence
from ..results import CheckResult, ReasonCode, VerificationContext, failed, passed
from .base import Check


class MeasurementCheck(Check):
    """Evidence measurements against the caller's allow-list."""

    check_id = "measurement"

    def _check(
        self,
        evidence: Evidence,
        collateral: Collateral,
        anchors: TrustAnchorStore,
        context: VerificationContext,
    ) -> CheckResult:
        expected = context.reference.measurements
        if not expected:
            return failed(
                self.check_id, ReasonCode.MEASUREMENT_ALLOWLIST_MISSING,
                "No measurement allow-list supplied",
            )

        actual = {name.lower(): value.lower() for name, value in evidence.measurements.items()}
        for name in sorted(expected):
            value = actual.get(name)
            if value is None:
                return failed(
                    self.check_id, ReasonCode.MEASUREMENT_MISMATCH,
                    f"{evidence.kind.value} evidence has no measurement {name}",
                    measurement=name,
                )
            if value not in expected[name]:
                return failed(
                    self.check_id, ReasonCode.MEASUREMENT_MISMATCH,
                    f"Measurement {name} {value} is not in the allow-list",
                    measurement=name,
                    actual=value,
                )

        return passed(
            self.check_id,
            f"{len(expected)} measurement(s) match the allow-list",
            matched=sorted(expected),
        )
