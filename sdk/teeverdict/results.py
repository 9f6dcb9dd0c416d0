"""
Check results and the verification context that accumulates them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .evidence import EvidenceKind
from .reference import ReferenceValues


class CheckStatus(str, Enum):
    PASS = "Pass"
    FAIL = "Fail"
    ADVISORY = "Advisory"


class Severity(str, Enum):
    INFORMATIONAL = "Informational"
    MUST_ACKNOWLEDGE = "MustAcknowledge"


class ReasonCode(str, Enum):
    """Stable identifiers downstream policy engines can branch on."""

    OK = "Ok"

    # signatures and certificates
    SIGNATURE_INVALID = "SignatureInvalid"
    UNSUPPORTED_ALGORITHM = "UnsupportedAlgorithm"
    CHAIN_BROKEN = "ChainBroken"
    EXPIRED = "Expired"
    UNTRUSTED_ROOT = "UntrustedRoot"
    CERTIFICATE_REVOKED = "CertificateRevoked"

    # collateral and TCB
    COLLATERAL_MISSING = "CollateralMissing"
    COLLATERAL_SIGNATURE_INVALID = "CollateralSignatureInvalid"
    TCB_INFO_MISMATCH = "TcbInfoMismatch"
    QE_IDENTITY_MISMATCH = "QeIdentityMismatch"
    TCB_UNRECOGNIZED = "TcbUnrecognized"
    TCB_SW_HARDENING_NEEDED = "TcbSwHardeningNeeded"
    TCB_CONFIGURATION_NEEDED = "TcbConfigurationNeeded"
    TCB_CONFIGURATION_AND_SW_HARDENING_NEEDED = "TcbConfigurationAndSwHardeningNeeded"
    TCB_OUT_OF_DATE = "TcbOutOfDate"
    TCB_OUT_OF_DATE_TOLERATED = "TcbOutOfDateTolerated"
    TCB_REVOKED = "TcbRevoked"
    ADVISORY_REJECTED = "AdvisoryRejected"

    # caller expectations
    MEASUREMENT_MISMATCH = "MeasurementMismatch"
    MEASUREMENT_ALLOWLIST_MISSING = "MeasurementAllowlistMissing"
    REPORT_DATA_MISMATCH = "ReportDataMismatch"
    REPORT_DATA_EXPECTATION_MISSING = "ReportDataExpectationMissing"
    STALE = "Stale"
    EVIDENCE_TIMESTAMP_MISSING = "EvidenceTimestampMissing"
    NONCE_MISMATCH = "NonceMismatch"

    # input shape
    MALFORMED_EVIDENCE = "MalformedEvidence"
    UNSUPPORTED_EVIDENCE = "UnsupportedEvidence"

    # aggregate
    POLICY_NOT_SATISFIED = "PolicyNotSatisfied"
    ALWAYS_FAIL = "AlwaysFail"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one atomic check."""

    check_id: str
    status: CheckStatus
    reason: ReasonCode
    explanation: str
    severity: Optional[Severity] = None
    position: int = -1
    details: Tuple[Tuple[str, Any], ...] = ()

    @property
    def passed(self) -> bool:
        return self.status is CheckStatus.PASS

    @property
    def failed(self) -> bool:
        return self.status is CheckStatus.FAIL

    @property
    def is_advisory(self) -> bool:
        return self.status is CheckStatus.ADVISORY

    def at(self, position: int, check_id: str) -> "CheckResult":
        """Copy of this result stamped with its leaf position and label."""
        return CheckResult(
            check_id=check_id,
            status=self.status,
            reason=self.reason,
            explanation=self.explanation,
            severity=self.severity,
            position=position,
            details=self.details,
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "check": self.check_id,
            "position": self.position,
            "status": self.status.value,
            "reason": self.reason.value,
            "explanation": self.explanation,
            "severity": self.severity.value if self.severity else None,
            "details": {key: value for key, value in self.details},
        }


def passed(check_id: str, explanation: str, **details: Any) -> CheckResult:
    return CheckResult(check_id, CheckStatus.PASS, ReasonCode.OK, explanation,
                       details=_freeze(details))


def failed(check_id: str, reason: ReasonCode, explanation: str, **details: Any) -> CheckResult:
    return CheckResult(check_id, CheckStatus.FAIL, reason, explanation,
                       details=_freeze(details))


def advisory(
    check_id: str,
    reason: ReasonCode,
    explanation: str,
    severity: Severity = Severity.MUST_ACKNOWLEDGE,
    **details: Any,
) -> CheckResult:
    return CheckResult(check_id, CheckStatus.ADVISORY, reason, explanation,
                       severity=severity, details=_freeze(details))


def _freeze(details: Dict[str, Any]) -> Tuple[Tuple[str, Any], ...]:
    frozen = []
    for key in sorted(details):
        value = details[key]
        if isinstance(value, list):
            value = tuple(value)
        elif isinstance(value, bytes):
            value = value.hex()
        frozen.append((key, value))
    return tuple(frozen)


@dataclass
class VerificationContext:
    """
    Ordered trail of check results for a single evaluation.

    Append-only while the evaluation runs; never shared between runs.
    """

    evidence_kind: EvidenceKind
    evaluated_at: datetime
    reference: ReferenceValues = field(default_factory=ReferenceValues)
    _results: List[CheckResult] = field(default_factory=list, repr=False)

    def record(self, result: CheckResult) -> None:
        self._results.append(result)

    @property
    def results(self) -> Tuple[CheckResult, ...]:
        return tuple(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self):
        return iter(self._results)

    def first_failure(self) -> Optional[CheckResult]:
        for result in self._results:
            if result.failed:
                return result
        return None

    def advisories(self) -> Tuple[CheckResult, ...]:
        return tuple(r for r in self._results if r.is_advisory)

    def reason_codes(self) -> Tuple[ReasonCode, ...]:
        return tuple(r.reason for r in self._results)
