"""
Verdicts and the outcome formatter.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .evidence import EvidenceKind
from .results import CheckResult, CheckStatus, ReasonCode, VerificationContext


class VerdictStatus(str, Enum):
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    ACCEPTED_WITH_ADVISORIES = "AcceptedWithAdvisories"


STATUS_VERDICTS = {
    CheckStatus.PASS: VerdictStatus.ACCEPTED,
    CheckStatus.ADVISORY: VerdictStatus.ACCEPTED_WITH_ADVISORIES,
    CheckStatus.FAIL: VerdictStatus.REJECTED,
}


@dataclass(frozen=True)
class Verdict:
    """Final, immutable outcome of one verification."""

    status: VerdictStatus
    policy: str
    evidence_kind: EvidenceKind
    evaluated_at: datetime
    trail: Tuple[CheckResult, ...]
    primary_reason: Optional[ReasonCode] = None
    advisories: Tuple[CheckResult, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.status is not VerdictStatus.REJECTED

    @property
    def reason_codes(self) -> Tuple[ReasonCode, ...]:
        return tuple(result.reason for result in self.trail)

    def to_record(self) -> Dict[str, Any]:
        """Plain-dict audit record."""
        return {
            "status": self.status.value,
            "policy": self.policy,
            "evidence_kind": self.evidence_kind.value,
            "evaluated_at": self.evaluated_at.isoformat(),
            "primary_reason": self.primary_reason.value if self.primary_reason else None,
            "reason_codes": [code.value for code in self.reason_codes],
            "advisories": [result.to_record() for result in self.advisories],
            "trail": [result.to_record() for result in self.trail],
        }

    def to_json(self) -> str:
        """Canonical JSON: identical verdicts serialize to identical bytes."""
        return json.dumps(self.to_record(), sort_keys=True, separators=(",", ":"))

    def __str__(self) -> str:
        if self.primary_reason is not None:
            return f"{self.status.value} ({self.primary_reason.value})"
        return self.status.value


def render_verdict(policy_name: str, status: CheckStatus, context: VerificationContext) -> Verdict:
    """
    Turn the root status and the accumulated trail into a verdict.

    Pure: the context is only read, so this is safe to call repeatedly.
    """
    verdict_status = STATUS_VERDICTS[status]
    advisories = context.advisories()

    primary: Optional[ReasonCode] = None
    if verdict_status is VerdictStatus.REJECTED:
        first_failure = context.first_failure()
        primary = first_failure.reason if first_failure else ReasonCode.POLICY_NOT_SATISFIED
    elif verdict_status is VerdictStatus.ACCEPTED_WITH_ADVISORIES and advisories:
        primary = advisories[0].reason

    return Verdict(
        status=verdict_status,
        policy=policy_name,
        evidence_kind=context.evidence_kind,
        evaluated_at=context.evaluated_at,
        trail=context.results,
        primary_reason=primary,
        advisories=advisories,
    )
