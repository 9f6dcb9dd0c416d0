"""
TCB status evaluation against Intel collateral.

The collateral is authenticated first (issuer chain to the trust anchor,
then the ECDSA signature over the exact body bytes). The platform and QE
TCB levels are then looked up and the worse of the two statuses decides
the result.
"""

from typing import Optional, Sequence, Tuple

from ..anchors import AdvisoryPolicy, TrustAnchorStore
from ..collateral import Collateral, QeIdentity, QeTcbLevel, SignedCollateral, TcbInfo, TcbLevel, TcbStatus
from ..crypto import UnsupportedKey, verify_raw_signature
from ..evidence import DCAP_KINDS, Evidence, EvidenceKind
from ..exceptions import ConfigurationError
from ..results import (
    CheckResult,
    ReasonCode,
    Severity,
    VerificationContext,
    advisory,
    failed,
    passed,
)
from .base import Check
from .chain import DCAP_SIGNING_ROLES, verify_chain

TCB_INFO_IDS = {EvidenceKind.SGX: "SGX", EvidenceKind.TDX: "TDX"}
QE_IDENTITY_IDS = {EvidenceKind.SGX: ("QE",), EvidenceKind.TDX: ("TD_QE", "QE")}

ADVISORY_REASONS = {
    TcbStatus.SW_HARDENING_NEEDED: ReasonCode.TCB_SW_HARDENING_NEEDED,
    TcbStatus.CONFIGURATION_NEEDED: ReasonCode.TCB_CONFIGURATION_NEEDED,
    TcbStatus.CONFIGURATION_AND_SW_HARDENING_NEEDED: ReasonCode.TCB_CONFIGURATION_AND_SW_HARDENING_NEEDED,
}


def _masked_equal(actual: bytes, expected: bytes, mask: bytes) -> bool:
    if len(actual) != len(expected) or len(expected) != len(mask):
        return False
    return all((a & m) == (e & m) for a, e, m in zip(actual, expected, mask))


def match_platform_level(
    levels: Sequence[TcbLevel],
    cpu_svn: Sequence[int],
    pce_svn: int,
    tee_tcb_svn: Optional[bytes] = None,
) -> Optional[int]:
    """Index of the first (newest) TCB level the platform meets, or None."""
    for index, level in enumerate(levels):
        if any(actual < required for actual, required in zip(cpu_svn, level.sgx_svns)):
            continue
        if pce_svn < level.pce_svn:
            continue
        if tee_tcb_svn is not None:
            if level.tdx_svns is None:
                continue
            if any(actual < required for actual, required in zip(tee_tcb_svn, level.tdx_svns)):
                continue
        return index
    return None


def match_qe_level(levels: Sequence[QeTcbLevel], isv_svn: int) -> Optional[int]:
    for index, level in enumerate(levels):
        if isv_svn >= level.isv_svn:
            return index
    return None


def levels_behind(statuses: Sequence[TcbStatus], index: int) -> int:
    """How many levels ``index`` sits below the newest UpToDate level."""
    for newest, status in enumerate(statuses):
        if status is TcbStatus.UP_TO_DATE:
            return max(index - newest, 0)
    return index


class TcbStatusCheck(Check):
    """
    Platform and QE TCB status from signed TCB info and QE identity.

    ``out_of_date_levels_tolerated`` is how many TCB levels below the newest
    UpToDate level an OutOfDate platform or QE may sit and still be accepted
    (as a must-acknowledge advisory). 0 means OutOfDate always fails.
    """

    check_id = "tcb_status"
    supported_kinds = DCAP_KINDS

    def __init__(self, out_of_date_levels_tolerated: int = 0):
        if out_of_date_levels_tolerated < 0:
            raise ConfigurationError("out_of_date_levels_tolerated must not be negative")
        self.out_of_date_levels_tolerated = out_of_date_levels_tolerated

    def __repr__(self) -> str:
        return f"TcbStatusCheck(out_of_date_levels_tolerated={self.out_of_date_levels_tolerated})"

    def _authenticate(
        self,
        item: SignedCollateral,
        evidence: Evidence,
        anchors: TrustAnchorStore,
        context: VerificationContext,
        collateral: Collateral,
    ) -> Optional[CheckResult]:
        chain_result = verify_chain(
            self.check_id,
            item.issuer_chain,
            anchors,
            evidence.kind,
            context.evaluated_at,
            skew=context.reference.clock_skew,
            crls=collateral.crls,
            roles=DCAP_SIGNING_ROLES,
        )
        if not chain_result.passed:
            return failed(
                self.check_id, ReasonCode.COLLATERAL_SIGNATURE_INVALID,
                f"{item.name} issuer chain rejected: {chain_result.explanation}",
                chain_reason=chain_result.reason.value,
            )
        try:
            ok = verify_raw_signature(item.issuer_chain[0].public_key(), item.signature, item.body)
        except UnsupportedKey as e:
            return failed(self.check_id, ReasonCode.UNSUPPORTED_ALGORITHM, f"{item.name} signer: {e}")
        if not ok:
            return failed(
                self.check_id, ReasonCode.COLLATERAL_SIGNATURE_INVALID,
                f"{item.name} signature does not verify",
            )
        return None

    def _check_qe_identity(self, evidence: Evidence, qe: QeIdentity) -> Optional[CheckResult]:
        report = evidence.signature.qe_report
        problems = []
        if qe.id not in QE_IDENTITY_IDS[evidence.kind]:
            problems.append(f"identity id {qe.id!r}")
        if report.mr_signer != qe.mrsigner:
            problems.append("MRSIGNER")
        if report.isv_prod_id != qe.isv_prod_id:
            problems.append("ISVPRODID")
        if (report.misc_select & qe.miscselect_mask) != (qe.miscselect & qe.miscselect_mask):
            problems.append("MISCSELECT")
        if not _masked_equal(report.attributes, qe.attributes, qe.attributes_mask):
            problems.append("ATTRIBUTES")
        if problems:
            return failed(
                self.check_id, ReasonCode.QE_IDENTITY_MISMATCH,
                f"QE report does not match QE identity: {', '.join(problems)}",
            )
        return None

    def _platform_svns(self, evidence: Evidence) -> Optional[Tuple[Tuple[int, ...], int]]:
        if evidence.pck_tcb is not None:
            return evidence.pck_tcb.cpu_svn_components, evidence.pck_tcb.pce_svn
        if evidence.kind is EvidenceKind.SGX:
            # no PCK TCB extension: fall back to the values reported in the quote
            return tuple(evidence.report.cpu_svn), evidence.header.pce_svn
        return None

    def _check(
        self,
        evidence: Evidence,
        collateral: Collateral,
        anchors: TrustAnchorStore,
        context: VerificationContext,
    ) -> CheckResult:
        tcb_info: Optional[TcbInfo] = collateral.tcb_info
        qe: Optional[QeIdentity] = collateral.qe_identity
        if tcb_info is None or qe is None:
            missing = [name for name, item in (("TCB info", tcb_info), ("QE identity", qe)) if item is None]
            return failed(
                self.check_id, ReasonCode.COLLATERAL_MISSING,
                f"Missing collateral: {', '.join(missing)}",
            )

        for item in (tcb_info, qe):
            rejected = self._authenticate(item, evidence, anchors, context, collateral)
            if rejected is not None:
                return rejected

        expected_id = TCB_INFO_IDS[evidence.kind]
        if tcb_info.id != expected_id:
            return failed(
                self.check_id, ReasonCode.TCB_INFO_MISMATCH,
                f"TCB info is for {tcb_info.id}, evidence is {expected_id}",
            )
        if evidence.fmspc and evidence.fmspc.upper() != tcb_info.fmspc:
            return failed(
                self.check_id, ReasonCode.TCB_INFO_MISMATCH,
                f"TCB info FMSPC {tcb_info.fmspc} does not match PCK FMSPC {evidence.fmspc}",
            )

        qe_mismatch = self._check_qe_identity(evidence, qe)
        if qe_mismatch is not None:
            return qe_mismatch

        svns = self._platform_svns(evidence)
        if svns is None:
            return failed(
                self.check_id, ReasonCode.TCB_UNRECOGNIZED,
                "PCK certificate carries no platform TCB",
            )
        cpu_svn, pce_svn = svns
        tee_tcb_svn = evidence.report.tee_tcb_svn if evidence.kind is EvidenceKind.TDX else None

        platform_index = match_platform_level(tcb_info.levels, cpu_svn, pce_svn, tee_tcb_svn)
        if platform_index is None:
            return failed(
                self.check_id, ReasonCode.TCB_UNRECOGNIZED,
                "Platform TCB is below every level in the TCB info",
            )
        qe_index = match_qe_level(qe.levels, evidence.signature.qe_report.isv_svn)
        if qe_index is None:
            return failed(
                self.check_id, ReasonCode.TCB_UNRECOGNIZED,
                f"QE ISVSVN {evidence.signature.qe_report.isv_svn} is below every QE identity level",
            )

        platform_level = tcb_info.levels[platform_index]
        qe_level = qe.levels[qe_index]
        status = max(platform_level.status, qe_level.status, key=lambda s: s.rank)
        advisory_ids = tuple(sorted({a.upper() for a in platform_level.advisory_ids + qe_level.advisory_ids}))

        behind = 0
        if platform_level.status.is_out_of_date:
            behind = levels_behind([lvl.status for lvl in tcb_info.levels], platform_index)
        if qe_level.status.is_out_of_date:
            behind = max(behind, levels_behind([lvl.status for lvl in qe.levels], qe_index))

        return self._decide(status, advisory_ids, behind, anchors.advisory_policy)

    def _decide(
        self,
        status: TcbStatus,
        advisory_ids: Tuple[str, ...],
        behind: int,
        advisories: AdvisoryPolicy,
    ) -> CheckResult:
        details = {"tcb_status": status.value, "advisory_ids": list(advisory_ids)}

        if status is TcbStatus.REVOKED:
            return failed(self.check_id, ReasonCode.TCB_REVOKED, "TCB is revoked", **details)

        rejected = sorted(set(advisory_ids) & advisories.rejected)
        if rejected:
            return failed(
                self.check_id, ReasonCode.ADVISORY_REJECTED,
                f"TCB affected by rejected advisories: {', '.join(rejected)}",
                **details,
            )

        if status.is_out_of_date:
            if behind <= self.out_of_date_levels_tolerated and self.out_of_date_levels_tolerated > 0:
                return advisory(
                    self.check_id, ReasonCode.TCB_OUT_OF_DATE_TOLERATED,
                    f"TCB is {status.value}, {behind} level(s) behind, within tolerance "
                    f"of {self.out_of_date_levels_tolerated}",
                    levels_behind=behind,
                    **details,
                )
            return failed(
                self.check_id, ReasonCode.TCB_OUT_OF_DATE,
                f"TCB is {status.value}, {behind} level(s) behind "
                f"(tolerance {self.out_of_date_levels_tolerated})",
                levels_behind=behind,
                **details,
            )

        if status in ADVISORY_REASONS:
            acknowledged = bool(advisory_ids) and set(advisory_ids) <= advisories.acknowledged
            severity = Severity.INFORMATIONAL if acknowledged else Severity.MUST_ACKNOWLEDGE
            return advisory(
                self.check_id, ADVISORY_REASONS[status],
                f"TCB status {status.value}",
                severity=severity,
                **details,
            )

        return passed(self.check_id, "TCB is up to date", **details)
