"""
Policy evaluation.

``verify`` is the single entry point: typed evidence, collateral and trust
anchors in, verdict out. Evaluation is synchronous and deterministic for
identical inputs, including the evaluation time.
"""

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from . import config
from .anchors import TrustAnchorStore
from .collateral import EMPTY_COLLATERAL, Collateral
from .evidence import Evidence
from .policy import Leaf, Policy
from .reference import ReferenceValues
from .results import CheckResult, ReasonCode, VerificationContext, failed
from .verdict import Verdict, render_verdict

logger = logging.getLogger(__name__)


def _utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _run_leaf(
    position: int,
    leaf: Leaf,
    evidence: Evidence,
    collateral: Collateral,
    anchors: TrustAnchorStore,
    context: VerificationContext,
) -> CheckResult:
    result = leaf.check.check(evidence, collateral, anchors, context).at(position, leaf.id)
    logger.debug("leaf %d %s: %s %s", position, leaf.id, result.status.value, result.reason.value)
    return result


def _unsupported(position: int, leaf: Leaf, policy: Policy, evidence: Evidence) -> CheckResult:
    kinds = ", ".join(sorted(kind.value for kind in policy.kinds))
    return failed(
        leaf.id, ReasonCode.UNSUPPORTED_EVIDENCE,
        f"Policy {policy.name} is for {kinds} evidence, got {evidence.kind.value}",
    ).at(position, leaf.id)


def evaluate(
    policy: Policy,
    evidence: Evidence,
    collateral: Optional[Collateral],
    anchors: TrustAnchorStore,
    reference: Optional[ReferenceValues] = None,
    now: Optional[datetime] = None,
    executor: Optional[Executor] = None,
) -> Tuple[Verdict, VerificationContext]:
    """
    Run every leaf of ``policy`` once and fold the results.

    With an ``executor``, leaves run concurrently; each writes to the slot
    for its position and the trail is merged in evaluation order, so the
    outcome is identical to a sequential run.
    """
    collateral = collateral or EMPTY_COLLATERAL
    context = VerificationContext(
        evidence_kind=evidence.kind,
        evaluated_at=_utc(now),
        reference=reference or ReferenceValues(),
    )
    leaves = policy.leaves

    if evidence.kind not in policy.kinds:
        for position, leaf in enumerate(leaves):
            context.record(_unsupported(position, leaf, policy, evidence))
    elif executor is None:
        for position, leaf in enumerate(leaves):
            context.record(_run_leaf(position, leaf, evidence, collateral, anchors, context))
    else:
        slots: List[Optional[CheckResult]] = [None] * len(leaves)
        futures = [
            (position, executor.submit(_run_leaf, position, leaf, evidence, collateral, anchors, context))
            for position, leaf in enumerate(leaves)
        ]
        for position, future in futures:
            slots[position] = future.result()
        for result in slots:
            context.record(result)

    status = policy.aggregate([result.status for result in context.results])
    verdict = render_verdict(policy.name, status, context)
    logger.info(
        "policy %s on %s evidence: %s", policy.name, evidence.kind.value, verdict,
    )
    return verdict, context


def verify(
    evidence: Evidence,
    collateral: Optional[Collateral],
    anchors: TrustAnchorStore,
    policy: Policy,
    reference: Optional[ReferenceValues] = None,
    now: Optional[datetime] = None,
    parallel: Optional[bool] = None,
) -> Verdict:
    """Verify ``evidence`` under ``policy`` and return the verdict."""
    if parallel is None:
        parallel = config.PARALLEL_CHECKS
    if not parallel:
        verdict, _ = evaluate(policy, evidence, collateral, anchors, reference, now)
        return verdict
    with ThreadPoolExecutor(max_workers=config.MAX_WORKERS) as pool:
        verdict, _ = evaluate(policy, evidence, collateral, anchors, reference, now, executor=pool)
    return verdict
