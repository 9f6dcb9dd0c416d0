"""
Ready-made policies for the common cases.
"""

from typing import List, Union

from .checks import (
    CertChainCheck,
    FreshnessCheck,
    MeasurementCheck,
    NitroDocumentCheck,
    ReportDataCheck,
    SignatureCheck,
    TcbStatusCheck,
)
from .evidence import DCAP_KINDS, EvidenceKind
from .exceptions import ConfigurationError
from .policy import And, Leaf, Node, Policy


def dcap_policy(
    kind: Union[EvidenceKind, str] = EvidenceKind.SGX,
    *,
    freshness: bool = False,
    tcb_tolerance: int = 0,
) -> Policy:
    """
    Everything must hold: PCK chain, quote signature, TCB status,
    measurements and report data (plus freshness when asked for).
    """
    try:
        kind = EvidenceKind(kind.upper() if isinstance(kind, str) else kind)
    except ValueError:
        raise ConfigurationError(f"Unknown evidence kind {kind!r}")
    if kind not in DCAP_KINDS:
        raise ConfigurationError(f"{kind.value} is not a DCAP evidence kind")

    leaves: List[Node] = [
        Leaf(CertChainCheck()),
        Leaf(SignatureCheck()),
        Leaf(TcbStatusCheck(out_of_date_levels_tolerated=tcb_tolerance)),
        Leaf(MeasurementCheck()),
        Leaf(ReportDataCheck()),
    ]
    if freshness:
        leaves.append(Leaf(FreshnessCheck()))
    return Policy(f"{kind.value.lower()}-dcap", And(*leaves), kinds=[kind])


def nitro_policy(*, freshness: bool = True) -> Policy:
    """COSE signature and certificate chain, PCRs and user data (plus freshness)."""
    leaves: List[Node] = [
        Leaf(NitroDocumentCheck()),
        Leaf(MeasurementCheck()),
        Leaf(ReportDataCheck()),
    ]
    if freshness:
        leaves.append(Leaf(FreshnessCheck()))
    return Policy("nitro", And(*leaves), kinds=[EvidenceKind.NITRO])
