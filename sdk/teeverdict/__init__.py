"""
teeverdict - composable verification of TEE attestation evidence.

Usage:
    from teeverdict import ReferenceValues, decode_evidence, default_store, dcap_policy, verify

    quote = decode_evidence(raw_quote, "sgx")
    verdict = verify(
        quote,
        collateral,
        default_store(),
        dcap_policy("sgx"),
        ReferenceValues(measurements={"mrenclave": [expected]}, report_data=binding),
    )
"""

from .anchors import AdvisoryPolicy, TrustAnchor, TrustAnchorStore, default_store
from .checks import (
    AlwaysFail,
    AlwaysPass,
    CertChainCheck,
    Check,
    FreshnessCheck,
    MeasurementCheck,
    NitroDocumentCheck,
    ReportDataCheck,
    SignatureCheck,
    TcbStatusCheck,
)
from .collateral import Collateral, TcbStatus, parse_qe_identity, parse_tcb_info
from .decode import decode_evidence
from .engine import evaluate, verify
from .evidence import EvidenceKind, NitroDocument, SgxQuote, TdxQuote
from .exceptions import ConfigurationError, DecodeError, TeeVerdictError
from .nitro import parse_attestation_document
from .policies import dcap_policy, nitro_policy
from .policy import And, Leaf, Or, Policy, Threshold
from .quote import parse_quote
from .reference import ReferenceValues, padded_report_data, report_data_for_key
from .results import CheckResult, CheckStatus, ReasonCode, Severity, VerificationContext
from .verdict import Verdict, VerdictStatus, render_verdict

__version__ = "0.1.0"
__all__ = [
    "verify",
    "evaluate",
    "decode_evidence",
    "parse_quote",
    "parse_attestation_document",
    "parse_tcb_info",
    "parse_qe_identity",
    "TeeVerdictError",
    "ConfigurationError",
    "DecodeError",
    "EvidenceKind",
    "SgxQuote",
    "TdxQuote",
    "NitroDocument",
    "Collateral",
    "TcbStatus",
    "TrustAnchor",
    "TrustAnchorStore",
    "AdvisoryPolicy",
    "default_store",
    "ReferenceValues",
    "padded_report_data",
    "report_data_for_key",
    "AlwaysFail",
    "AlwaysPass",
    "Check",
    "CertChainCheck",
    "SignatureCheck",
    "TcbStatusCheck",
    "MeasurementCheck",
    "ReportDataCheck",
    "FreshnessCheck",
    "NitroDocumentCheck",
    "Leaf",
    "And",
    "Or",
    "Threshold",
    "Policy",
    "dcap_policy",
    "nitro_policy",
    "CheckResult",
    "CheckStatus",
    "ReasonCode",
    "Severity",
    "VerificationContext",
    "Verdict",
    "VerdictStatus",
    "render_verdict",
]
