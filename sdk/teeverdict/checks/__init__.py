from .base import AlwaysFail, AlwaysPass, Check
from .chain import CertChainCheck, verify_chain
from .freshness import FreshnessCheck
from .measurement import MeasurementCheck
from .nitro import NitroDocumentCheck
from .report_data import ReportDataCheck
from .signature import SignatureCheck
from .tcb import TcbStatusCheck

__all__ = [
    "AlwaysFail",
    "AlwaysPass",
    "Check",
    "CertChainCheck",
    "FreshnessCheck",
    "MeasurementCheck",
    "NitroDocumentCheck",
    "ReportDataCheck",
    "SignatureCheck",
    "TcbStatusCheck",
    "verify_chain",
]
