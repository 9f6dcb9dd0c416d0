"""
Certificate chain verification up to a configured trust anchor.
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence, Tuple

from cryptography import x509
from cryptography.x509.oid import NameOID

from ..anchors import TrustAnchor, TrustAnchorStore, public_key_id
from ..collateral import Collateral
from ..crypto import is_self_signed, issued_by, signed_by_key
from ..evidence import DCAP_KINDS, Evidence, EvidenceKind
from ..results import CheckResult, ReasonCode, VerificationContext, failed, passed
from .base import Check

# Expected common-name fragments, leaf first: PCK -> Platform/Processor CA -> Root
DCAP_PCK_ROLES: Tuple[Tuple[str, ...], ...] = (
    ("PCK Certificate",),
    ("PCK Platform CA", "PCK Processor CA"),
    ("Root CA",),
)

# TCB info / QE identity signing chain: TCB Signing -> Root
DCAP_SIGNING_ROLES: Tuple[Tuple[str, ...], ...] = (
    ("TCB Signing",),
    ("Root CA",),
)


def common_name(cert: x509.Certificate) -> str:
    names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(names[0].value) if names else ""


def resolve_anchor(
    top: x509.Certificate,
    anchors: TrustAnchorStore,
    kind: EvidenceKind,
) -> Optional[TrustAnchor]:
    """
    Find the anchor that vouches for the top of a chain.

    A self-signed top must carry an anchor's key; otherwise an anchor's key
    must have signed it. The first matching anchor wins.
    """
    if is_self_signed(top):
        for anchor in anchors.lookup(kind, public_key_id(top.public_key())):
            if anchor.matches(top):
                return anchor
        return None
    for anchor in anchors.lookup(kind):
        if anchor.certificate is not None and anchor.certificate.subject != top.issuer:
            continue
        if signed_by_key(top, anchor.public_key):
            return anchor
    return None


def _check_roles(
    check_id: str,
    chain: Sequence[x509.Certificate],
    roles: Sequence[Sequence[str]],
) -> Optional[CheckResult]:
    if len(chain) > len(roles):
        return failed(
            check_id, ReasonCode.CHAIN_BROKEN,
            f"Chain has {len(chain)} certificates, expected at most {len(roles)}",
        )
    if len(chain) < len(roles) - 1:
        return failed(
            check_id, ReasonCode.CHAIN_BROKEN,
            f"Chain has {len(chain)} certificates, expected at least {len(roles) - 1}",
        )
    for position, cert in enumerate(chain):
        cn = common_name(cert)
        if not any(fragment in cn for fragment in roles[position]):
            return failed(
                check_id, ReasonCode.CHAIN_BROKEN,
                f"Certificate {position} ({cn!r}) is not a {' or '.join(roles[position])}",
            )
    return None


def _check_validity(
    check_id: str,
    chain: Sequence[x509.Certificate],
    now: datetime,
    skew: timedelta,
) -> Optional[CheckResult]:
    for position, cert in enumerate(chain):
        if now + skew < cert.not_valid_before_utc:
            return failed(
                check_id, ReasonCode.EXPIRED,
                f"Certificate {position} ({common_name(cert)!r}) not valid before "
                f"{cert.not_valid_before_utc.isoformat()}",
            )
        if now - skew > cert.not_valid_after_utc:
            return failed(
                check_id, ReasonCode.EXPIRED,
                f"Certificate {position} ({common_name(cert)!r}) expired at "
                f"{cert.not_valid_after_utc.isoformat()}",
            )
    return None


def _check_revocation(
    check_id: str,
    chain: Sequence[x509.Certificate],
    anchor: TrustAnchor,
    crls: Sequence[x509.CertificateRevocationList],
) -> Optional[CheckResult]:
    issuers = {cert.subject: cert.public_key() for cert in chain}
    if anchor.certificate is not None:
        issuers.setdefault(anchor.certificate.subject, anchor.public_key)

    for crl in crls:
        issuer_key = issuers.get(crl.issuer)
        # CRLs from issuers outside this chain, or that do not verify, do not apply
        if issuer_key is None or not crl.is_signature_valid(issuer_key):
            continue
        for position, cert in enumerate(chain):
            if cert.issuer != crl.issuer:
                continue
            if crl.get_revoked_certificate_by_serial_number(cert.serial_number) is not None:
                return failed(
                    check_id, ReasonCode.CERTIFICATE_REVOKED,
                    f"Certificate {position} ({common_name(cert)!r}) serial "
                    f"{cert.serial_number:x} revoked by {crl.issuer.rfc4514_string()}",
                )
    return None


def verify_chain(
    check_id: str,
    chain: Sequence[x509.Certificate],
    anchors: TrustAnchorStore,
    kind: EvidenceKind,
    now: datetime,
    skew: timedelta = timedelta(0),
    crls: Sequence[x509.CertificateRevocationList] = (),
    roles: Optional[Sequence[Sequence[str]]] = None,
) -> CheckResult:
    """
    Walk ``chain`` (leaf first) and decide whether it is anchored.

    Linkage and roles are checked before anchoring, then validity windows
    and revocation, so the reported reason is the most structural one.
    """
    if not chain:
        return failed(check_id, ReasonCode.CHAIN_BROKEN, "No certificates in chain")

    for position in range(len(chain) - 1):
        ok, message = issued_by(chain[position], chain[position + 1])
        if not ok:
            return failed(
                check_id, ReasonCode.CHAIN_BROKEN,
                f"Certificate {position} ({common_name(chain[position])!r}) not issued by "
                f"certificate {position + 1}: {message}",
            )

    if roles is not None:
        broken = _check_roles(check_id, chain, roles)
        if broken is not None:
            return broken

    anchor = resolve_anchor(chain[-1], anchors, kind)
    if anchor is None:
        return failed(
            check_id, ReasonCode.UNTRUSTED_ROOT,
            f"No {kind.value} trust anchor vouches for {chain[-1].subject.rfc4514_string()}",
        )

    expired = _check_validity(check_id, chain, now, skew)
    if expired is not None:
        return expired

    revoked = _check_revocation(check_id, chain, anchor, crls)
    if revoked is not None:
        return revoked

    return passed(
        check_id,
        f"Chain of {len(chain)} certificate(s) anchored at {anchor.name or anchor.key_id}",
        anchor=anchor.key_id,
        leaf=common_name(chain[0]),
    )


class CertChainCheck(Check):
    """Evidence certificate chain, walked to a configured trust anchor."""

    check_id = "cert_chain"

    def _check(
        self,
        evidence: Evidence,
        collateral: Collateral,
        anchors: TrustAnchorStore,
        context: VerificationContext,
    ) -> CheckResult:
        roles = DCAP_PCK_ROLES if evidence.kind in DCAP_KINDS else None
        return verify_chain(
            self.check_id,
            evidence.cert_chain,
            anchors,
            evidence.kind,
            context.evaluated_at,
            skew=context.reference.clock_skew,
            crls=collateral.crls,
            roles=roles,
        )
