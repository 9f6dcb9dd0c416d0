"""
Trust anchors and the immutable store that holds them.

A store is built once from configuration and passed explicitly into every
verification; nothing here is process-global.
"""

import hashlib
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .evidence import DCAP_KINDS, EvidenceKind
from .exceptions import ConfigurationError

# Intel SGX/TDX Root CA certificate (PEM format)
INTEL_ROOT_CA_PEM = b"""-----BEGIN CERTIFICATE-----
MIICjzCCAjSgAwIBAgIUImUM1lqdNInzg7SVUr9QGzknBqwwCgYIKoZIzj0EAwIw
aDEaMBgGA1UEAwwRSW50ZWwgU0dYIFJvb3QgQ0ExGjAYBgNVBAoMEUludGVsIENv
cnBvcmF0aW9uMRQwEgYDVQQHDAtTYW50YSBDbGFyYTELMAkGA1UECAwCQ0ExCzAJ
BgNVBAYTAlVTMB4XDTE4MDUyMTEwNDUxMFoXDTQ5MTIzMTIzNTk1OVowaDEaMBgG
A1UEAwwRSW50ZWwgU0dYIFJvb3QgQ0ExGjAYBgNVBAoMEUludGVsIENvcnBvcmF0
aW9uMRQwEgYDVQQHDAtTYW50YSBDbGFyYTELMAkGA1UECAwCQ0ExCzAJBgNVBAYT
AlVTMFkwEwYHKoZIzj0CAQYIKoZIzj0DAQcDQgAEC6nEwMDIYZOj/iPWsCzaEKi7
1OiOSLRFhWGjbnBVJfVnkY4u3IjkDYYL0MxO4mqsyYjlBalTVYxFP2sJBK5zlKOB
uzCBuDAfBgNVHSMEGDAWgBQiZQzWWp00ifODtJVSv1AbOScGrDBSBgNVHR8ESzBJ
MEegRaBDhkFodHRwczovL2NlcnRpZmljYXRlcy50cnVzdGVkc2VydmljZXMuaW50
ZWwuY29tL0ludGVsU0dYUm9vdENBLmRlcjAdBgNVHQ4EFgQUImUM1lqdNInzg7SV
Ur9QGzknBqwwDgYDVR0PAQH/BAQDAgEGMBIGA1UdEwEB/wQIMAYBAf8CAQEwCgYI
KoZIzj0EAwIDSQAwRgIhAOW/5QkR+S9CiSDcNoowLuPRLsWGf/Yi7GSX94BgwTwg
AiEA4J0lrHoMs+Xo5o/sX6O9QWxHRAvZUGOdRQ7cvqRXaqI=
-----END CERTIFICATE-----"""

# AWS Nitro Enclaves root certificate (aws.nitro-enclaves, G1)
AWS_NITRO_ROOT_PEM = b"""-----BEGIN CERTIFICATE-----
MIICETCCAZagAwIBAgIRAPkxdWgbkK/hHUbMtOTn+FYwCgYIKoZIzj0EAwMwSTEL
MAkGA1UEBhMCVVMxDzANBgNVBAoMBkFtYXpvbjEMMAoGA1UECwwDQVdTMRswGQYD
VQQDDBJhd3Mubml0cm8tZW5jbGF2ZXMwHhcNMTkxMDI4MTMyODA1WhcNNDkxMDI4
MTQyODA1WjBJMQswCQYDVQQGEwJVUzEPMA0GA1UECgwGQW1hem9uMQwwCgYDVQQL
DANBV1MxGzAZBgNVBAMMEmF3cy5uaXRyby1lbmNsYXZlczB2MBAGByqGSM49AgEG
BSuBBAAiA2IABPwCVOumCMHzaHDimtqQvkY4MpJzbolL//Zy2YlES1BR5TSksfbb
48C8WBoyt7F2Bw7eEtaaP+ohG2bnUs990d0JX28TcPQXCEPZ3BABIeTPYwEoCWZE
h8l5YoQwTcU/9KNCMEAwDwYDVR0TAQH/BAUwAwEB/zAdBgNVHQ4EFgQUkCW1DdkF
R+eWw5b6cp3PmanfS5YwDgYDVR0PAQH/BAQDAgGGMAoGCCqGSM49BAMDA2kAMGYC
MQCjfy+Rocm9Xue4YnwWmNJVA44fA0P5W2OpYow9OYCVRaEevL8uO1XYru5xtMPW
rfMCMQCi85sWBbJwKKXdS6BptQFuZbT73o/gBh1qUxl/nNr12UO8Yfwr6wPLb+6N
IwLz3/Y=
-----END CERTIFICATE-----"""

SUPPORTED_CURVES = (ec.SECP256R1, ec.SECP384R1)

PublicKey = ec.EllipticCurvePublicKey


def public_key_id(public_key) -> str:
    """SHA-256 over the DER SubjectPublicKeyInfo, hex encoded."""
    spki = public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(spki).hexdigest()


@dataclass(frozen=True)
class TrustAnchor:
    """A root key, optionally with its certificate, and the kinds it anchors."""

    public_key: PublicKey
    kinds: FrozenSet[EvidenceKind]
    certificate: Optional[x509.Certificate] = None
    name: str = ""
    key_id: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.public_key, ec.EllipticCurvePublicKey):
            raise ConfigurationError(
                f"Trust anchor {self.name or '<unnamed>'}: unsupported key algorithm "
                f"{type(self.public_key).__name__}"
            )
        if not isinstance(self.public_key.curve, SUPPORTED_CURVES):
            raise ConfigurationError(
                f"Trust anchor {self.name or '<unnamed>'}: unsupported curve "
                f"{self.public_key.curve.name}"
            )
        if not self.kinds:
            raise ConfigurationError(
                f"Trust anchor {self.name or '<unnamed>'} does not anchor any evidence kind"
            )
        object.__setattr__(self, "kinds", frozenset(self.kinds))
        object.__setattr__(self, "key_id", public_key_id(self.public_key))

    @classmethod
    def from_certificate(
        cls,
        cert: Union[x509.Certificate, bytes],
        kinds: Iterable[EvidenceKind],
        name: Optional[str] = None,
    ) -> "TrustAnchor":
        if isinstance(cert, bytes):
            try:
                cert = (x509.load_pem_x509_certificate(cert)
                        if cert.lstrip().startswith(b"-----")
                        else x509.load_der_x509_certificate(cert))
            except ValueError as e:
                raise ConfigurationError(f"Invalid trust anchor certificate: {e}")
        if name is None:
            name = cert.subject.rfc4514_string()
        return cls(
            public_key=cert.public_key(),
            kinds=frozenset(kinds),
            certificate=cert,
            name=name,
        )

    def matches(self, cert: x509.Certificate) -> bool:
        """True when ``cert`` carries this anchor's key."""
        try:
            return public_key_id(cert.public_key()) == self.key_id
        except (TypeError, ValueError):
            return False


@dataclass(frozen=True)
class AdvisoryPolicy:
    """
    Which security advisories (INTEL-SA-xxxxx) the relying party has already
    assessed. Acknowledged advisories downgrade a TCB advisory to
    informational; rejected advisories turn it into a failure.
    """

    acknowledged: FrozenSet[str] = frozenset()
    rejected: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "acknowledged", frozenset(a.upper() for a in self.acknowledged))
        object.__setattr__(self, "rejected", frozenset(a.upper() for a in self.rejected))
        overlap = self.acknowledged & self.rejected
        if overlap:
            raise ConfigurationError(
                f"Advisories both acknowledged and rejected: {', '.join(sorted(overlap))}"
            )


class TrustAnchorStore:
    """Read-only collection of trust anchors plus the advisory policy."""

    def __init__(
        self,
        anchors: Iterable[TrustAnchor],
        advisory_policy: Optional[AdvisoryPolicy] = None,
    ):
        anchors = tuple(anchors)
        for anchor in anchors:
            if not isinstance(anchor, TrustAnchor):
                raise ConfigurationError(f"Not a trust anchor: {anchor!r}")
        self._anchors: Tuple[TrustAnchor, ...] = anchors
        self._advisory_policy = advisory_policy or AdvisoryPolicy()

    @property
    def anchors(self) -> Tuple[TrustAnchor, ...]:
        return self._anchors

    @property
    def advisory_policy(self) -> AdvisoryPolicy:
        return self._advisory_policy

    def lookup(self, kind: EvidenceKind, signer_hint: Optional[str] = None) -> Tuple[TrustAnchor, ...]:
        """
        Candidate anchors for ``kind``, in configuration order.

        ``signer_hint`` narrows the result to anchors with that key id. An
        empty tuple is a valid answer.
        """
        return tuple(
            anchor for anchor in self._anchors
            if kind in anchor.kinds and (signer_hint is None or anchor.key_id == signer_hint)
        )

    def __len__(self) -> int:
        return len(self._anchors)

    def __repr__(self) -> str:
        names = ", ".join(anchor.name for anchor in self._anchors)
        return f"TrustAnchorStore([{names}])"


def intel_root_anchor() -> TrustAnchor:
    return TrustAnchor.from_certificate(INTEL_ROOT_CA_PEM, DCAP_KINDS, name="Intel SGX Root CA")


def aws_nitro_root_anchor() -> TrustAnchor:
    return TrustAnchor.from_certificate(
        AWS_NITRO_ROOT_PEM, {EvidenceKind.NITRO}, name="aws.nitro-enclaves"
    )


def default_store(advisory_policy: Optional[AdvisoryPolicy] = None) -> TrustAnchorStore:
    """A fresh store with the Intel SGX Root CA and the AWS Nitro root."""
    return TrustAnchorStore([intel_root_anchor(), aws_nitro_root_anchor()], advisory_policy)
