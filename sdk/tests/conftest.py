"""Shared fixtures: throwaway PKIs, trust stores and signed evidence."""
import pytest

from builders import (
    NOW,
    build_collateral,
    build_nitro_document,
    build_quote,
    make_dcap_pki,
    make_nitro_pki,
)
from teeverdict.anchors import TrustAnchor, TrustAnchorStore
from teeverdict.evidence import DCAP_KINDS, EvidenceKind
from teeverdict.nitro import parse_attestation_document
from teeverdict.quote import parse_quote


@pytest.fixture(scope="session")
def dcap_pki():
    return make_dcap_pki()


@pytest.fixture(scope="session")
def nitro_pki():
    return make_nitro_pki()


@pytest.fixture(scope="session")
def store(dcap_pki, nitro_pki):
    return TrustAnchorStore([
        TrustAnchor.from_certificate(dcap_pki.root_cert, DCAP_KINDS, name="Test SGX Root CA"),
        TrustAnchor.from_certificate(nitro_pki.root_cert, {EvidenceKind.NITRO}, name="Test Nitro Root"),
    ])


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def sgx_quote(dcap_pki):
    return parse_quote(build_quote(dcap_pki), collected_at=NOW)


@pytest.fixture
def tdx_quote(dcap_pki):
    return parse_quote(build_quote(dcap_pki, tee="tdx"), collected_at=NOW)


@pytest.fixture
def sgx_collateral(dcap_pki):
    return build_collateral(dcap_pki)


@pytest.fixture
def tdx_collateral(dcap_pki):
    return build_collateral(dcap_pki, tee="tdx")


@pytest.fixture
def nitro_document(nitro_pki):
    return parse_attestation_document(build_nitro_document(nitro_pki))
