"""Tests for measurement, report data, freshness and Nitro document checks."""
import dataclasses
from datetime import timedelta

import cbor2
import pytest

from builders import (
    MRENCLAVE,
    NITRO_NONCE,
    NITRO_USER_DATA,
    NOW,
    PCR0,
    REPORT_DATA,
    build_collateral,
    build_nitro_document,
    make_context,
    make_nitro_pki,
)
from teeverdict.anchors import TrustAnchor, TrustAnchorStore
from teeverdict.checks import (
    AlwaysFail,
    AlwaysPass,
    Check,
    FreshnessCheck,
    MeasurementCheck,
    NitroDocumentCheck,
    ReportDataCheck,
)
from teeverdict.collateral import EMPTY_COLLATERAL
from teeverdict.evidence import EvidenceKind
from teeverdict.nitro import parse_attestation_document
from teeverdict.reference import ReferenceValues
from teeverdict.results import CheckStatus, ReasonCode


def run(check, evidence, reference=None, collateral=EMPTY_COLLATERAL, store=None, now=NOW):
    context = make_context(evidence, reference, now=now)
    return check.check(evidence, collateral, store or TrustAnchorStore([]), context)


class TestMeasurementCheck:
    """Tests for allow-list matching."""

    def test_match(self, sgx_quote):
        reference = ReferenceValues(measurements={"mrenclave": [MRENCLAVE.hex()]})
        result = run(MeasurementCheck(), sgx_quote, reference)

        assert result.status is CheckStatus.PASS
        assert dict(result.details)["matched"] == ("mrenclave",)

    def test_any_allowed_value_matches(self, sgx_quote):
        reference = ReferenceValues(measurements={"mrenclave": ["00" * 32, MRENCLAVE.hex().upper()]})
        assert run(MeasurementCheck(), sgx_quote, reference).passed

    def test_mismatch(self, sgx_quote):
        reference = ReferenceValues(measurements={"mrenclave": ["00" * 32]})
        result = run(MeasurementCheck(), sgx_quote, reference)

        assert result.reason is ReasonCode.MEASUREMENT_MISMATCH
        assert dict(result.details)["actual"] == MRENCLAVE.hex()

    def test_every_named_measurement_must_match(self, sgx_quote):
        reference = ReferenceValues(measurements={
            "mrenclave": [MRENCLAVE.hex()],
            "mrsigner": ["00" * 32],
        })
        result = run(MeasurementCheck(), sgx_quote, reference)

        assert result.reason is ReasonCode.MEASUREMENT_MISMATCH
        assert dict(result.details)["measurement"] == "mrsigner"

    def test_unknown_measurement(self, sgx_quote):
        """An SGX quote has no RTMRs."""
        reference = ReferenceValues(measurements={"rtmr0": ["00" * 48]})
        result = run(MeasurementCheck(), sgx_quote, reference)

        assert result.reason is ReasonCode.MEASUREMENT_MISMATCH
        assert "no measurement rtmr0" in result.explanation

    def test_missing_allow_list(self, sgx_quote):
        result = run(MeasurementCheck(), sgx_quote)
        assert result.reason is ReasonCode.MEASUREMENT_ALLOWLIST_MISSING

    def test_nitro_pcr(self, nitro_document):
        reference = ReferenceValues(measurements={"pcr0": [PCR0.hex()]})
        assert run(MeasurementCheck(), nitro_document, reference).passed


class TestReportDataCheck:
    """Tests for report data binding."""

    def test_match(self, sgx_quote):
        reference = ReferenceValues(report_data=REPORT_DATA)
        assert run(ReportDataCheck(), sgx_quote, reference).status is CheckStatus.PASS

    def test_one_byte_differs(self, sgx_quote):
        expected = bytearray(REPORT_DATA)
        expected[63] ^= 0x01
        result = run(ReportDataCheck(), sgx_quote, ReferenceValues(report_data=bytes(expected)))

        assert result.status is CheckStatus.FAIL
        assert result.reason is ReasonCode.REPORT_DATA_MISMATCH

    def test_unpadded_value_does_not_match(self, sgx_quote):
        """Comparison is exact; short values are not padded implicitly."""
        reference = ReferenceValues(report_data=bytes.fromhex("deadbeef"))
        assert run(ReportDataCheck(), sgx_quote, reference).reason is ReasonCode.REPORT_DATA_MISMATCH

    def test_missing_expectation(self, sgx_quote):
        result = run(ReportDataCheck(), sgx_quote)
        assert result.reason is ReasonCode.REPORT_DATA_EXPECTATION_MISSING

    def test_nitro_user_data(self, nitro_document):
        reference = ReferenceValues(report_data=NITRO_USER_DATA)
        assert run(ReportDataCheck(), nitro_document, reference).passed


class TestFreshnessCheck:
    """Tests for evidence age, nonces and collateral windows."""

    def test_no_constraints(self, sgx_quote):
        result = run(FreshnessCheck(), sgx_quote)

        assert result.passed
        assert result.explanation == "No freshness constraints applied"

    def test_fresh_nitro_document(self, nitro_document):
        reference = ReferenceValues(max_evidence_age=timedelta(minutes=5), nonce=NITRO_NONCE)
        result = run(FreshnessCheck(), nitro_document, reference)

        assert result.passed
        assert dict(result.details)["checked"] == ("evidence age", "nonce")

    def test_stale_nitro_document(self, nitro_document):
        reference = ReferenceValues(max_evidence_age=timedelta(minutes=5), clock_skew=timedelta(0))
        result = run(FreshnessCheck(), nitro_document, reference, now=NOW + timedelta(minutes=6))

        assert result.reason is ReasonCode.STALE

    def test_skew_tolerance(self, nitro_document):
        """Evidence just past the window is accepted within the clock skew."""
        reference = ReferenceValues(max_evidence_age=timedelta(minutes=5), clock_skew=timedelta(seconds=60))
        assert run(FreshnessCheck(), nitro_document, reference, now=NOW + timedelta(minutes=5)).passed

    def test_future_evidence(self, nitro_document):
        reference = ReferenceValues(max_evidence_age=timedelta(minutes=5), clock_skew=timedelta(0))
        result = run(FreshnessCheck(), nitro_document, reference, now=NOW - timedelta(minutes=1))

        assert result.reason is ReasonCode.STALE
        assert "future" in result.explanation

    def test_dcap_quote_without_collection_time(self, sgx_quote):
        quote = dataclasses.replace(sgx_quote, collected_at=None)
        reference = ReferenceValues(max_evidence_age=timedelta(minutes=5))

        assert run(FreshnessCheck(), quote, reference).reason is ReasonCode.EVIDENCE_TIMESTAMP_MISSING

    def test_nonce_mismatch(self, nitro_document):
        reference = ReferenceValues(nonce=b"\x00" * 16)
        assert run(FreshnessCheck(), nitro_document, reference).reason is ReasonCode.NONCE_MISMATCH

    def test_nonce_expected_from_dcap_quote(self, sgx_quote):
        """DCAP quotes carry no nonce field; bind nonces through report data instead."""
        reference = ReferenceValues(nonce=b"\x00" * 16)
        assert run(FreshnessCheck(), sgx_quote, reference).reason is ReasonCode.NONCE_MISMATCH

    def test_collateral_in_window(self, dcap_pki, sgx_quote):
        result = run(FreshnessCheck(), sgx_quote, collateral=build_collateral(dcap_pki))

        assert result.passed
        assert dict(result.details)["checked"] == ("TCB info", "QE identity")

    def test_collateral_past_next_update(self, dcap_pki, sgx_quote):
        collateral = build_collateral(dcap_pki, next_update=NOW - timedelta(hours=1))
        result = run(FreshnessCheck(), sgx_quote, collateral=collateral)

        assert result.reason is ReasonCode.STALE
        assert "TCB info expired" in result.explanation

    def test_collateral_next_update_within_skew(self, dcap_pki, sgx_quote):
        collateral = build_collateral(dcap_pki, next_update=NOW - timedelta(seconds=30))

        assert run(FreshnessCheck(), sgx_quote, ReferenceValues(clock_skew=timedelta(seconds=60)),
                   collateral=collateral).passed
        assert run(FreshnessCheck(), sgx_quote, ReferenceValues(clock_skew=timedelta(0)),
                   collateral=collateral).reason is ReasonCode.STALE

    def test_collateral_too_old(self, dcap_pki, sgx_quote):
        collateral = build_collateral(dcap_pki, issue_date=NOW - timedelta(days=20))
        reference = ReferenceValues(max_collateral_age=timedelta(days=7))

        assert run(FreshnessCheck(), sgx_quote, reference, collateral).reason is ReasonCode.STALE

    def test_collateral_issued_in_future(self, dcap_pki, sgx_quote):
        collateral = build_collateral(dcap_pki, issue_date=NOW + timedelta(days=1))
        result = run(FreshnessCheck(), sgx_quote, collateral=collateral)

        assert result.reason is ReasonCode.STALE
        assert "future" in result.explanation

    def test_tcb_evaluation_data_number(self, dcap_pki, sgx_quote):
        collateral = build_collateral(dcap_pki, evaluation_data_number=16)
        reference = ReferenceValues(min_tcb_evaluation_data_number=17)
        result = run(FreshnessCheck(), sgx_quote, reference, collateral)

        assert result.reason is ReasonCode.STALE
        assert "evaluation data number 16" in result.explanation


class TestNitroDocumentCheck:
    """Tests for the COSE envelope and certificate chain."""

    def test_valid(self, nitro_document, store):
        result = run(NitroDocumentCheck(), nitro_document, store=store)

        assert result.status is CheckStatus.PASS
        assert dict(result.details)["module_id"] == nitro_document.module_id

    def test_tampered_payload(self, nitro_document, store):
        payload = cbor2.loads(nitro_document.payload)
        payload["pcrs"][0] = b"\x00" * 48
        tampered = dataclasses.replace(nitro_document, payload=cbor2.dumps(payload))
        result = run(NitroDocumentCheck(), tampered, store=store)

        assert result.reason is ReasonCode.SIGNATURE_INVALID

    def test_tagged_document(self, nitro_pki, store):
        doc = parse_attestation_document(build_nitro_document(nitro_pki, tagged=True))
        assert run(NitroDocumentCheck(), doc, store=store).status is CheckStatus.PASS

    def test_wrong_algorithm(self, nitro_pki, store):
        doc = parse_attestation_document(build_nitro_document(nitro_pki, algorithm=-7))
        result = run(NitroDocumentCheck(), doc, store=store)

        assert result.reason is ReasonCode.UNSUPPORTED_ALGORITHM

    def test_untrusted_root(self, nitro_document):
        store = TrustAnchorStore([
            TrustAnchor.from_certificate(make_nitro_pki().root_cert, {EvidenceKind.NITRO}),
        ])
        result = run(NitroDocumentCheck(), nitro_document, store=store)

        assert result.reason is ReasonCode.UNTRUSTED_ROOT

    def test_expired_signing_certificate(self, nitro_document, store):
        result = run(NitroDocumentCheck(), nitro_document, store=store, now=NOW + timedelta(hours=3))
        assert result.reason is ReasonCode.EXPIRED

    def test_dcap_evidence_unsupported(self, sgx_quote, store):
        result = run(NitroDocumentCheck(), sgx_quote, store=store)
        assert result.reason is ReasonCode.UNSUPPORTED_EVIDENCE


class TestCheckBase:
    """Tests for the shared check wrapper."""

    def test_unexpected_error_becomes_malformed(self, sgx_quote):
        class Exploding(Check):
            check_id = "exploding"

            def _check(self, evidence, collateral, anchors, context):
                raise KeyError("boom")

        result = run(Exploding(), sgx_quote)

        assert result.status is CheckStatus.FAIL
        assert result.reason is ReasonCode.MALFORMED_EVIDENCE
        assert result.check_id == "exploding"


class TestConstantChecks:
    """Tests for AlwaysPass and AlwaysFail."""

    @pytest.mark.parametrize("evidence", ["sgx_quote", "tdx_quote", "nitro_document"])
    def test_always_pass(self, evidence, request):
        result = run(AlwaysPass(), request.getfixturevalue(evidence))

        assert result.status is CheckStatus.PASS
        assert result.check_id == "always_pass"

    @pytest.mark.parametrize("evidence", ["sgx_quote", "tdx_quote", "nitro_document"])
    def test_always_fail(self, evidence, request):
        result = run(AlwaysFail(), request.getfixturevalue(evidence))

        assert result.status is CheckStatus.FAIL
        assert result.reason is ReasonCode.ALWAYS_FAIL
