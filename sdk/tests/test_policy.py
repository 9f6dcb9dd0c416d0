"""Tests for policy trees and their combinators."""
import pytest

from teeverdict.checks import Check, NitroDocumentCheck, SignatureCheck
from teeverdict.evidence import DCAP_KINDS, EvidenceKind
from teeverdict.exceptions import ConfigurationError
from teeverdict.policies import dcap_policy, nitro_policy
from teeverdict.policy import (
    And,
    Leaf,
    Or,
    Policy,
    Threshold,
    combine_and,
    combine_or,
    combine_threshold,
)
from teeverdict.results import CheckStatus, ReasonCode, advisory, failed, passed

P, F, A = CheckStatus.PASS, CheckStatus.FAIL, CheckStatus.ADVISORY


class Fixed(Check):
    """A check that always returns the same status."""

    def __init__(self, status, check_id="fixed"):
        self.status = status
        self.check_id = check_id
        self.calls = 0

    def _check(self, evidence, collateral, anchors, context):
        self.calls += 1
        if self.status is CheckStatus.PASS:
            return passed(self.check_id, "ok")
        if self.status is CheckStatus.ADVISORY:
            return advisory(self.check_id, ReasonCode.TCB_SW_HARDENING_NEEDED, "advisory")
        return failed(self.check_id, ReasonCode.MEASUREMENT_MISMATCH, "failed")


def leaf(status, label):
    return Leaf(Fixed(status), label)


class TestCombinators:
    """Tests for And, Or and Threshold folding."""

    @pytest.mark.parametrize("statuses,expected", [
        ([P, P, P], P),
        ([P, A, P], A),
        ([A, F, P], F),
        ([F], F),
    ])
    def test_and(self, statuses, expected):
        assert combine_and(statuses) is expected

    @pytest.mark.parametrize("statuses,expected", [
        ([F, F, P], P),
        ([F, A], A),
        ([F, F], F),
        ([A, P], P),
    ])
    def test_or(self, statuses, expected):
        assert combine_or(statuses) is expected

    @pytest.mark.parametrize("statuses,k,weight,expected", [
        ([P, P, F], 2, 0.5, P),
        ([P, A, F], 2, 0.5, F),
        ([P, A, A], 2, 0.5, A),
        ([P, A, F], 2, 1.0, A),
        ([A, A, A], 1, 0.0, F),
        ([F, F, P], 1, 0.5, P),
    ])
    def test_threshold(self, statuses, k, weight, expected):
        assert combine_threshold(statuses, k, weight) is expected


class TestPolicyConstruction:
    """Tests for validation at construction time."""

    def test_leaves_in_depth_first_order(self):
        policy = Policy("p", And(
            leaf(P, "a"),
            Or(leaf(P, "b"), Threshold(1, leaf(P, "c"), leaf(P, "d"))),
            leaf(P, "e"),
        ))
        assert [node.id for node in policy.leaves] == ["a", "b", "c", "d", "e"]

    def test_default_label_is_check_id(self):
        policy = Policy("p", Leaf(SignatureCheck()))
        assert policy.leaves[0].id == "signature"

    def test_empty_combinator(self):
        with pytest.raises(ConfigurationError, match="no children"):
            Policy("p", And())

    def test_nested_empty_combinator(self):
        with pytest.raises(ConfigurationError, match="no children"):
            Policy("p", And(leaf(P, "a"), Or()))

    @pytest.mark.parametrize("k", [0, 3])
    def test_threshold_out_of_range(self, k):
        with pytest.raises(ConfigurationError, match="threshold"):
            Policy("p", Threshold(k, leaf(P, "a"), leaf(P, "b")))

    def test_advisory_weight_out_of_range(self):
        with pytest.raises(ConfigurationError, match="advisory weight"):
            Policy("p", Threshold(1, leaf(P, "a"), advisory_weight=1.5))

    def test_duplicate_labels(self):
        with pytest.raises(ConfigurationError, match="Duplicate leaf label"):
            Policy("p", And(Leaf(SignatureCheck()), Leaf(SignatureCheck())))

    def test_distinct_labels_allow_repeated_checks(self):
        policy = Policy("p", Or(Leaf(SignatureCheck(), "first"), Leaf(SignatureCheck(), "second")))
        assert len(policy.leaves) == 2

    def test_leaf_must_hold_a_check(self):
        with pytest.raises(ConfigurationError, match="does not hold a Check"):
            Policy("p", Leaf("signature"))

    def test_not_a_node(self):
        with pytest.raises(ConfigurationError, match="not a policy node"):
            Policy("p", And(leaf(P, "a"), "b"))

    def test_kind_not_supported_by_leaf(self):
        """A DCAP-only check cannot sit in a Nitro policy."""
        with pytest.raises(ConfigurationError, match="signature cannot check NITRO"):
            Policy("p", And(Leaf(SignatureCheck()), leaf(P, "a")), kinds=[EvidenceKind.NITRO])

    def test_kinds_inferred_from_checks(self):
        policy = Policy("p", And(Leaf(SignatureCheck()), leaf(P, "a")))
        assert policy.kinds == DCAP_KINDS

    def test_checks_without_common_kind(self):
        with pytest.raises(ConfigurationError, match="share no evidence kind"):
            Policy("p", Or(Leaf(SignatureCheck()), Leaf(NitroDocumentCheck())))

    def test_requires_name(self):
        with pytest.raises(ConfigurationError):
            Policy("", leaf(P, "a"))

    def test_aggregate_needs_one_status_per_leaf(self):
        policy = Policy("p", And(leaf(P, "a"), leaf(P, "b")))
        with pytest.raises(ValueError):
            policy.aggregate([P])

    def test_aggregate(self):
        policy = Policy("p", Or(And(leaf(P, "a"), leaf(F, "b")), Threshold(1, leaf(A, "c"), leaf(P, "d"))))
        assert policy.aggregate([P, F, A, P]) is P
        assert policy.aggregate([A, P, A, F]) is A
        assert policy.aggregate([P, F, F, F]) is F


class TestPrebuiltPolicies:
    """Tests for the ready-made policies."""

    def test_dcap_policy(self):
        policy = dcap_policy("sgx")

        assert policy.name == "sgx-dcap"
        assert policy.kinds == frozenset({EvidenceKind.SGX})
        assert [node.id for node in policy.leaves] == [
            "cert_chain", "signature", "tcb_status", "measurement", "report_data",
        ]

    def test_dcap_policy_with_freshness(self):
        policy = dcap_policy(EvidenceKind.TDX, freshness=True, tcb_tolerance=2)

        assert policy.leaves[-1].id == "freshness"
        assert policy.leaves[2].check.out_of_date_levels_tolerated == 2

    def test_dcap_policy_rejects_nitro(self):
        with pytest.raises(ConfigurationError, match="not a DCAP"):
            dcap_policy("nitro")

    def test_dcap_policy_unknown_kind(self):
        with pytest.raises(ConfigurationError, match="Unknown evidence kind"):
            dcap_policy("sev")

    def test_nitro_policy(self):
        policy = nitro_policy()

        assert policy.kinds == frozenset({EvidenceKind.NITRO})
        assert [node.id for node in policy.leaves] == ["nitro_document", "measurement", "report_data", "freshness"]
        assert len(nitro_policy(freshness=False).leaves) == 3
