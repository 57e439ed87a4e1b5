"""
Signature workflow domain rules: the signing-order gate, signer completion
and the completion policies.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from contract_kernel.domain.signature import (
    SIGNER_TRANSITIONS,
    WORKFLOW_TRANSITIONS,
    TERMINAL_WORKFLOW_STATUSES,
    AllRequiredSignersPolicy,
    FirstSignerPolicy,
    QuorumPolicy,
    SignatureField,
    SignatureType,
    Signer,
    SignerStatus,
    WorkflowStatus,
    blocking_signers,
    resolve_completion_policy,
    signer_completes_with,
    signers_to_invite,
    sort_for_sending,
)

WORKFLOW_ID = uuid4()


def make_signer(order=1, required=True, status=SignerStatus.PENDING, position=0) -> Signer:
    return Signer(
        id=uuid4(),
        workflow_id=WORKFLOW_ID,
        name="Signer",
        email=f"{uuid4().hex}@example.com",
        signing_order=order,
        required=required,
        status=status,
        position=position,
    )


def make_field(signer: Signer, required=True, signed=False) -> SignatureField:
    return SignatureField(
        id=uuid4(),
        workflow_id=WORKFLOW_ID,
        signer_id=signer.id,
        page=1,
        x=0.0,
        y=0.0,
        width=200.0,
        height=50.0,
        signature_type=SignatureType.SIMPLE,
        required=required,
        signed_at=datetime(2024, 1, 1, tzinfo=timezone.utc) if signed else None,
    )


class TestWorkflowStateMachine:
    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_WORKFLOW_STATUSES:
            assert WORKFLOW_TRANSITIONS[status] == frozenset()

    def test_completion_only_from_in_progress(self):
        sources = [s for s, targets in WORKFLOW_TRANSITIONS.items()
                   if WorkflowStatus.COMPLETED in targets]
        assert sources == [WorkflowStatus.IN_PROGRESS]

    def test_signers_decide_once(self):
        assert SIGNER_TRANSITIONS[SignerStatus.PENDING] == {SignerStatus.SIGNED, SignerStatus.DECLINED}
        assert SIGNER_TRANSITIONS[SignerStatus.SIGNED] == frozenset()
        assert SIGNER_TRANSITIONS[SignerStatus.DECLINED] == frozenset()


class TestOrderingGate:
    def test_same_order_signers_never_block_each_other(self):
        a, b = make_signer(order=1), make_signer(order=1)
        assert blocking_signers(a, [a, b]) == []
        assert blocking_signers(b, [a, b]) == []

    def test_higher_order_waits_for_lower_required_signer(self):
        first, second = make_signer(order=1), make_signer(order=2)
        assert blocking_signers(second, [first, second]) == [first]

    def test_signed_lower_order_no_longer_blocks(self):
        first = make_signer(order=1, status=SignerStatus.SIGNED)
        second = make_signer(order=2)
        assert blocking_signers(second, [first, second]) == []

    def test_optional_signers_never_block(self):
        optional = make_signer(order=1, required=False)
        second = make_signer(order=2)
        assert blocking_signers(second, [optional, second]) == []

    def test_invitations_follow_the_order(self):
        first, parallel, later = make_signer(order=1), make_signer(order=1), make_signer(order=3)
        assert {s.id for s in signers_to_invite([later, first, parallel])} == {first.id, parallel.id}

    def test_sort_for_sending_uses_order_then_position(self):
        a = make_signer(order=2, position=0)
        b = make_signer(order=1, position=2)
        c = make_signer(order=1, position=1)
        assert sort_for_sending([a, b, c]) == [c, b, a]

    @given(st.lists(st.tuples(st.integers(min_value=1, max_value=4), st.booleans()),
                    min_size=1, max_size=8))
    @settings(max_examples=60)
    def test_lowest_pending_order_is_always_invitable(self, shapes):
        signers = [make_signer(order=o, required=r, position=i) for i, (o, r) in enumerate(shapes)]
        lowest = min(s.signing_order for s in signers)
        invited = signers_to_invite(signers)
        assert all(s in invited for s in signers if s.signing_order == lowest)


class TestSignerCompletion:
    def test_last_required_field_completes_the_signer(self):
        signer = make_signer()
        done = make_field(signer, signed=True)
        last = make_field(signer)
        assert signer_completes_with([done, last], last.id)

    def test_open_required_field_keeps_signer_pending(self):
        signer = make_signer()
        first, second = make_field(signer), make_field(signer)
        assert not signer_completes_with([first, second], first.id)

    def test_optional_fields_do_not_hold_completion(self):
        signer = make_signer()
        required, optional = make_field(signer), make_field(signer, required=False)
        assert signer_completes_with([required, optional], required.id)


class TestCompletionPolicies:
    def test_all_required_ignores_optional_signers(self):
        signers = [
            make_signer(status=SignerStatus.SIGNED),
            make_signer(required=False),
        ]
        assert AllRequiredSignersPolicy().is_satisfied(signers)

    def test_all_required_needs_every_required_signer(self):
        signers = [make_signer(status=SignerStatus.SIGNED), make_signer()]
        assert not AllRequiredSignersPolicy().is_satisfied(signers)

    def test_quorum_counts_any_signature(self):
        signers = [
            make_signer(status=SignerStatus.SIGNED),
            make_signer(required=False, status=SignerStatus.SIGNED),
            make_signer(),
        ]
        assert QuorumPolicy(2).is_satisfied(signers)
        assert not QuorumPolicy(3).is_satisfied(signers)

    def test_first_signer(self):
        assert FirstSignerPolicy().is_satisfied([make_signer(status=SignerStatus.SIGNED), make_signer()])
        assert not FirstSignerPolicy().is_satisfied([make_signer()])

    def test_resolve_by_name(self):
        assert isinstance(resolve_completion_policy("all_required"), AllRequiredSignersPolicy)
        assert resolve_completion_policy("quorum", 2).quorum == 2
        with pytest.raises(ValueError):
            resolve_completion_policy("quorum")
        with pytest.raises(ValueError):
            resolve_completion_policy("majority")

    def test_quorum_minimum_must_be_positive(self):
        with pytest.raises(ValueError):
            QuorumPolicy(0)
