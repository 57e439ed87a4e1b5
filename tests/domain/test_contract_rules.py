"""
Contract domain rules: transition table, spec validation and metadata.
"""

from datetime import date
from decimal import Decimal

import pytest

from contract_kernel.domain.contract import (
    CONTRACT_TRANSITIONS,
    TERMINAL_CONTRACT_STATUSES,
    ContractStatus,
    PartyRole,
    PartySpec,
    can_transition,
    validate_contract_spec,
)
from contract_kernel.domain.metadata import (
    DEFAULT_METADATA_FIELDS,
    validate_metadata,
)
from contract_kernel.exceptions import ValidationError


class TestTransitionTable:
    @pytest.mark.parametrize(
        "source,target",
        [
            (ContractStatus.DRAFT, ContractStatus.PENDING_SIGNATURE),
            (ContractStatus.DRAFT, ContractStatus.ACTIVE),
            (ContractStatus.DRAFT, ContractStatus.CANCELLED),
            (ContractStatus.PENDING_SIGNATURE, ContractStatus.ACTIVE),
            (ContractStatus.PENDING_SIGNATURE, ContractStatus.CANCELLED),
            (ContractStatus.ACTIVE, ContractStatus.SUSPENDED),
            (ContractStatus.ACTIVE, ContractStatus.TERMINATED),
            (ContractStatus.ACTIVE, ContractStatus.EXPIRED),
            (ContractStatus.SUSPENDED, ContractStatus.ACTIVE),
            (ContractStatus.SUSPENDED, ContractStatus.TERMINATED),
            (ContractStatus.SUSPENDED, ContractStatus.EXPIRED),
        ],
    )
    def test_allowed_edges(self, source, target):
        assert can_transition(source, target)

    def test_edge_count(self):
        assert sum(len(targets) for targets in CONTRACT_TRANSITIONS.values()) == 11

    def test_terminal_states_are_final(self):
        for status in TERMINAL_CONTRACT_STATUSES:
            assert not any(can_transition(status, target) for target in ContractStatus)

    def test_no_way_back_to_draft(self):
        assert not any(can_transition(source, ContractStatus.DRAFT) for source in ContractStatus)


class TestSpecValidation:
    def test_valid_spec_has_no_errors(self, contract_spec):
        assert validate_contract_spec(contract_spec()) == []

    def test_requires_exactly_one_client_and_one_company(self, contract_spec):
        parties = (
            PartySpec(name="A", email="a@example.com", role=PartyRole.CLIENT),
            PartySpec(name="B", email="b@example.com", role=PartyRole.CLIENT),
        )
        errors = validate_contract_spec(contract_spec(parties=parties))
        assert "exactly one client party is required, found 2" in errors
        assert "exactly one company party is required, found 0" in errors

    def test_single_party_is_rejected(self, contract_spec):
        parties = (PartySpec(name="A", email="a@example.com", role=PartyRole.CLIENT),)
        assert "a contract requires at least two parties" in validate_contract_spec(contract_spec(parties=parties))

    def test_duplicate_party_email_is_case_insensitive(self, contract_spec):
        parties = (
            PartySpec(name="A", email="Same@example.com", role=PartyRole.CLIENT),
            PartySpec(name="B", email="same@example.com", role=PartyRole.COMPANY),
        )
        errors = validate_contract_spec(contract_spec(parties=parties))
        assert any("duplicate email" in e for e in errors)

    def test_end_before_start(self, contract_spec):
        errors = validate_contract_spec(contract_spec(start_date=date(2024, 6, 1), end_date=date(2024, 5, 31)))
        assert errors == ["end_date 2024-05-31 is before start_date 2024-06-01"]

    def test_end_equal_to_start_is_allowed(self, contract_spec):
        assert validate_contract_spec(contract_spec(start_date=date(2024, 6, 1), end_date=date(2024, 6, 1))) == []

    def test_auto_renew_requires_end_date(self, contract_spec):
        errors = validate_contract_spec(contract_spec(end_date=None, auto_renew=True))
        assert errors == ["auto_renew requires an end_date"]

    def test_commercials(self, contract_spec):
        errors = validate_contract_spec(
            contract_spec(value=Decimal("-1"), currency="usd", renewal_period_months=0)
        )
        assert len(errors) == 3

    def test_body_or_template_required(self, contract_spec):
        assert "either body or template_id is required" in validate_contract_spec(contract_spec(body=None))


class TestMetadata:
    def test_values_are_normalized(self):
        normalized = validate_metadata(
            {"desk_count": 4, "deposit_amount": Decimal("250.5"), "move_in_date": date(2024, 2, 1),
             "is_corporate": True, "notes": None},
            DEFAULT_METADATA_FIELDS,
        )
        assert normalized == {
            "desk_count": 4,
            "deposit_amount": "250.5",
            "move_in_date": "2024-02-01",
            "is_corporate": True,
        }

    def test_unknown_keys_and_bad_types_are_reported_together(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_metadata({"colour": "red", "desk_count": True}, DEFAULT_METADATA_FIELDS)
        assert len(exc_info.value.errors) == 2
        assert exc_info.value.field == "metadata"
