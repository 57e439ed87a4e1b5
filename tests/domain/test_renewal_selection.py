"""
Renewal domain rules: rule matching, trigger windows, deterministic
selection and successor terms.  Pure functions, no database.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from contract_kernel.domain.contract import (
    Contract,
    ContractStatus,
    ContractType,
    Party,
    PartyRole,
    RenewalStatus,
)
from contract_kernel.domain.renewal import (
    NotificationSettings,
    PriceAdjustment,
    PriceAdjustmentType,
    RenewalAction,
    RenewalCriteria,
    RenewalRule,
    RenewalRuleSpec,
    add_months,
    adjust_price,
    criteria_match,
    cycle_key,
    in_trigger_window,
    select_rule,
    successor_dates,
    validate_rule_spec,
)

TODAY = date(2024, 1, 1)
NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_contract(
    status=ContractStatus.ACTIVE,
    end_date=date(2024, 1, 30),
    value=Decimal("1000"),
    contract_type=ContractType.SERVICE,
    client_id=None,
) -> Contract:
    return Contract(
        id=uuid4(),
        tenant_id=uuid4(),
        contract_type=contract_type,
        title="Office lease",
        body="...",
        status=status,
        start_date=date(2023, 1, 30),
        end_date=end_date,
        value=value,
        currency="USD",
        auto_renew=False,
        renewal_period_months=12,
        requires_signature=False,
        renewal_status=RenewalStatus.NONE,
        parties=(
            Party(id=uuid4(), position=0, name="Client", email="c@example.com",
                  role=PartyRole.CLIENT, client_id=client_id),
            Party(id=uuid4(), position=1, name="Company", email="co@example.com",
                  role=PartyRole.COMPANY),
        ),
        terms=(),
        metadata={},
        created_at=NOW,
        created_by_id=uuid4(),
        version=1,
    )


def make_rule(priority=100, creation_seq=1, trigger_days=30, is_active=True,
              criteria=None, action=RenewalAction.PROPOSE) -> RenewalRule:
    return RenewalRule(
        id=uuid4(),
        tenant_id=uuid4(),
        name=f"rule-{creation_seq}",
        action=action,
        trigger_days=trigger_days,
        renewal_period_months=12,
        criteria=criteria or RenewalCriteria(),
        price_adjustment=PriceAdjustment(),
        notification=NotificationSettings(),
        priority=priority,
        is_active=is_active,
        creation_seq=creation_seq,
        created_at=NOW,
    )


class TestTriggerWindow:
    def test_window_opens_trigger_days_before_end(self):
        assert in_trigger_window(date(2024, 1, 31), 30, TODAY)
        assert not in_trigger_window(date(2024, 2, 1), 30, TODAY)

    def test_window_closes_on_end_date(self):
        assert in_trigger_window(TODAY, 30, TODAY)
        assert not in_trigger_window(date(2023, 12, 31), 30, TODAY)

    def test_no_end_date_never_triggers(self):
        assert not in_trigger_window(None, 365, TODAY)


class TestCriteria:
    def test_empty_criteria_matches_everything(self):
        assert criteria_match(RenewalCriteria(), make_contract())

    def test_contract_type_filter(self):
        criteria = RenewalCriteria(contract_types=(ContractType.LEASE,))
        assert not criteria_match(criteria, make_contract())
        assert criteria_match(criteria, make_contract(contract_type=ContractType.LEASE))

    def test_value_bounds_are_inclusive(self):
        criteria = RenewalCriteria(min_contract_value=Decimal("1000"),
                                   max_contract_value=Decimal("2000"))
        assert criteria_match(criteria, make_contract(value=Decimal("1000")))
        assert criteria_match(criteria, make_contract(value=Decimal("2000")))
        assert not criteria_match(criteria, make_contract(value=Decimal("999.99")))

    def test_excluded_client(self):
        client_id = uuid4()
        criteria = RenewalCriteria(exclude_client_ids=(client_id,))
        assert not criteria_match(criteria, make_contract(client_id=client_id))
        assert criteria_match(criteria, make_contract(client_id=uuid4()))


class TestRuleSelection:
    def test_lowest_priority_number_wins(self):
        low = make_rule(priority=10, creation_seq=2)
        high = make_rule(priority=50, creation_seq=1)
        assert select_rule([high, low], make_contract(), TODAY) is low

    def test_priority_tie_goes_to_rule_created_first(self):
        first = make_rule(priority=10, creation_seq=1)
        second = make_rule(priority=10, creation_seq=2)
        assert select_rule([second, first], make_contract(), TODAY) is first

    def test_inactive_and_unopened_rules_are_ignored(self):
        inactive = make_rule(priority=1, creation_seq=1, is_active=False)
        not_yet = make_rule(priority=2, creation_seq=2, trigger_days=5)
        eligible = make_rule(priority=3, creation_seq=3)
        assert select_rule([inactive, not_yet, eligible], make_contract(), TODAY) is eligible

    @pytest.mark.parametrize("status", [s for s in ContractStatus if s != ContractStatus.ACTIVE])
    def test_only_active_contracts_are_renewable(self, status):
        assert select_rule([make_rule()], make_contract(status=status), TODAY) is None

    @given(st.lists(
        st.tuples(st.integers(min_value=0, max_value=5), st.integers(min_value=1, max_value=60)),
        min_size=1, max_size=12,
    ))
    @settings(max_examples=75)
    def test_selection_is_minimum_of_priority_then_sequence(self, shapes):
        rules = [
            make_rule(priority=priority, creation_seq=seq, trigger_days=trigger)
            for seq, (priority, trigger) in enumerate(shapes, start=1)
        ]
        contract = make_contract(end_date=date(2024, 1, 21))
        eligible = [r for r in rules if r.trigger_days >= 20]
        selected = select_rule(list(reversed(rules)), contract, TODAY)
        if not eligible:
            assert selected is None
        else:
            assert selected == min(eligible, key=lambda r: (r.priority, r.creation_seq))


class TestSuccessorTerms:
    def test_add_months_clamps_to_month_end(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)

    def test_successor_starts_on_source_end_date(self):
        assert successor_dates(date(2024, 1, 30), 12) == (date(2024, 1, 30), date(2025, 1, 30))

    def test_percentage_adjustment_rounds_to_cents(self):
        adjustment = PriceAdjustment(PriceAdjustmentType.PERCENTAGE, Decimal("3.5"))
        assert adjust_price(Decimal("1234.56"), adjustment) == Decimal("1277.77")

    def test_fixed_adjustment_never_goes_negative(self):
        adjustment = PriceAdjustment(PriceAdjustmentType.FIXED_AMOUNT, Decimal("-500"))
        assert adjust_price(Decimal("100"), adjustment) == Decimal("0.00")

    @given(
        st.decimals(min_value=0, max_value=10_000_000, places=2),
        st.decimals(min_value=-50, max_value=100, places=2),
    )
    def test_adjusted_price_is_non_negative_cents(self, value, percent):
        result = adjust_price(value, PriceAdjustment(PriceAdjustmentType.PERCENTAGE, percent))
        assert result >= 0
        assert result == result.quantize(Decimal("0.01"))

    def test_cycle_key_is_per_end_date(self):
        contract_id = uuid4()
        assert cycle_key(contract_id, date(2024, 1, 30)) != cycle_key(contract_id, date(2025, 1, 30))


class TestRuleValidation:
    def test_out_of_range_fields_are_reported_together(self):
        spec = RenewalRuleSpec(
            name=" ",
            action=RenewalAction.AUTO_RENEW,
            trigger_days=0,
            renewal_period_months=121,
            price_adjustment=PriceAdjustment(PriceAdjustmentType.PERCENTAGE, Decimal("150")),
            criteria=RenewalCriteria(min_contract_value=Decimal("10"),
                                     max_contract_value=Decimal("5")),
            priority=-1,
        )
        errors = validate_rule_spec(spec)
        assert len(errors) == 6
