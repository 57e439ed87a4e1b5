"""
ContractLifecycleManager tests.

Verifies:
- Creation validates and persists a DRAFT contract with its parties and terms
- Every transition is applied only along an allowed edge
- A refused operation leaves the contract unchanged and is audited
- Scheduled terminations and the expiration sweep
- Tenant scoping, authorization and the dashboard figures
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from contract_kernel.domain.contract import (
    ContractFilter,
    ContractStatus,
    ContractType,
    ContractUpdate,
    RenewalStatus,
)
from contract_kernel.exceptions import (
    ContractNotFoundError,
    InvalidStateError,
    TenantLockHeldError,
    UnauthorizedError,
    ValidationError,
)
from contract_kernel.models.audit_event import AuditAction
from contract_kernel.services.contract_lifecycle import (
    EXPIRATION_LOCK,
    ContractLifecycleManager,
)
from contract_kernel.services.tenant_lock import TenantLockService


class TestCreateContract:
    def test_creates_draft_with_parties_and_terms(self, create_contract, lifecycle_manager, tenant_id):
        contract = create_contract(metadata={"desk_count": 3})

        assert contract.status == ContractStatus.DRAFT
        assert contract.renewal_status == RenewalStatus.NONE
        assert [p.role.value for p in contract.parties] == ["client", "company"]
        assert [t.heading for t in contract.terms] == ["Services", "Payment"]
        assert contract.metadata == {"desk_count": 3}
        assert contract.version == 1
        assert lifecycle_manager.get_contract(tenant_id, contract.id) == contract

    def test_creation_is_audited_with_initial_status(self, create_contract, lifecycle_manager, tenant_id):
        contract = create_contract()
        activity = lifecycle_manager.get_contract_activity(tenant_id, contract.id)
        assert [e.action for e in activity] == [AuditAction.CONTRACT_CREATED]
        assert activity[0].payload["status"] == "draft"

    def test_invalid_spec_reports_every_problem(self, create_contract):
        with pytest.raises(ValidationError) as exc_info:
            create_contract(title=" ", end_date=date(2023, 1, 1), currency="usd")
        assert len(exc_info.value.errors) == 3

    def test_template_body_is_rendered(self, session, auditor_service, deterministic_clock,
                                       contract_spec, tenant_id, test_actor_id):
        class Renderer:
            def render(self, template_id, variables):
                return f"{template_id}: {variables['client']}"

        manager = ContractLifecycleManager(session, auditor_service, deterministic_clock,
                                           renderer=Renderer())
        contract = manager.create_contract(
            tenant_id, test_actor_id,
            contract_spec(body=None, template_id="membership-v2", template_variables={"client": "Acme"}),
        )
        assert contract.body == "membership-v2: Acme"
        assert contract.template_id == "membership-v2"

    def test_template_without_renderer_is_rejected(self, create_contract):
        with pytest.raises(ValidationError):
            create_contract(body=None, template_id="membership-v2")


class TestTransitions:
    def test_activate_without_signature(self, create_contract, lifecycle_manager, tenant_id,
                                        test_actor_id, deterministic_clock, notifications):
        contract = create_contract(requires_signature=False)
        active = lifecycle_manager.activate_contract(tenant_id, contract.id, test_actor_id)

        assert active.status == ContractStatus.ACTIVE
        assert active.activated_at == deterministic_clock.now()
        assert active.version == contract.version + 1
        assert "contract.activated" in notifications.events()

    def test_activate_requires_signature_when_flagged(self, create_contract, lifecycle_manager,
                                                      tenant_id, test_actor_id):
        contract = create_contract()
        with pytest.raises(InvalidStateError) as exc_info:
            lifecycle_manager.activate_contract(tenant_id, contract.id, test_actor_id)
        assert exc_info.value.detail == "contract requires a signature"

    def test_pending_signature_needs_completed_workflow(self, create_contract, lifecycle_manager,
                                                        tenant_id, test_actor_id):
        contract = create_contract(requires_signature=False)
        lifecycle_manager.mark_pending_signature(tenant_id, contract.id, test_actor_id)
        with pytest.raises(InvalidStateError):
            lifecycle_manager.activate_contract(tenant_id, contract.id, test_actor_id)
        assert lifecycle_manager.get_contract(tenant_id, contract.id).status == ContractStatus.PENDING_SIGNATURE

    def test_mark_pending_is_idempotent(self, create_contract, lifecycle_manager, tenant_id, test_actor_id):
        contract = create_contract()
        first = lifecycle_manager.mark_pending_signature(tenant_id, contract.id, test_actor_id)
        second = lifecycle_manager.mark_pending_signature(tenant_id, contract.id, test_actor_id)
        assert first.status == second.status == ContractStatus.PENDING_SIGNATURE
        assert first.version == second.version

    def test_suspend_and_reactivate(self, create_active_contract, lifecycle_manager, tenant_id, test_actor_id):
        contract = create_active_contract()
        suspended = lifecycle_manager.suspend_contract(tenant_id, contract.id, test_actor_id, "unpaid invoice")
        assert suspended.status == ContractStatus.SUSPENDED
        assert suspended.status_reason == "unpaid invoice"

        reactivated = lifecycle_manager.reactivate_contract(tenant_id, contract.id, test_actor_id)
        assert reactivated.status == ContractStatus.ACTIVE
        assert reactivated.suspended_at is None
        assert reactivated.status_reason is None

    def test_suspend_requires_reason(self, create_active_contract, lifecycle_manager, tenant_id, test_actor_id):
        contract = create_active_contract()
        with pytest.raises(ValidationError):
            lifecycle_manager.suspend_contract(tenant_id, contract.id, test_actor_id, "  ")

    def test_terminate_immediately(self, create_active_contract, lifecycle_manager, tenant_id,
                                   test_actor_id, deterministic_clock):
        contract = create_active_contract()
        terminated = lifecycle_manager.terminate_contract(tenant_id, contract.id, test_actor_id, "breach")
        assert terminated.status == ContractStatus.TERMINATED
        assert terminated.termination_effective_date == deterministic_clock.today()

    def test_future_termination_is_scheduled(self, create_active_contract, lifecycle_manager, tenant_id,
                                             test_actor_id, deterministic_clock):
        contract = create_active_contract()
        effective = deterministic_clock.today() + timedelta(days=10)
        scheduled = lifecycle_manager.terminate_contract(
            tenant_id, contract.id, test_actor_id, "moving out", effective_date=effective,
        )
        assert scheduled.status == ContractStatus.ACTIVE
        assert scheduled.termination_effective_date == effective

        deterministic_clock.advance_days(10)
        result = lifecycle_manager.expire_due_contracts(tenant_id, test_actor_id)
        assert result.terminated == 1
        assert lifecycle_manager.get_contract(tenant_id, contract.id).status == ContractStatus.TERMINATED

    def test_cancel_draft(self, create_contract, lifecycle_manager, tenant_id, test_actor_id):
        contract = create_contract()
        cancelled = lifecycle_manager.cancel_contract(tenant_id, contract.id, test_actor_id, "lost deal")
        assert cancelled.status == ContractStatus.CANCELLED
        assert cancelled.is_terminal

    def test_status_history_replays_to_current_status(self, create_active_contract, lifecycle_manager,
                                                      auditor_service, tenant_id, test_actor_id):
        contract = create_active_contract()
        lifecycle_manager.suspend_contract(tenant_id, contract.id, test_actor_id, "audit")
        lifecycle_manager.reactivate_contract(tenant_id, contract.id, test_actor_id)
        lifecycle_manager.terminate_contract(tenant_id, contract.id, test_actor_id, "done")

        trace = auditor_service.get_trace(tenant_id, "Contract", contract.id)
        assert trace.replay_status() == "terminated"
        changes = [e.payload for e in trace.entries if e.action == AuditAction.CONTRACT_STATUS_CHANGED]
        assert [(c["from_status"], c["to_status"]) for c in changes] == [
            ("draft", "active"),
            ("active", "suspended"),
            ("suspended", "active"),
            ("active", "terminated"),
        ]


# Operations and the statuses they accept
_ALLOWED_FROM = {
    "mark_pending_signature": {ContractStatus.DRAFT, ContractStatus.PENDING_SIGNATURE},
    "activate_contract": {ContractStatus.DRAFT},
    "suspend_contract": {ContractStatus.ACTIVE},
    "reactivate_contract": {ContractStatus.SUSPENDED},
    "terminate_contract": {ContractStatus.ACTIVE, ContractStatus.SUSPENDED},
    "cancel_contract": {ContractStatus.DRAFT, ContractStatus.PENDING_SIGNATURE},
}

_ILLEGAL_PAIRS = [
    (status, operation)
    for operation, allowed in _ALLOWED_FROM.items()
    for status in ContractStatus
    if status not in allowed
]


def _drive_to(manager, tenant_id, actor_id, spec, status):
    """Create a contract and walk it into ``status``."""
    if status is ContractStatus.EXPIRED:
        spec = spec(start_date=date(2023, 1, 1), end_date=date(2023, 6, 30), requires_signature=False)
    else:
        spec = spec(requires_signature=False)
    contract = manager.create_contract(tenant_id, actor_id, spec)
    cid = contract.id
    if status is ContractStatus.PENDING_SIGNATURE:
        manager.mark_pending_signature(tenant_id, cid, actor_id)
    elif status is ContractStatus.CANCELLED:
        manager.cancel_contract(tenant_id, cid, actor_id, "setup")
    elif status is not ContractStatus.DRAFT:
        manager.activate_contract(tenant_id, cid, actor_id)
        if status is ContractStatus.SUSPENDED:
            manager.suspend_contract(tenant_id, cid, actor_id, "setup")
        elif status is ContractStatus.TERMINATED:
            manager.terminate_contract(tenant_id, cid, actor_id, "setup")
        elif status is ContractStatus.EXPIRED:
            manager.expire_due_contracts(tenant_id, actor_id)
    return manager.get_contract(tenant_id, cid)


def _invoke(manager, operation, tenant_id, contract_id, actor_id):
    method = getattr(manager, operation)
    if operation in ("suspend_contract", "terminate_contract", "cancel_contract"):
        return method(tenant_id, contract_id, actor_id, "attempt")
    return method(tenant_id, contract_id, actor_id)


class TestIllegalTransitions:
    """Every operation outside its allowed statuses is refused without side effects."""

    @given(pair=st.sampled_from(_ILLEGAL_PAIRS))
    @settings(
        max_examples=40,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_illegal_operation_changes_nothing(self, pair, lifecycle_manager, auditor_service,
                                               contract_spec, test_actor_id):
        status, operation = pair
        tenant_id = uuid4()
        before = _drive_to(lifecycle_manager, tenant_id, test_actor_id, contract_spec, status)
        assert before.status == status

        with pytest.raises(InvalidStateError):
            _invoke(lifecycle_manager, operation, tenant_id, before.id, test_actor_id)

        after = lifecycle_manager.get_contract(tenant_id, before.id)
        assert after == before
        trace = auditor_service.get_trace(tenant_id, "Contract", before.id)
        assert trace.entries[-1].action == AuditAction.ATTEMPT_REJECTED
        assert trace.entries[-1].payload["operation"] == operation
        assert trace.replay_status() == status.value


class TestUpdateContract:
    def test_update_draft_content(self, create_contract, lifecycle_manager, tenant_id, test_actor_id):
        contract = create_contract()
        updated = lifecycle_manager.update_contract(
            tenant_id, contract.id, test_actor_id,
            ContractUpdate(title="Renamed", value=Decimal("15000.00"), metadata={"plan_code": "GOLD"}),
        )
        assert updated.title == "Renamed"
        assert updated.value == Decimal("15000.00")
        assert updated.metadata == {"plan_code": "GOLD"}
        assert updated.version == contract.version + 1

    def test_content_is_frozen_once_active(self, create_active_contract, lifecycle_manager,
                                           tenant_id, test_actor_id):
        contract = create_active_contract()
        with pytest.raises(InvalidStateError):
            lifecycle_manager.update_contract(
                tenant_id, contract.id, test_actor_id, ContractUpdate(title="Too late"),
            )

    def test_replace_terms(self, create_contract, lifecycle_manager, tenant_id, test_actor_id):
        from contract_kernel.domain.contract import TermSpec

        contract = create_contract()
        updated = lifecycle_manager.update_contract(
            tenant_id, contract.id, test_actor_id,
            ContractUpdate(terms=(TermSpec(heading="Only term", body="All in."),)),
        )
        assert [t.heading for t in updated.terms] == ["Only term"]


class TestExpirationSweep:
    def test_expires_contracts_past_end_date(self, create_active_contract, lifecycle_manager,
                                             tenant_id, test_actor_id, deterministic_clock):
        ended = create_active_contract(start_date=date(2023, 1, 1), end_date=date(2023, 12, 31))
        running = create_active_contract()
        open_ended = create_active_contract(end_date=None)

        result = lifecycle_manager.expire_due_contracts(tenant_id, test_actor_id)

        assert result.expired == 1
        assert lifecycle_manager.get_contract(tenant_id, ended.id).status == ContractStatus.EXPIRED
        assert lifecycle_manager.get_contract(tenant_id, running.id).status == ContractStatus.ACTIVE
        assert lifecycle_manager.get_contract(tenant_id, open_ended.id).status == ContractStatus.ACTIVE

    def test_sweep_is_idempotent(self, create_active_contract, lifecycle_manager, tenant_id, test_actor_id):
        create_active_contract(start_date=date(2023, 1, 1), end_date=date(2023, 12, 31))
        lifecycle_manager.expire_due_contracts(tenant_id, test_actor_id)
        second = lifecycle_manager.expire_due_contracts(tenant_id, test_actor_id)
        assert second.expired == 0

    def test_end_date_today_is_not_yet_expired(self, create_active_contract, lifecycle_manager,
                                               tenant_id, test_actor_id, deterministic_clock):
        create_active_contract(end_date=deterministic_clock.today())
        assert lifecycle_manager.expire_due_contracts(tenant_id, test_actor_id).expired == 0

    def test_held_lease_blocks_the_sweep(self, session, create_active_contract, lifecycle_manager,
                                         tenant_id, test_actor_id, deterministic_clock):
        other_worker = TenantLockService(session, clock=deterministic_clock, holder="other-worker")
        other_worker.acquire(tenant_id, EXPIRATION_LOCK)
        with pytest.raises(TenantLockHeldError) as exc_info:
            lifecycle_manager.expire_due_contracts(tenant_id, test_actor_id)
        assert exc_info.value.holder == "other-worker"


class TestScopingAndQueries:
    def test_other_tenant_cannot_see_contract(self, create_contract, lifecycle_manager, other_tenant_id):
        contract = create_contract()
        with pytest.raises(ContractNotFoundError):
            lifecycle_manager.get_contract(other_tenant_id, contract.id)

    def test_authorizer_refusal_is_audited(self, session, auditor_service, deterministic_clock,
                                           create_contract, tenant_id, test_actor_id):
        contract = create_contract()
        manager = ContractLifecycleManager(
            session, auditor_service, deterministic_clock,
            authorizer=lambda tenant, actor, operation: operation != "cancel_contract",
        )
        with pytest.raises(UnauthorizedError):
            manager.cancel_contract(tenant_id, contract.id, test_actor_id, "no")
        assert manager.get_contract(tenant_id, contract.id).status == ContractStatus.DRAFT
        trace = auditor_service.get_trace(tenant_id, "Contract", contract.id)
        assert trace.entries[-1].payload["error"]["code"] == "UNAUTHORIZED"

    def test_list_and_filter(self, create_contract, create_active_contract, lifecycle_manager, tenant_id):
        create_contract(title="Meeting room hire", contract_type=ContractType.MEETING_ROOM)
        create_active_contract(title="Hot desk")
        create_active_contract(title="Private office", end_date=date(2024, 1, 20))

        everything = lifecycle_manager.list_contracts(tenant_id)
        assert everything.total == 3
        active = lifecycle_manager.list_contracts(tenant_id, ContractFilter(status=ContractStatus.ACTIVE))
        assert active.total == 2
        expiring = lifecycle_manager.list_contracts(tenant_id, ContractFilter(expiring_within_days=30))
        assert [c.title for c in expiring.items] == ["Private office"]
        search = lifecycle_manager.list_contracts(tenant_id, ContractFilter(search="room"))
        assert [c.title for c in search.items] == ["Meeting room hire"]

    def test_expiring_contracts(self, create_active_contract, lifecycle_manager, tenant_id):
        soon = create_active_contract(end_date=date(2024, 1, 20))
        create_active_contract(end_date=date(2024, 6, 30))
        assert [c.id for c in lifecycle_manager.get_expiring_contracts(tenant_id, 30)] == [soon.id]
        with pytest.raises(ValidationError):
            lifecycle_manager.get_expiring_contracts(tenant_id, -1)

    def test_stats(self, create_contract, create_active_contract, lifecycle_manager, tenant_id, test_actor_id):
        create_active_contract(value=Decimal("1200.00"))  # 12 months
        create_active_contract(value=Decimal("300.00"), end_date=None)
        create_active_contract(value=Decimal("100.00"), end_date=date(2024, 1, 25))
        cancelled = create_contract(value=Decimal("999.00"))
        lifecycle_manager.cancel_contract(tenant_id, cancelled.id, test_actor_id, "not needed")

        stats = lifecycle_manager.get_contract_stats(tenant_id)

        assert stats.total == 4
        assert stats.active == 3
        assert stats.expiring_this_month == 1
        assert stats.total_value == Decimal("1600.00")
        assert stats.monthly_value == Decimal("500.00")
        assert {b.status: b.count for b in stats.by_status} == {
            ContractStatus.ACTIVE: 3,
            ContractStatus.CANCELLED: 1,
        }
