"""
Service wiring: builds the three engines for one session from the active
configuration.  Used by the sweep runner and by tests that want the
production defaults.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from contract_config.bridges import build_metadata_fields, build_policy_resolver
from contract_config.schema import ContractKernelConfig
from contract_kernel.domain.clock import Clock, SystemClock
from contract_kernel.domain.collaborators import (
    NotificationDispatcher,
    SignatureVerifier,
    TemplateRenderer,
)
from contract_kernel.services.auditor_service import AuditorService
from contract_kernel.services.base import Authorizer
from contract_kernel.services.contract_lifecycle import ContractLifecycleManager
from contract_kernel.services.renewal_engine import RenewalRuleEngine
from contract_kernel.services.signature_workflow import SignatureWorkflowEngine
from contract_kernel.services.tenant_lock import TenantLockService


@dataclass(frozen=True)
class KernelEngines:
    auditor: AuditorService
    lifecycle: ContractLifecycleManager
    workflows: SignatureWorkflowEngine
    renewals: RenewalRuleEngine
    lock_service: TenantLockService


def build_engines(
    session: Session,
    config: ContractKernelConfig,
    clock: Clock | None = None,
    renderer: TemplateRenderer | None = None,
    dispatcher: NotificationDispatcher | None = None,
    verifier: SignatureVerifier | None = None,
    authorizer: Authorizer | None = None,
    holder: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> KernelEngines:
    clock = clock or SystemClock()
    sweep = config.sweep
    metadata_fields = build_metadata_fields(config)
    retry = {
        "retry_attempts": sweep.retry_attempts,
        "retry_backoff_seconds": sweep.retry_backoff_seconds,
        "sleep": sleep,
    }

    auditor = AuditorService(session, clock)
    lock_service = TenantLockService(
        session, clock=clock, holder=holder, ttl_seconds=sweep.lease_ttl_seconds,
    )
    lifecycle = ContractLifecycleManager(
        session, auditor, clock,
        renderer=renderer,
        dispatcher=dispatcher,
        metadata_fields=metadata_fields,
        authorizer=authorizer,
        lock_service=lock_service,
        **retry,
    )
    workflows = SignatureWorkflowEngine(
        session, auditor, lifecycle, clock,
        verifier=verifier,
        dispatcher=dispatcher,
        completion_policy_for=build_policy_resolver(config),
        default_expiry_days=config.workflow.default_expiry_days,
        metadata_fields=metadata_fields,
        authorizer=authorizer,
        lock_service=lock_service,
        **retry,
    )
    renewals = RenewalRuleEngine(
        session, auditor, lifecycle, clock,
        dispatcher=dispatcher,
        authorizer=authorizer,
        lock_service=lock_service,
        proposal_grace_days=config.renewal.proposal_grace_days,
        upcoming_days=config.renewal.upcoming_days,
        **retry,
    )
    return KernelEngines(
        auditor=auditor,
        lifecycle=lifecycle,
        workflows=workflows,
        renewals=renewals,
        lock_service=lock_service,
    )
