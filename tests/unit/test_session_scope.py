"""
session_scope transaction boundaries.

A rejected operation still commits its ATTEMPT_REJECTED audit entry; any
other failure rolls the whole unit of work back.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from contract_kernel import models  # noqa: F401  registers all tables
from contract_kernel.db.base import Base
from contract_kernel.db.engine import build_engine, session_scope
from contract_kernel.domain.clock import DeterministicClock
from contract_kernel.exceptions import InvalidStateError
from contract_kernel.models.audit_event import AuditAction, AuditEvent
from contract_kernel.models.contract import ContractModel
from contract_kernel.services.auditor_service import AuditorService
from contract_kernel.services.contract_lifecycle import ContractLifecycleManager
from tests.conftest import make_contract_spec


@pytest.fixture
def factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path}/scope.db")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


def manager_for(session):
    clock = DeterministicClock()
    return ContractLifecycleManager(session, AuditorService(session, clock), clock)


def count(factory, model, *criteria) -> int:
    with factory() as session:
        return session.execute(select(func.count()).select_from(model).where(*criteria)).scalar_one()


def test_commits_on_success(factory, test_actor_id):
    tenant_id = uuid4()
    with session_scope(factory) as session:
        manager_for(session).create_contract(tenant_id, test_actor_id, make_contract_spec())

    assert count(factory, ContractModel, ContractModel.tenant_id == tenant_id) == 1


def test_rejected_attempt_is_committed(factory, test_actor_id):
    tenant_id = uuid4()
    with session_scope(factory) as session:
        contract = manager_for(session).create_contract(tenant_id, test_actor_id, make_contract_spec())

    with pytest.raises(InvalidStateError):
        with session_scope(factory) as session:
            manager_for(session).suspend_contract(tenant_id, contract.id, test_actor_id, "too early")

    assert count(
        factory, AuditEvent,
        AuditEvent.entity_id == contract.id,
        AuditEvent.action == AuditAction.ATTEMPT_REJECTED.value,
    ) == 1
    with factory() as session:
        assert session.get(ContractModel, contract.id).status == "draft"


def test_rolls_back_on_unexpected_error(factory, test_actor_id):
    tenant_id = uuid4()
    with pytest.raises(RuntimeError):
        with session_scope(factory) as session:
            manager_for(session).create_contract(tenant_id, test_actor_id, make_contract_spec())
            raise RuntimeError("caller failed after the write")

    assert count(factory, ContractModel, ContractModel.tenant_id == tenant_id) == 0
    assert count(factory, AuditEvent, AuditEvent.tenant_id == tenant_id) == 0
