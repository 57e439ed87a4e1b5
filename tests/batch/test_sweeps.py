"""
Sweep runner and scheduler.

The runner opens its own sessions and commits, so these tests use a
file-backed SQLite database of their own rather than the rollback-only
suite session.
"""

import threading
from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from contract_batch.runner import (
    ALL_SWEEPS,
    SweepKind,
    SweepOutcome,
    SweepRunner,
    tenants_with_data,
)
from contract_batch.scheduler import SweepScheduler
from contract_batch.wiring import build_engines
from contract_config import get_active_config
from contract_kernel import models  # noqa: F401  registers all tables
from contract_kernel.db.base import Base
from contract_kernel.db.engine import build_engine
from contract_kernel.domain.clock import DeterministicClock
from contract_kernel.domain.contract import ContractStatus
from contract_kernel.services.tenant_lock import TenantLockService
from tests.conftest import make_contract_spec


def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def file_session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path}/sweeps.db")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def sweep_clock():
    return DeterministicClock()


@pytest.fixture
def engines_factory(sweep_clock):
    config = get_active_config()

    def _build(session, holder="worker-a"):
        return build_engines(session, config, clock=sweep_clock, holder=holder, sleep=_no_sleep)

    return _build


@pytest.fixture
def lapsed_contract(file_session_factory, engines_factory, test_actor_id):
    """An ACTIVE contract that ended the day before the clock's today."""
    tenant_id = uuid4()
    with file_session_factory() as session:
        engines = engines_factory(session)
        contract = engines.lifecycle.create_contract(
            tenant_id, test_actor_id,
            make_contract_spec(
                start_date=date(2023, 1, 1), end_date=date(2023, 12, 31), requires_signature=False,
            ),
        )
        engines.lifecycle.activate_contract(tenant_id, contract.id, test_actor_id)
        session.commit()
    return tenant_id, contract.id


def make_runner(file_session_factory, engines_factory, actor_id, **kwargs):
    return SweepRunner(file_session_factory, engines_factory, actor_id, **kwargs)


class TestSweepRunner:
    def test_run_once_covers_every_tenant_and_sweep(self, file_session_factory, engines_factory,
                                                    lapsed_contract, test_actor_id):
        tenant_id, contract_id = lapsed_contract
        reports = make_runner(file_session_factory, engines_factory, test_actor_id).run_once()

        assert [r.kind for r in reports] == list(ALL_SWEEPS)
        assert all(r.tenant_id == tenant_id for r in reports)
        assert all(r.outcome is SweepOutcome.COMPLETED for r in reports)
        expiry = next(r for r in reports if r.kind is SweepKind.CONTRACT_EXPIRATION)
        assert expiry.result.expired == 1

        with file_session_factory() as session:
            contract = engines_factory(session).lifecycle.get_contract(tenant_id, contract_id)
            assert contract.status == ContractStatus.EXPIRED

    def test_second_pass_finds_nothing(self, file_session_factory, engines_factory,
                                       lapsed_contract, test_actor_id):
        runner = make_runner(file_session_factory, engines_factory, test_actor_id)
        runner.run_once()
        report = runner.run_for_tenant(lapsed_contract[0], SweepKind.CONTRACT_EXPIRATION)
        assert report.outcome is SweepOutcome.COMPLETED
        assert report.result.expired == 0

    def test_held_lease_reports_locked(self, file_session_factory, engines_factory, sweep_clock,
                                       lapsed_contract, test_actor_id):
        tenant_id, contract_id = lapsed_contract
        with file_session_factory() as session:
            TenantLockService(session, clock=sweep_clock, holder="worker-b").acquire(
                tenant_id, SweepKind.CONTRACT_EXPIRATION.value,
            )
            session.commit()

        report = make_runner(file_session_factory, engines_factory, test_actor_id).run_for_tenant(
            tenant_id, SweepKind.CONTRACT_EXPIRATION,
        )
        assert report.outcome is SweepOutcome.LOCKED
        assert "worker-b" in report.error

        with file_session_factory() as session:
            contract = engines_factory(session).lifecycle.get_contract(tenant_id, contract_id)
            assert contract.status == ContractStatus.ACTIVE

    def test_unexpected_error_reports_failed(self, file_session_factory, lapsed_contract, test_actor_id):
        def broken_factory(session):
            raise RuntimeError("wiring exploded")

        runner = make_runner(file_session_factory, broken_factory, test_actor_id)
        reports = runner.run_once(kinds=[SweepKind.WORKFLOW_EXPIRATION])
        assert len(reports) == 1
        assert reports[0].outcome is SweepOutcome.FAILED
        assert reports[0].error == "wiring exploded"

    def test_tenant_source_override(self, file_session_factory, engines_factory, test_actor_id):
        tenant_id = uuid4()
        runner = make_runner(
            file_session_factory, engines_factory, test_actor_id,
            tenant_source=lambda session: [tenant_id],
        )
        reports = runner.run_once(kinds=[SweepKind.RENEWAL_EVALUATION])
        assert reports[0].tenant_id == tenant_id
        assert reports[0].result.evaluated == 0

    def test_tenants_with_data(self, file_session_factory, lapsed_contract):
        with file_session_factory() as session:
            assert tenants_with_data(session) == [lapsed_contract[0]]


class StubRunner:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0
        self.ran = threading.Event()

    def run_once(self):
        self.calls += 1
        self.ran.set()
        if self.fail:
            raise RuntimeError("database unavailable")
        return ["report"]


class TestSweepScheduler:
    def test_tick_returns_reports(self):
        scheduler = SweepScheduler(StubRunner())
        assert scheduler.tick() == ["report"]
        assert scheduler.tick_count == 1

    def test_failed_tick_is_swallowed(self):
        scheduler = SweepScheduler(StubRunner(fail=True))
        assert scheduler.tick() == []
        assert scheduler.tick_count == 0

    def test_start_and_stop(self):
        runner = StubRunner()
        scheduler = SweepScheduler(runner, interval_seconds=3600)
        scheduler.start()
        try:
            assert runner.ran.wait(timeout=5)
            assert scheduler.is_running
        finally:
            scheduler.stop(timeout=5)
        assert not scheduler.is_running
        assert runner.calls == 1
