"""
contract_batch -- periodic sweeps for the contract kernel.

Runs the contract expiration, workflow expiration and renewal sweeps for
every tenant, each in its own transaction and under the tenant's lease,
and schedules them on an in-process polling thread.

Architecture:
    contract_batch/ is a top-level package.  Nothing in contract_kernel
    imports from it.
"""

from contract_batch.runner import SweepKind, SweepRunner, TenantSweepReport
from contract_batch.scheduler import SweepScheduler
from contract_batch.wiring import KernelEngines, build_engines

__all__ = [
    "KernelEngines",
    "SweepKind",
    "SweepRunner",
    "SweepScheduler",
    "TenantSweepReport",
    "build_engines",
]
