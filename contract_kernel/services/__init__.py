"""Services for the contract kernel (write side)."""

from contract_kernel.services.auditor_service import AuditorService, AuditTrace, AuditTraceEntry
from contract_kernel.services.contract_lifecycle import ContractLifecycleManager
from contract_kernel.services.renewal_engine import RenewalRuleEngine
from contract_kernel.services.sequence_service import SequenceService
from contract_kernel.services.signature_workflow import SignatureWorkflowEngine
from contract_kernel.services.tenant_lock import TenantLockService

__all__ = [
    "AuditTrace",
    "AuditTraceEntry",
    "AuditorService",
    "ContractLifecycleManager",
    "RenewalRuleEngine",
    "SequenceService",
    "SignatureWorkflowEngine",
    "TenantLockService",
]
