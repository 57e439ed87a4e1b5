"""ORM models for the contract kernel."""

from contract_kernel.models.audit_event import AuditAction, AuditEvent
from contract_kernel.models.contract import ContractModel, PartyModel, TermModel
from contract_kernel.models.renewal import RenewalProposalModel, RenewalRuleModel
from contract_kernel.models.sequence import SequenceCounter
from contract_kernel.models.signature import (
    SignatureEventModel,
    SignatureFieldModel,
    SignatureWorkflowModel,
    SignerModel,
)
from contract_kernel.models.tenant_lease import TenantLeaseModel
from contract_kernel.db.immutability import register_immutability_listeners

register_immutability_listeners()

__all__ = [
    "AuditAction",
    "AuditEvent",
    "ContractModel",
    "PartyModel",
    "TermModel",
    "RenewalProposalModel",
    "RenewalRuleModel",
    "SequenceCounter",
    "SignatureEventModel",
    "SignatureFieldModel",
    "SignatureWorkflowModel",
    "SignerModel",
    "TenantLeaseModel",
]
