"""Selectors for the contract kernel (read side)."""

from contract_kernel.selectors.contract_selector import ContractSelector
from contract_kernel.selectors.renewal_selector import RenewalSelector
from contract_kernel.selectors.workflow_selector import WorkflowSelector

__all__ = [
    "ContractSelector",
    "RenewalSelector",
    "WorkflowSelector",
]
