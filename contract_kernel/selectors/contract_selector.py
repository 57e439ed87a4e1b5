"""
Module: contract_kernel.selectors.contract_selector
Responsibility: Read-only contract queries: filtered pages, expiring
    contracts and the aggregate dashboard figures.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every query filters on tenant_id.
    - Results are ordered deterministically (created_at desc, then id).

Monthly value:
    An ACTIVE contract with an end date contributes value / number of months
    it spans (at least one).  A contract without an end date is treated as a
    monthly recurring agreement and contributes its full value.
"""

from __future__ import annotations

import calendar
from collections import Counter
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from contract_kernel.domain.contract import (
    Contract,
    ContractFilter,
    ContractStats,
    ContractStatus,
    ContractType,
    Page,
    PartyRole,
    StatusBreakdown,
    TypeBreakdown,
)
from contract_kernel.models.contract import ContractModel, PartyModel
from contract_kernel.selectors.base import BaseSelector

_CENT = Decimal("0.01")

MAX_PAGE_SIZE = 100


def months_spanned(start: date, end: date) -> int:
    """Whole calendar months covered by [start, end], at least one."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day > start.day:
        months += 1
    return max(1, months)


def monthly_value(contract: ContractModel) -> Decimal:
    value = Decimal(contract.value)
    if contract.end_date is None:
        return value
    return value / months_spanned(contract.start_date, contract.end_date)


class ContractSelector(BaseSelector[ContractModel]):
    """Selector for contract lists and aggregates."""

    def __init__(self, session: Session):
        super().__init__(session)

    def _filtered(self, tenant_id: UUID, criteria: ContractFilter, today: date):
        stmt = select(ContractModel).where(ContractModel.tenant_id == tenant_id)

        if criteria.status is not None:
            stmt = stmt.where(ContractModel.status == criteria.status.value)
        if criteria.contract_type is not None:
            stmt = stmt.where(ContractModel.contract_type == criteria.contract_type.value)
        if criteria.client_id is not None:
            stmt = stmt.where(
                ContractModel.id.in_(
                    select(PartyModel.contract_id).where(
                        PartyModel.tenant_id == tenant_id,
                        PartyModel.role == PartyRole.CLIENT.value,
                        PartyModel.client_id == criteria.client_id,
                    )
                )
            )
        if criteria.expiring_within_days is not None:
            horizon = today + timedelta(days=criteria.expiring_within_days)
            stmt = stmt.where(
                ContractModel.status == ContractStatus.ACTIVE.value,
                ContractModel.end_date.is_not(None),
                ContractModel.end_date >= today,
                ContractModel.end_date <= horizon,
            )
        if criteria.search:
            stmt = stmt.where(ContractModel.title.ilike(f"%{criteria.search.strip()}%"))
        return stmt

    def list_contracts(
        self,
        tenant_id: UUID,
        criteria: ContractFilter,
        today: date,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        stmt = self._filtered(tenant_id, criteria, today)

        total = self.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()

        rows = self.session.execute(
            stmt.order_by(ContractModel.created_at.desc(), ContractModel.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return Page(
            items=tuple(row.to_dto() for row in rows),
            total=total,
            page=page,
            limit=limit,
        )

    def expiring_within(self, tenant_id: UUID, today: date, days: int) -> list[Contract]:
        """ACTIVE contracts ending in [today, today + days], soonest first."""
        horizon = today + timedelta(days=days)
        rows = self.session.execute(
            select(ContractModel)
            .where(
                ContractModel.tenant_id == tenant_id,
                ContractModel.status == ContractStatus.ACTIVE.value,
                ContractModel.end_date.is_not(None),
                ContractModel.end_date >= today,
                ContractModel.end_date <= horizon,
            )
            .order_by(ContractModel.end_date, ContractModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def stats(self, tenant_id: UUID, today: date) -> ContractStats:
        rows = self.session.execute(
            select(ContractModel).where(ContractModel.tenant_id == tenant_id)
        ).scalars().all()

        total = len(rows)
        status_counts = Counter(row.status for row in rows)
        type_counts: Counter = Counter()
        type_values: dict[str, Decimal] = {}
        total_value = Decimal("0")
        recurring = Decimal("0")

        month_end = date(today.year, today.month, calendar.monthrange(today.year, today.month)[1])
        expiring_this_month = 0

        for row in rows:
            value = Decimal(row.value)
            type_counts[row.contract_type] += 1
            type_values[row.contract_type] = type_values.get(row.contract_type, Decimal("0")) + value
            if row.status not in (ContractStatus.CANCELLED.value,):
                total_value += value
            if row.status == ContractStatus.ACTIVE.value:
                recurring += monthly_value(row)
                if row.end_date is not None and today <= row.end_date <= month_end:
                    expiring_this_month += 1

        by_status = tuple(
            StatusBreakdown(
                status=status,
                count=status_counts.get(status.value, 0),
                percentage=(
                    (Decimal(status_counts.get(status.value, 0)) * 100 / total).quantize(
                        _CENT, rounding=ROUND_HALF_UP,
                    )
                    if total else Decimal("0.00")
                ),
            )
            for status in ContractStatus
            if status_counts.get(status.value, 0)
        )
        by_type = tuple(
            TypeBreakdown(
                contract_type=ContractType(key),
                count=type_counts[key],
                value=type_values[key].quantize(_CENT),
            )
            for key in sorted(type_counts)
        )

        return ContractStats(
            total=total,
            active=status_counts.get(ContractStatus.ACTIVE.value, 0),
            pending_signature=status_counts.get(ContractStatus.PENDING_SIGNATURE.value, 0),
            expiring_this_month=expiring_this_month,
            total_value=total_value.quantize(_CENT),
            monthly_value=recurring.quantize(_CENT, rounding=ROUND_HALF_UP),
            by_status=by_status,
            by_type=by_type,
        )
