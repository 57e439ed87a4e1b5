"""
Module: contract_kernel.models.sequence
Responsibility: Named counter rows backing SequenceService.  Row-level
    locking on the counter serializes allocation, so sequences are strictly
    monotonic under concurrency.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from contract_kernel.db.base import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    # "audit_event", "signature_event", "renewal_rule"
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
