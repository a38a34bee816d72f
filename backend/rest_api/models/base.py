"""
Declarative base, column types and the audit mixin shared by all models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGINT identity on PostgreSQL; SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")

# Dollar amounts. Three decimals so per-line tax (e.g. QST 9.975) is kept exact.
Money = Numeric(12, 3)


class Base(DeclarativeBase):
    pass


class AuditMixin:
    """
    Soft delete plus who/when columns.

    The acting user is denormalized (id and email, no foreign key) so audit
    columns survive the user being removed. Scheduler actions leave them empty.
    """

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())
    created_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    created_by_email: Mapped[Optional[str]] = mapped_column(String(255))
    updated_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    updated_by_email: Mapped[Optional[str]] = mapped_column(String(255))

    def set_created_by(self, user_id: int | None, user_email: str | None) -> None:
        self.created_by_id, self.created_by_email = user_id, user_email

    def set_updated_by(self, user_id: int | None, user_email: str | None) -> None:
        self.updated_by_id, self.updated_by_email = user_id, user_email
        self.updated_at = datetime.now(timezone.utc)

    def soft_delete(self, user_id: int | None, user_email: str | None) -> None:
        self.is_active = False
        self.set_updated_by(user_id, user_email)

    def __repr__(self) -> str:
        state = "active" if self.is_active else "deleted"
        return f"<{type(self).__name__} id={getattr(self, 'id', None)} {state}>"
