"""
SQLAlchemy model for the imported OIG List of Excluded Individuals/Entities.

The table is replaced wholesale on every LEIE import.  Normalized name
columns are precomputed at import time so lookups are exact equality
matches.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UTCDateTime, UUIDPrimaryKeyMixin


class OIGExclusion(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "oig_exclusions"

    last_name: Mapped[str] = mapped_column(String(150), nullable=False, default="")
    first_name: Mapped[str] = mapped_column(String(150), nullable=False, default="")
    middle_name: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    business_name: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)

    normalized_name: Mapped[Optional[str]] = mapped_column(String(300), nullable=True, index=True)
    normalized_full_name: Mapped[Optional[str]] = mapped_column(
        String(400), nullable=True, index=True
    )
    normalized_business_name: Mapped[Optional[str]] = mapped_column(
        String(300), nullable=True, index=True
    )

    npi: Mapped[Optional[str]] = mapped_column(String(10), nullable=True, index=True)
    specialty: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    exclusion_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    exclusion_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    reinstatement_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    imported_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<OIGExclusion(id={self.id}, name={self.first_name} {self.last_name}, "
            f"npi={self.npi}, type={self.exclusion_type})>"
        )
