import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountType(str, enum.Enum):
    EMPLOYEE = "Employee"
    HR = "HR"
    ADMIN = "Admin"
    FIRED = "Fired"


class PaymentStatus(str, enum.Enum):
    PENDING_APPROVAL = "Pending Approval"
    PAID = "Paid"


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    # stored lower-cased; the natural key
    email = Column(String(255), unique=True, nullable=False, index=True)
    # null for accounts authenticated by an external provider
    password_hash = Column(String(255), nullable=True)
    username = Column(String(100), nullable=False, default="New Employee")
    account_type = Column(String(20), nullable=False, default=AccountType.EMPLOYEE.value)
    bank_account_number = Column(String(64), nullable=False, default="")
    uploaded_photo = Column(String(512), nullable=False, default="")
    salary = Column(Integer, nullable=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    is_fired = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    payments = relationship(
        "PaymentEntry",
        lazy="selectin",
        order_by="PaymentEntry.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (CheckConstraint("salary >= 0", name="ck_accounts_salary_non_negative"),)


class PaymentEntry(Base):
    __tablename__ = "payment_entries"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_date = Column(Date, nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    salary = Column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint("account_id", "month", "year", name="uq_payment_entry_period"),)


class PayrollRecord(Base):
    __tablename__ = "payroll"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(100), nullable=False, default="")
    # snapshot at submission, not linked to the account's live salary
    salary = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    status = Column(String(32), nullable=False, default=PaymentStatus.PENDING_APPROVAL.value)
    payment_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("email", "month", "year", name="uq_payroll_period"),
        CheckConstraint("salary >= 0", name="ck_payroll_salary_non_negative"),
    )


class WorkEntry(Base):
    __tablename__ = "work_entries"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    task = Column(String(255), nullable=False)
    hours_worked = Column(Float, nullable=False)
    entry_date = Column(Date, nullable=False)
    email = Column(String(255), nullable=False)
    username = Column(String(100), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class VisitorMessage(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
