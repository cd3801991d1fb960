"""
Repositories over one ``AsyncSession`` each.

Repositories that take part in the same operation must share the session so a
single ``commit()`` covers all of their writes.
"""

from datetime import date
from typing import List, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from exceptions import DuplicatePeriod
from model import (
    Account,
    AccountType,
    PaymentEntry,
    PaymentStatus,
    PayrollRecord,
    VisitorMessage,
    WorkEntry,
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class _Repository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def commit(self) -> None:
        await self.session.commit()


# Account CRUD
class AccountRepository(_Repository):
    async def get_by_email(self, email: str, *, for_update: bool = False) -> Optional[Account]:
        stmt = select(Account).where(func.lower(Account.email) == normalize_email(email))
        if for_update:
            # Overwrite attributes of an account already in the session with the stored row
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_by_id(self, account_id: int) -> Optional[Account]:
        return await self.session.get(Account, account_id)

    async def list_all(self) -> List[Account]:
        result = await self.session.execute(select(Account).order_by(Account.id))
        return list(result.scalars().all())

    async def create(self, **fields) -> Optional[Account]:
        """Insert an account; returns None if the email is already taken."""
        fields["email"] = normalize_email(fields["email"])
        account = Account(payments=[], **fields)
        self.session.add(account)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            return None
        return account

    async def delete(self, account_id: int) -> bool:
        account = await self.get_by_id(account_id)
        if account is None:
            return False
        await self.session.execute(delete(WorkEntry).where(WorkEntry.account_id == account_id))
        await self.session.delete(account)
        await self.session.flush()
        return True

    async def fire(self, account_id: int) -> int:
        """Conditionally mark an account fired; returns the number of rows changed."""
        stmt = (
            update(Account)
            .where(
                Account.id == account_id,
                or_(Account.is_fired.is_(False), Account.account_type != AccountType.FIRED.value),
            )
            .values(is_fired=True, account_type=AccountType.FIRED.value)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def add_payment(self, account: Account, *, payment_date: date, month: int, year: int) -> PaymentEntry:
        email = account.email
        entry = PaymentEntry(
            account_id=account.id,
            payment_date=payment_date,
            month=month,
            year=year,
            salary=account.salary,
        )
        account.payments.append(entry)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            raise DuplicatePeriod(f"Payment for {month}/{year} already recorded for {email}") from exc
        return entry


# Payroll CRUD
class PayrollRepository(_Repository):
    async def exists_for_period(self, email: str, month: int, year: int) -> bool:
        stmt = select(PayrollRecord.id).where(
            PayrollRecord.email == normalize_email(email),
            PayrollRecord.month == month,
            PayrollRecord.year == year,
        )
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def insert(
        self,
        *,
        email: str,
        name: str,
        salary: int,
        month: int,
        year: int,
        status: PaymentStatus = PaymentStatus.PENDING_APPROVAL,
    ) -> PayrollRecord:
        record = PayrollRecord(
            email=normalize_email(email),
            name=name,
            salary=salary,
            month=month,
            year=year,
            status=status.value,
            payment_date=None,
        )
        self.session.add(record)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            raise DuplicatePeriod(f"Payroll for {month}/{year} already exists for {email}") from exc
        return record

    async def get(self, record_id: int) -> Optional[PayrollRecord]:
        return await self.session.get(PayrollRecord, record_id)

    async def list(self, email: Optional[str] = None) -> List[PayrollRecord]:
        stmt = select(PayrollRecord)
        if email:
            stmt = stmt.where(PayrollRecord.email == normalize_email(email))
        stmt = stmt.order_by(PayrollRecord.year.desc(), PayrollRecord.month.desc(), PayrollRecord.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def latest_for(self, email: str) -> Optional[PayrollRecord]:
        stmt = (
            select(PayrollRecord)
            .where(PayrollRecord.email == normalize_email(email))
            .order_by(PayrollRecord.year.desc(), PayrollRecord.month.desc())
            .limit(1)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def set_salary_from_period(self, email: str, *, year: int, month: int, salary: int) -> int:
        """Set salary on every record at or after (year, month); returns rows updated."""
        stmt = (
            update(PayrollRecord)
            .where(
                PayrollRecord.email == normalize_email(email),
                or_(
                    PayrollRecord.year > year,
                    and_(PayrollRecord.year == year, PayrollRecord.month >= month),
                ),
            )
            .values(salary=salary)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return result.rowcount


# Work entry CRUD
class WorkRepository(_Repository):
    async def list(self, account_id: Optional[int] = None) -> List[WorkEntry]:
        stmt = select(WorkEntry)
        if account_id is not None:
            stmt = stmt.where(WorkEntry.account_id == account_id)
        stmt = stmt.order_by(WorkEntry.entry_date.desc(), WorkEntry.id.desc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get(self, entry_id: int) -> Optional[WorkEntry]:
        return await self.session.get(WorkEntry, entry_id)

    async def create(self, owner: Account, *, task: str, hours_worked: float, entry_date: date) -> WorkEntry:
        entry = WorkEntry(
            account_id=owner.id,
            task=task,
            hours_worked=hours_worked,
            entry_date=entry_date,
            email=owner.email,
            username=owner.username,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def update(self, entry: WorkEntry, **changes) -> WorkEntry:
        for key, value in changes.items():
            setattr(entry, key, value)
        await self.session.flush()
        return entry

    async def delete(self, entry: WorkEntry) -> None:
        await self.session.delete(entry)
        await self.session.flush()


# Visitor message CRUD
class MessageRepository(_Repository):
    async def create(self, *, email: str, message: str) -> VisitorMessage:
        row = VisitorMessage(email=email, message=message)
        self.session.add(row)
        await self.session.flush()
        return row

    async def list_newest_first(self) -> List[VisitorMessage]:
        stmt = select(VisitorMessage).order_by(VisitorMessage.created_at.desc(), VisitorMessage.id.desc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
