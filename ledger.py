"""
Payroll ledger: payroll-record lifecycle, per-account payment history and
salary changes.

Both tracked payment mechanisms live here.  A ``PayrollRecord`` is the
HR-submitted, Admin-approved entry for one (email, month, year); a
``PaymentEntry`` on the account is the direct "paid this period" stamp that
snapshots the live salary.  Each has its own period-uniqueness constraint in
storage; the existence checks below only produce the friendlier error.
"""

import asyncio
import calendar
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import AsyncIterator, Dict, Optional, Union

from crud import AccountRepository, PayrollRepository, normalize_email
from exceptions import (
    AccountNotFound,
    ConsistencyFault,
    DuplicatePeriod,
    NoChangeApplied,
    RecordNotFound,
    ValidationFailure,
)
from logger import logger
from model import Account, AccountType, PaymentEntry, PaymentStatus, PayrollRecord

_MONTHS: Dict[str, int] = {}
for _number in range(1, 13):
    _MONTHS[calendar.month_name[_number].lower()] = _number
    _MONTHS[calendar.month_abbr[_number].lower()] = _number


def parse_month(value: Union[int, str]) -> int:
    """Normalise 1-12, "3", "Mar" or "March" to a month number."""
    if isinstance(value, bool):
        raise ValidationFailure(f"Invalid month: {value!r}")
    if isinstance(value, int):
        month = value
    elif isinstance(value, str):
        text = value.strip().lower()
        if text.isdigit():
            month = int(text)
        elif text in _MONTHS:
            return _MONTHS[text]
        else:
            raise ValidationFailure(f"Invalid month: {value!r}")
    else:
        raise ValidationFailure(f"Invalid month: {value!r}")
    if not 1 <= month <= 12:
        raise ValidationFailure(f"Invalid month: {value!r}")
    return month


class KeyedLocks:
    """Process-wide registry of asyncio locks, one per key, dropped when idle."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass(frozen=True)
class SalaryIncrease:
    email: str
    salary: int
    records_updated: int


class PayrollLedger:
    """Use cases that change salary or payment state.

    ``accounts`` and ``payroll`` must share one session; every mutating
    operation commits it before returning.
    """

    def __init__(
        self,
        accounts: AccountRepository,
        payroll: PayrollRepository,
        *,
        locks: Optional[KeyedLocks] = None,
    ):
        self._accounts = accounts
        self._payroll = payroll
        self._locks = locks or KeyedLocks()

    async def create_record(
        self,
        *,
        email: str,
        name: str,
        salary: int,
        month: Union[int, str],
        year: int,
        status: Optional[PaymentStatus] = None,
    ) -> PayrollRecord:
        email = normalize_email(email)
        month = parse_month(month)
        if salary < 0:
            raise ValidationFailure("Salary must not be negative")

        if await self._payroll.exists_for_period(email, month, year):
            logger.info("Rejected duplicate payroll for %s %02d/%d", email, month, year)
            raise DuplicatePeriod(f"Payroll for {month}/{year} already exists for {email}")

        record = await self._payroll.insert(
            email=email,
            name=name,
            salary=salary,
            month=month,
            year=year,
            status=status or PaymentStatus.PENDING_APPROVAL,
        )
        await self._payroll.commit()
        logger.info("Payroll record %s created for %s %02d/%d", record.id, email, month, year)
        return record

    async def mark_paid(self, record_id: int, payment_date: Optional[date] = None) -> PayrollRecord:
        record = await self._payroll.get(record_id)
        if record is None:
            raise RecordNotFound(f"Payroll record {record_id} not found")

        # Paid is terminal but re-paying is accepted and overwrites the date
        if record.status == PaymentStatus.PAID.value:
            logger.warning("Payroll record %s already paid; overwriting payment date", record_id)

        record.status = PaymentStatus.PAID.value
        record.payment_date = payment_date or date.today()
        await self._payroll.commit()
        return record

    async def increase_salary_across_periods(self, email: str, increment: int) -> SalaryIncrease:
        email = normalize_email(email)
        async with self._locks.hold(email):
            latest = await self._payroll.latest_for(email)
            if latest is None:
                raise RecordNotFound(f"No payroll history for {email}")

            new_salary = latest.salary + increment
            if new_salary < 0:
                raise ValidationFailure("Salary must not be negative")

            account = await self._accounts.get_by_email(email, for_update=True)
            if account is None:
                logger.error("Payroll history exists for %s but the account is missing", email)
                raise ConsistencyFault(f"Account {email} not found")

            updated = await self._payroll.set_salary_from_period(
                email, year=latest.year, month=latest.month, salary=new_salary
            )
            account.salary = new_salary
            await self._payroll.commit()

        logger.info("Salary for %s raised to %s across %d payroll records", email, new_salary, updated)
        return SalaryIncrease(email=email, salary=new_salary, records_updated=updated)

    async def increase_account_salary(self, email: str, increment: int) -> Account:
        """Flat increment of the live salary; payroll records are left alone."""
        email = normalize_email(email)
        async with self._locks.hold(email):
            account = await self._accounts.get_by_email(email, for_update=True)
            if account is None:
                raise AccountNotFound(f"Account {email} not found")

            new_salary = account.salary + increment
            if new_salary < 0:
                raise ValidationFailure("Salary must not be negative")
            account.salary = new_salary
            await self._accounts.commit()

        logger.info("Salary for %s set to %s", email, new_salary)
        return account

    async def record_direct_payment(
        self,
        email: str,
        *,
        payment_date: date,
        month: Union[int, str],
        year: int,
    ) -> PaymentEntry:
        email = normalize_email(email)
        month = parse_month(month)
        async with self._locks.hold(email):
            account = await self._accounts.get_by_email(email, for_update=True)
            if account is None:
                raise AccountNotFound(f"Account {email} not found")

            if any(p.month == month and p.year == year for p in account.payments):
                logger.info("Rejected duplicate payment for %s %02d/%d", email, month, year)
                raise DuplicatePeriod(f"Payment for {month}/{year} already recorded for {email}")

            entry = await self._accounts.add_payment(account, payment_date=payment_date, month=month, year=year)
            await self._accounts.commit()

        logger.info("Recorded payment of %s for %s %02d/%d", entry.salary, email, month, year)
        return entry

    async def promote(self, account_id: int, account_type: AccountType) -> Account:
        account = await self._accounts.get_by_id(account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found")

        # Any transition is accepted, including out of Fired
        previous = account.account_type
        account.account_type = AccountType(account_type).value
        await self._accounts.commit()
        logger.info("Account %s changed from %s to %s", account_id, previous, account.account_type)
        return account

    async def fire(self, account_id: int) -> Account:
        changed = await self._accounts.fire(account_id)
        if not changed:
            if await self._accounts.get_by_id(account_id) is None:
                raise AccountNotFound(f"Account {account_id} not found")
            raise NoChangeApplied(f"Account {account_id} is already fired")

        await self._accounts.commit()
        account = await self._accounts.get_by_id(account_id)
        logger.info("Account %s fired", account_id)
        return account
