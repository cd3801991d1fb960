from __future__ import annotations

import asyncio
from datetime import date
from types import SimpleNamespace

import pytest

from crud import AccountRepository, PayrollRepository
from exceptions import (
    AccountNotFound,
    ConsistencyFault,
    DuplicatePeriod,
    NoChangeApplied,
    RecordNotFound,
    ValidationFailure,
)
from ledger import KeyedLocks, PayrollLedger, parse_month
from model import AccountType, PaymentStatus

pytestmark = pytest.mark.anyio


async def _account(db, email="jane@x.com", salary=40000, **fields):
    accounts = AccountRepository(db)
    account = await accounts.create(email=email, salary=salary, username="Jane", **fields)
    await accounts.commit()
    return account


async def test_create_record_defaults_to_pending(ledger):
    record = await ledger.create_record(email="Jane@X.com", name="Jane", salary=40000, month="Jan", year=2024)

    assert record.email == "jane@x.com"
    assert record.month == 1
    assert record.status == PaymentStatus.PENDING_APPROVAL.value
    assert record.payment_date is None


async def test_second_record_for_same_period_is_rejected(ledger):
    await ledger.create_record(email="jane@x.com", name="Jane", salary=40000, month="Jan", year=2024)

    with pytest.raises(DuplicatePeriod):
        await ledger.create_record(email="JANE@x.com", name="Jane", salary=40000, month=1, year=2024)


async def test_storage_constraint_rejects_duplicate_without_precheck(db):
    payroll = PayrollRepository(db)
    await payroll.insert(email="jane@x.com", name="Jane", salary=1, month=3, year=2024)
    await payroll.commit()

    with pytest.raises(DuplicatePeriod):
        await payroll.insert(email="jane@x.com", name="Jane", salary=2, month=3, year=2024)


async def test_negative_salary_is_rejected(ledger):
    with pytest.raises(ValidationFailure):
        await ledger.create_record(email="jane@x.com", name="Jane", salary=-1, month=1, year=2024)


async def test_increase_salary_updates_latest_period_and_account(db, ledger):
    await _account(db, salary=40000)
    await ledger.create_record(email="jane@x.com", name="Jane", salary=36000, month="Dec", year=2023)
    await ledger.create_record(email="jane@x.com", name="Jane", salary=38000, month="Feb", year=2024)
    await ledger.create_record(email="jane@x.com", name="Jane", salary=40000, month="March", year=2024)

    result = await ledger.increase_salary_across_periods("jane@x.com", 5000)

    assert result.salary == 45000
    assert result.records_updated == 1
    salaries = {(r.year, r.month): r.salary for r in await PayrollRepository(db).list("jane@x.com")}
    assert salaries == {(2024, 3): 45000, (2024, 2): 38000, (2023, 12): 36000}
    account = await AccountRepository(db).get_by_email("jane@x.com")
    assert account.salary == 45000


async def test_increase_salary_without_history(db, ledger):
    await _account(db)

    with pytest.raises(RecordNotFound):
        await ledger.increase_salary_across_periods("jane@x.com", 5000)


async def test_increase_salary_with_missing_account_is_consistency_fault(db, ledger):
    await ledger.create_record(email="ghost@x.com", name="Ghost", salary=40000, month=3, year=2024)

    with pytest.raises(ConsistencyFault) as excinfo:
        await ledger.increase_salary_across_periods("ghost@x.com", 5000)

    assert isinstance(excinfo.value, AccountNotFound)
    records = await PayrollRepository(db).list("ghost@x.com")
    assert [r.salary for r in records] == [40000]


async def test_mark_paid_stamps_payment_date(ledger):
    record = await ledger.create_record(email="jane@x.com", name="Jane", salary=40000, month=1, year=2024)

    paid = await ledger.mark_paid(record.id, date(2024, 2, 1))

    assert paid.status == PaymentStatus.PAID.value
    assert paid.payment_date == date(2024, 2, 1)


async def test_mark_paid_twice_overwrites_payment_date(ledger):
    # Known gap: Paid is terminal, yet re-paying is accepted and moves the date
    record = await ledger.create_record(email="jane@x.com", name="Jane", salary=40000, month=1, year=2024)
    await ledger.mark_paid(record.id, date(2024, 2, 1))

    again = await ledger.mark_paid(record.id, date(2024, 2, 9))

    assert again.status == PaymentStatus.PAID.value
    assert again.payment_date == date(2024, 2, 9)


async def test_mark_paid_unknown_record(ledger):
    with pytest.raises(RecordNotFound):
        await ledger.mark_paid(999)


async def test_direct_payment_snapshots_live_salary(db, ledger):
    await _account(db, salary=41000)

    entry = await ledger.record_direct_payment("Jane@x.com", payment_date=date(2024, 4, 30), month="Apr", year=2024)

    assert (entry.month, entry.year, entry.salary) == (4, 2024, 41000)
    with pytest.raises(DuplicatePeriod):
        await ledger.record_direct_payment("jane@x.com", payment_date=date(2024, 5, 1), month=4, year=2024)


async def test_direct_payment_unknown_account(ledger):
    with pytest.raises(AccountNotFound):
        await ledger.record_direct_payment("nobody@x.com", payment_date=date(2024, 4, 30), month=4, year=2024)


async def test_flat_increase_leaves_payroll_records(db, ledger):
    await _account(db, salary=50000, account_type=AccountType.HR.value)
    await ledger.create_record(email="jane@x.com", name="Jane", salary=50000, month=1, year=2024)

    account = await ledger.increase_account_salary("jane@x.com", 2500)

    assert account.salary == 52500
    assert [r.salary for r in await PayrollRepository(db).list("jane@x.com")] == [50000]


def _ledger_for(session, locks):
    return PayrollLedger(AccountRepository(session), PayrollRepository(session), locks=locks)


async def test_flat_increase_rereads_account_already_in_session(database):
    locks = KeyedLocks()
    async with database.session_factory() as setup:
        await _account(setup, email="hr@x.com", salary=50000, account_type=AccountType.HR.value)

    async with database.session_factory() as first, database.session_factory() as second:
        # The request's caller lookup keeps the account loaded before the raise runs
        held = await AccountRepository(second).get_by_email("hr@x.com")

        await _ledger_for(first, locks).increase_account_salary("hr@x.com", 1000)
        raised = await _ledger_for(second, locks).increase_account_salary("hr@x.com", 1000)

        assert raised is held
        assert raised.salary == 52000

    async with database.session_factory() as check:
        assert (await AccountRepository(check).get_by_email("hr@x.com")).salary == 52000


async def test_direct_payment_sees_payments_committed_elsewhere(database):
    locks = KeyedLocks()
    async with database.session_factory() as setup:
        await _account(setup, salary=40000)

    async with database.session_factory() as first, database.session_factory() as second:
        held = await AccountRepository(second).get_by_email("jane@x.com")
        assert held.payments == []

        await _ledger_for(first, locks).increase_account_salary("jane@x.com", 500)
        await _ledger_for(first, locks).record_direct_payment(
            "jane@x.com", payment_date=date(2024, 4, 30), month=4, year=2024
        )

        with pytest.raises(DuplicatePeriod):
            await _ledger_for(second, locks).record_direct_payment(
                "jane@x.com", payment_date=date(2024, 5, 1), month=4, year=2024
            )

        entry = await _ledger_for(second, locks).record_direct_payment(
            "jane@x.com", payment_date=date(2024, 5, 31), month=5, year=2024
        )
        assert entry.salary == 40500


async def test_promote_accepts_any_transition(db, ledger):
    account = await _account(db, account_type=AccountType.FIRED.value, is_fired=True)

    promoted = await ledger.promote(account.id, AccountType.HR)

    assert promoted.account_type == AccountType.HR.value


async def test_promote_unknown_account(ledger):
    with pytest.raises(AccountNotFound):
        await ledger.promote(404, AccountType.ADMIN)


async def test_fire_then_fire_again(db, ledger):
    account = await _account(db)

    fired = await ledger.fire(account.id)

    assert fired.is_fired is True
    assert fired.account_type == AccountType.FIRED.value
    with pytest.raises(NoChangeApplied):
        await ledger.fire(account.id)


async def test_fire_unknown_account(ledger):
    with pytest.raises(AccountNotFound):
        await ledger.fire(404)


@pytest.mark.parametrize("value, expected", [(3, 3), ("3", 3), ("Mar", 3), ("march", 3), (" DEC ", 12)])
def test_parse_month(value, expected):
    assert parse_month(value) == expected


@pytest.mark.parametrize("value", [0, 13, "Smarch", True, 2.5])
def test_parse_month_rejects(value):
    with pytest.raises(ValidationFailure):
        parse_month(value)


class FakePayrollRepo:
    """Yields to the loop between check and write, like a network round trip."""

    def __init__(self, *, unique: bool):
        self.unique = unique
        self.rows = []

    def _taken(self, email, month, year):
        return any((r.email, r.month, r.year) == (email, month, year) for r in self.rows)

    async def exists_for_period(self, email, month, year):
        await asyncio.sleep(0)
        return self._taken(email, month, year)

    async def insert(self, *, email, name, salary, month, year, status):
        await asyncio.sleep(0)
        if self.unique and self._taken(email, month, year):
            raise DuplicatePeriod("constraint violated")
        row = SimpleNamespace(id=len(self.rows) + 1, email=email, month=month, year=year, salary=salary)
        self.rows.append(row)
        return row

    async def commit(self):
        pass


async def _submit_twice(repo):
    ledger = PayrollLedger(accounts=None, payroll=repo, locks=KeyedLocks())
    submit = ledger.create_record(email="jane@x.com", name="Jane", salary=1, month=1, year=2024)
    again = ledger.create_record(email="jane@x.com", name="Jane", salary=1, month=1, year=2024)
    return await asyncio.gather(submit, again, return_exceptions=True)


async def test_concurrent_submissions_race_past_existence_check():
    repo = FakePayrollRepo(unique=False)

    results = await _submit_twice(repo)

    assert not any(isinstance(r, Exception) for r in results)
    assert len(repo.rows) == 2


async def test_uniqueness_constraint_closes_the_race():
    repo = FakePayrollRepo(unique=True)

    results = await _submit_twice(repo)

    assert sum(isinstance(r, DuplicatePeriod) for r in results) == 1
    assert len(repo.rows) == 1


async def test_keyed_locks_serialise_per_key():
    locks = KeyedLocks()
    order = []

    async def worker(name):
        async with locks.hold("jane@x.com"):
            order.append(f"{name}-in")
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0
