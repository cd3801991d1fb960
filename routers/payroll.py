from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from crud import PayrollRepository
from database import get_db
from dependencies import enforce_access_policy, get_ledger
from ledger import PayrollLedger
from schemas import (
    PaymentApproval,
    PayrollCreate,
    PayrollRecord,
    SalaryIncreaseResult,
    SalaryIncrement,
)

router = APIRouter(
    prefix="/payroll",
    tags=["payroll"],
    dependencies=[Depends(enforce_access_policy)]
)


@router.get("", response_model=List[PayrollRecord])
async def list_payroll(email: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    return await PayrollRepository(db).list(email=email)


@router.post("", response_model=PayrollRecord, status_code=status.HTTP_201_CREATED)
async def create_payroll(body: PayrollCreate, ledger: PayrollLedger = Depends(get_ledger)):
    return await ledger.create_record(
        email=body.email,
        name=body.name,
        salary=body.salary,
        month=body.month,
        year=body.year,
        status=body.status,
    )


@router.patch("/increase-salary/{email}", response_model=SalaryIncreaseResult)
async def increase_salary(email: str, body: SalaryIncrement, ledger: PayrollLedger = Depends(get_ledger)):
    return await ledger.increase_salary_across_periods(email, body.amount)


@router.patch("/{record_id}", response_model=PayrollRecord)
async def mark_paid(
    record_id: int,
    body: Optional[PaymentApproval] = None,
    ledger: PayrollLedger = Depends(get_ledger),
):
    payment_date = body.payment_date if body else None
    return await ledger.mark_paid(record_id, payment_date)
