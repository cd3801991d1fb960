from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from auth import hash_password
from crud import AccountRepository
from database import get_db
from dependencies import enforce_access_policy, get_ledger
from exceptions import AccountNotFound
from ledger import PayrollLedger
from logger import logger
from model import AccountType
from schemas import (
    Account,
    AccountCreate,
    CredentialsUpdate,
    DirectPaymentCreate,
    PaymentEntry,
    RegisterResponse,
    SalaryIncrement,
    SuccessResponse,
    VerificationUpdate,
)

router = APIRouter(
    prefix="/users",
    tags=["users"],
    dependencies=[Depends(enforce_access_policy)]
)

DEFAULT_HR_SALARY = 50000
DEFAULT_SALARY = 30000


@router.post("", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(body: AccountCreate, response: Response, db: AsyncSession = Depends(get_db)):
    """Register an account; an already registered email returns the stored profile"""
    accounts = AccountRepository(db)
    existing = await accounts.get_by_email(body.email)
    if existing:
        response.status_code = status.HTTP_200_OK
        return RegisterResponse(message="User already exists", user=Account.model_validate(existing))

    salary = body.salary
    if salary is None:
        salary = DEFAULT_HR_SALARY if body.account_type == AccountType.HR else DEFAULT_SALARY

    account = await accounts.create(
        email=body.email,
        password_hash=hash_password(body.password) if body.password else None,
        username=body.username or "New Employee",
        bank_account_number=body.bank_account_number or "",
        account_type=body.account_type.value,
        uploaded_photo=body.uploaded_photo or "",
        salary=salary,
    )
    if account is None:
        # Lost a race with a concurrent registration for the same email
        response.status_code = status.HTTP_200_OK
        existing = await accounts.get_by_email(body.email)
        return RegisterResponse(message="User already exists", user=Account.model_validate(existing))

    logger.info("Registered account %s as %s", account.id, account.account_type)
    return RegisterResponse(message="User registered successfully", user=Account.model_validate(account))


@router.get("", response_model=List[Account])
async def list_accounts(db: AsyncSession = Depends(get_db)):
    return await AccountRepository(db).list_all()


@router.patch("/admin/{account_id}", response_model=Account)
async def make_admin(account_id: int, ledger: PayrollLedger = Depends(get_ledger)):
    return await ledger.promote(account_id, AccountType.ADMIN)


@router.patch("/employee/{account_id}", response_model=Account)
async def make_hr(account_id: int, ledger: PayrollLedger = Depends(get_ledger)):
    return await ledger.promote(account_id, AccountType.HR)


@router.patch("/fire/{account_id}", response_model=Account)
async def fire(account_id: int, ledger: PayrollLedger = Depends(get_ledger)):
    return await ledger.fire(account_id)


@router.patch("/increase-salary/{email}", response_model=Account)
async def increase_salary(email: str, body: SalaryIncrement, ledger: PayrollLedger = Depends(get_ledger)):
    return await ledger.increase_account_salary(email, body.amount)


@router.patch("/pay/{email}", response_model=PaymentEntry, status_code=status.HTTP_201_CREATED)
async def pay(email: str, body: DirectPaymentCreate, ledger: PayrollLedger = Depends(get_ledger)):
    return await ledger.record_direct_payment(
        email,
        payment_date=body.payment_date,
        month=body.month,
        year=body.year,
    )


@router.get("/{email}", response_model=Account)
async def get_account(email: str, db: AsyncSession = Depends(get_db)):
    account = await AccountRepository(db).get_by_email(email)
    if account is None:
        raise AccountNotFound("User not found")
    return account


@router.patch("/{email}", response_model=Account)
async def set_verification(email: str, body: VerificationUpdate, db: AsyncSession = Depends(get_db)):
    accounts = AccountRepository(db)
    account = await accounts.get_by_email(email)
    if account is None:
        raise AccountNotFound("User not found")

    account.is_verified = body.is_verified
    await accounts.commit()
    return account


@router.put("/{email}", response_model=SuccessResponse)
async def update_credentials(email: str, body: CredentialsUpdate, db: AsyncSession = Depends(get_db)):
    accounts = AccountRepository(db)
    account = await accounts.get_by_email(email)
    if account is None:
        raise AccountNotFound("User not found")

    account.bank_account_number = body.bank_account_number
    if body.password:
        account.password_hash = hash_password(body.password)
    await accounts.commit()
    return SuccessResponse(message="User updated successfully")


@router.delete("/{account_id}", response_model=SuccessResponse)
async def delete_account(account_id: int, db: AsyncSession = Depends(get_db)):
    accounts = AccountRepository(db)
    if not await accounts.delete(account_id):
        raise AccountNotFound("User not found")
    await accounts.commit()
    logger.info("Deleted account %s", account_id)
    return SuccessResponse(message="User deleted successfully")
