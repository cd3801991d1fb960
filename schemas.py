from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, EmailStr, Field, field_validator

from ledger import parse_month
from model import AccountType, PaymentStatus

MonthInput = Union[int, str]


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    success: bool = True
    token: str


class TokenStatus(BaseModel):
    is_valid: bool


class ProfileResponse(BaseModel):
    message: str
    user: Dict[str, Any]


class PaymentEntry(BaseModel):
    id: int
    payment_date: date
    month: int
    year: int
    salary: int

    model_config = {"from_attributes": True}


class AccountBase(BaseModel):
    email: EmailStr
    username: Optional[str] = None
    bank_account_number: Optional[str] = None
    account_type: AccountType = AccountType.EMPLOYEE
    uploaded_photo: Optional[str] = None


class AccountCreate(AccountBase):
    # absent for accounts signed in through an external provider
    password: Optional[str] = None
    salary: Optional[int] = Field(default=None, ge=0)

    @field_validator("account_type")
    @classmethod
    def self_service_types_only(cls, value: AccountType) -> AccountType:
        if value not in (AccountType.EMPLOYEE, AccountType.HR):
            raise ValueError("Only Employee or HR accounts can register")
        return value


class Account(BaseModel):
    id: int
    email: str
    username: str
    account_type: AccountType
    bank_account_number: str
    uploaded_photo: str
    salary: int
    is_verified: bool
    is_fired: bool
    payments: List[PaymentEntry] = []

    model_config = {"from_attributes": True}


class RegisterResponse(BaseModel):
    message: str
    user: Account


class VerificationUpdate(BaseModel):
    is_verified: bool = True


class CredentialsUpdate(BaseModel):
    bank_account_number: str
    password: Optional[str] = None


class SalaryIncrement(BaseModel):
    amount: int = Field(gt=0)


class DirectPaymentCreate(BaseModel):
    payment_date: date = Field(default_factory=date.today)
    month: MonthInput
    year: int = Field(ge=1900, le=9999)

    @field_validator("month")
    @classmethod
    def normalise_month(cls, value: MonthInput) -> int:
        return parse_month(value)


class PayrollCreate(BaseModel):
    email: EmailStr
    name: str = ""
    salary: int = Field(ge=0)
    month: MonthInput
    year: int = Field(ge=1900, le=9999)
    status: Optional[PaymentStatus] = None

    @field_validator("month")
    @classmethod
    def normalise_month(cls, value: MonthInput) -> int:
        return parse_month(value)


class PayrollRecord(BaseModel):
    id: int
    email: str
    name: str
    salary: int
    month: int
    year: int
    status: PaymentStatus
    payment_date: Optional[date] = None

    model_config = {"from_attributes": True}


class PaymentApproval(BaseModel):
    payment_date: Optional[date] = None


class SalaryIncreaseResult(BaseModel):
    email: str
    salary: int
    records_updated: int

    model_config = {"from_attributes": True}


class WorkEntryCreate(BaseModel):
    task: str = Field(min_length=1)
    hours_worked: float = Field(gt=0, le=24)
    entry_date: date


class WorkEntryUpdate(BaseModel):
    task: Optional[str] = Field(default=None, min_length=1)
    hours_worked: Optional[float] = Field(default=None, gt=0, le=24)
    entry_date: Optional[date] = None


class WorkEntry(BaseModel):
    id: int
    account_id: int
    task: str
    hours_worked: float
    entry_date: date
    email: str
    username: str

    model_config = {"from_attributes": True}


class MessageCreate(BaseModel):
    email: EmailStr
    message: str = Field(min_length=1)


class Message(BaseModel):
    id: int
    email: str
    message: str
    created_at: datetime

    model_config = {"from_attributes": True}


class SuccessResponse(BaseModel):
    message: str
