from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from crud import WorkRepository
from database import get_db
from dependencies import STAFF, enforce_access_policy, get_caller_account
from exceptions import Forbidden, RecordNotFound
from model import Account
from schemas import SuccessResponse, WorkEntry, WorkEntryCreate, WorkEntryUpdate

router = APIRouter(
    prefix="/work",
    tags=["work"],
    dependencies=[Depends(enforce_access_policy)]
)


def _is_staff(account: Account) -> bool:
    return account.account_type in {role.value for role in STAFF}


async def _owned_entry(entry_id: int, request: Request, db: AsyncSession):
    entry = await WorkRepository(db).get(entry_id)
    if entry is None:
        raise RecordNotFound("Work entry not found")

    caller = await get_caller_account(request, db)
    # Employees can only touch their own entries unless HR or admin
    if entry.account_id != caller.id and not _is_staff(caller):
        raise Forbidden("You can only modify your own work entries")
    return entry


@router.get("", response_model=List[WorkEntry])
async def list_work(request: Request, db: AsyncSession = Depends(get_db)):
    caller = await get_caller_account(request, db)
    if _is_staff(caller):
        return await WorkRepository(db).list()
    return await WorkRepository(db).list(account_id=caller.id)


@router.get("/{account_id}", response_model=List[WorkEntry])
async def list_work_for_account(account_id: int, db: AsyncSession = Depends(get_db)):
    return await WorkRepository(db).list(account_id=account_id)


@router.post("", response_model=WorkEntry, status_code=status.HTTP_201_CREATED)
async def create_work(body: WorkEntryCreate, request: Request, db: AsyncSession = Depends(get_db)):
    caller = await get_caller_account(request, db)
    entry = await WorkRepository(db).create(
        caller,
        task=body.task,
        hours_worked=body.hours_worked,
        entry_date=body.entry_date,
    )
    return entry


@router.put("/{entry_id}", response_model=WorkEntry)
async def update_work(entry_id: int, body: WorkEntryUpdate, request: Request, db: AsyncSession = Depends(get_db)):
    entry = await _owned_entry(entry_id, request, db)
    return await WorkRepository(db).update(entry, **body.model_dump(exclude_unset=True))


@router.delete("/{entry_id}", response_model=SuccessResponse)
async def delete_work(entry_id: int, request: Request, db: AsyncSession = Depends(get_db)):
    entry = await _owned_entry(entry_id, request, db)
    await WorkRepository(db).delete(entry)
    return SuccessResponse(message="Work entry deleted")
