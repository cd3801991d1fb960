from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from crud import MessageRepository
from database import get_db
from dependencies import enforce_access_policy
from schemas import Message, MessageCreate

router = APIRouter(
    prefix="/api/messages",
    tags=["messages"],
    dependencies=[Depends(enforce_access_policy)]
)


@router.get("", response_model=List[Message])
async def list_messages(db: AsyncSession = Depends(get_db)):
    return await MessageRepository(db).list_newest_first()


@router.post("", response_model=Message, status_code=status.HTTP_201_CREATED)
async def create_message(body: MessageCreate, db: AsyncSession = Depends(get_db)):
    return await MessageRepository(db).create(email=body.email, message=body.message)
