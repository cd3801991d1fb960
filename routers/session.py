from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth import verify_password
from crud import AccountRepository
from database import get_db
from dependencies import enforce_access_policy, get_token_service, limiter
from exceptions import Forbidden, TokenError, Unauthenticated, ValidationFailure
from logger import logger
from model import AccountType
from schemas import LoginRequest, ProfileResponse, SuccessResponse, TokenResponse, TokenStatus

router = APIRouter(
    tags=["session"],
    dependencies=[Depends(enforce_access_policy)]
)


@router.post("/jwt", response_model=TokenResponse)
@limiter.limit("20/minute")
async def issue_token(request: Request, response: Response, claims: Dict[str, Any] = Body(...)):
    """Sign the supplied claims and hand the token over in the session cookie"""
    if not claims:
        raise ValidationFailure("Token claims must not be empty")

    token_service = get_token_service(request)
    token = token_service.issue(claims)
    token_service.set_auth_cookie(response, token)
    return TokenResponse(token=token)


@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Password login; issues the same session token as /jwt"""
    account = await AccountRepository(db).get_by_email(body.email)
    # Same message whether the email is unknown or the password is wrong
    if account is None or not verify_password(body.password, account.password_hash):
        raise Unauthenticated("Invalid email or password")
    if account.is_fired or account.account_type == AccountType.FIRED.value:
        raise Forbidden("Account is no longer active")

    token_service = get_token_service(request)
    token = token_service.issue(
        {
            "email": account.email,
            "username": account.username,
            "account_type": account.account_type,
        }
    )
    token_service.set_auth_cookie(response, token)
    logger.info("Account %s logged in", account.id)
    return TokenResponse(token=token)


@router.post("/logout", response_model=SuccessResponse)
async def logout(request: Request, response: Response):
    # The token itself stays valid until it expires
    get_token_service(request).clear_auth_cookie(response)
    return SuccessResponse(message="Logged out successfully")


@router.get("/validate-token", response_model=TokenStatus)
async def validate_token(request: Request):
    token_service = get_token_service(request)
    token = request.cookies.get(token_service.cookie_policy.name)
    if not token:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"is_valid": False})

    try:
        token_service.verify(token)
    except TokenError:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"is_valid": False})
    return TokenStatus(is_valid=True)


@router.get("/profile", response_model=ProfileResponse)
async def profile(request: Request):
    """Claims the session cookie carries, as decoded by the access policy"""
    return ProfileResponse(message="Welcome to your profile", user=request.state.user)
