"""
Session gate and the declarative access policy.

``get_current_user`` only authenticates: it turns the session cookie into
claims.  ``enforce_access_policy`` is attached to every router and looks the
matched route up in ``ACCESS_POLICY``; routes missing from the table require
a valid session.  Roles always come from the stored account, since token
claims are whatever the caller asked ``/jwt`` to sign.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Tuple

from fastapi import Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from auth import TokenService
from crud import AccountRepository, PayrollRepository, normalize_email
from database import get_db
from exceptions import Forbidden, TokenError, Unauthenticated
from ledger import PayrollLedger
from model import Account, AccountType

limiter = Limiter(key_func=get_remote_address)


@dataclass(frozen=True)
class AccessRule:
    public: bool = False
    # empty means any authenticated caller
    roles: FrozenSet[AccountType] = frozenset()
    # path parameter naming the target account; its owner passes regardless of role
    owner_param: Optional[str] = None
    owner_field: str = "email"


PUBLIC = AccessRule(public=True)
AUTHENTICATED = AccessRule()
STAFF = frozenset({AccountType.HR, AccountType.ADMIN})
ADMIN = frozenset({AccountType.ADMIN})
HR = frozenset({AccountType.HR})

ACCESS_POLICY: Dict[Tuple[str, str], AccessRule] = {
    ("POST", "/jwt"): PUBLIC,
    ("POST", "/login"): PUBLIC,
    ("POST", "/logout"): PUBLIC,
    ("GET", "/validate-token"): PUBLIC,
    ("GET", "/profile"): AUTHENTICATED,
    ("GET", "/health"): PUBLIC,
    ("POST", "/users"): PUBLIC,
    ("GET", "/users"): AccessRule(roles=STAFF),
    ("GET", "/users/{email}"): AccessRule(roles=STAFF, owner_param="email"),
    ("PATCH", "/users/{email}"): AccessRule(roles=STAFF),
    ("PUT", "/users/{email}"): AccessRule(roles=ADMIN, owner_param="email"),
    ("DELETE", "/users/{account_id}"): AccessRule(roles=ADMIN),
    ("PATCH", "/users/admin/{account_id}"): AccessRule(roles=ADMIN),
    ("PATCH", "/users/employee/{account_id}"): AccessRule(roles=ADMIN),
    ("PATCH", "/users/fire/{account_id}"): AccessRule(roles=ADMIN),
    ("PATCH", "/users/increase-salary/{email}"): AccessRule(roles=HR),
    ("PATCH", "/users/pay/{email}"): AccessRule(roles=STAFF),
    ("GET", "/work"): AUTHENTICATED,
    ("GET", "/work/{account_id}"): AccessRule(roles=STAFF, owner_param="account_id", owner_field="id"),
    ("POST", "/work"): AUTHENTICATED,
    ("PUT", "/work/{entry_id}"): AUTHENTICATED,
    ("DELETE", "/work/{entry_id}"): AUTHENTICATED,
    ("GET", "/payroll"): AccessRule(roles=STAFF),
    ("POST", "/payroll"): AccessRule(roles=STAFF),
    ("PATCH", "/payroll/{record_id}"): AccessRule(roles=ADMIN),
    ("PATCH", "/payroll/increase-salary/{email}"): AccessRule(roles=STAFF),
    ("GET", "/api/messages"): AccessRule(roles=STAFF),
    ("POST", "/api/messages"): PUBLIC,
}


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


async def get_current_user(request: Request) -> Dict[str, Any]:
    """Dependency to get the caller's claims from the session cookie"""
    token_service = get_token_service(request)
    token = request.cookies.get(token_service.cookie_policy.name)
    if not token:
        raise Unauthenticated("Access denied. No token provided.")

    try:
        claims = token_service.verify(token)
    except TokenError as exc:
        raise Unauthenticated("Invalid or expired token.") from exc

    request.state.user = claims
    return claims


async def get_caller_account(request: Request, db: AsyncSession) -> Account:
    """Stored account behind the session; cached on the request."""
    cached = getattr(request.state, "account", None)
    if cached is not None:
        return cached

    claims = getattr(request.state, "user", None)
    if claims is None:
        claims = await get_current_user(request)
    email = claims.get("email")
    if not isinstance(email, str):
        raise Forbidden("Session is not bound to an account")

    account = await AccountRepository(db).get_by_email(email)
    if account is None:
        raise Forbidden("Session is not bound to an account")
    request.state.account = account
    return account


def _is_owner(rule: AccessRule, request: Request, account: Account) -> bool:
    value = request.path_params.get(rule.owner_param)
    if value is None:
        return False
    if rule.owner_field == "id":
        return str(account.id) == str(value)
    return normalize_email(account.email) == normalize_email(str(value))


async def enforce_access_policy(request: Request, db: AsyncSession = Depends(get_db)) -> Optional[Dict[str, Any]]:
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    rule = ACCESS_POLICY.get((request.method, path), AUTHENTICATED)
    if rule.public:
        return None

    claims = await get_current_user(request)
    if not rule.roles and rule.owner_param is None:
        return claims

    account = await get_caller_account(request, db)
    if rule.owner_param is not None and _is_owner(rule, request, account):
        return claims
    if account.account_type in {role.value for role in rule.roles}:
        return claims
    raise Forbidden("Insufficient permissions")


def get_ledger(request: Request, db: AsyncSession = Depends(get_db)) -> PayrollLedger:
    return PayrollLedger(
        AccountRepository(db),
        PayrollRepository(db),
        locks=request.app.state.salary_locks,
    )
