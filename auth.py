from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from starlette.responses import Response

from config import Settings
from exceptions import ExpiredToken, InvalidToken
from logger import logger

ALGORITHM = "HS256"
TOKEN_EXPIRE_HOURS = 180

# Claims managed by the service itself; caller-supplied values are replaced
_REGISTERED_CLAIMS = ("iat", "exp")

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


@dataclass(frozen=True)
class CookiePolicy:
    """How the session token travels to and from the browser."""

    name: str = "token"
    secure: bool = False
    samesite: str = "strict"

    @classmethod
    def from_settings(cls, settings: Settings) -> "CookiePolicy":
        production = settings.is_production
        secure = settings.cookie_secure if settings.cookie_secure is not None else production
        samesite = settings.cookie_samesite or ("none" if production else "strict")
        return cls(name=settings.cookie_name, secure=secure, samesite=samesite)


class TokenService:
    """Mints and verifies signed, time-bounded session tokens.

    Stateless: validity depends only on the signature, the expiry claim and
    the current time.  There is no revocation list.
    """

    def __init__(
        self,
        secret_key: str,
        *,
        expires: timedelta = timedelta(hours=TOKEN_EXPIRE_HOURS),
        cookie_policy: Optional[CookiePolicy] = None,
    ):
        self._secret_key = secret_key
        self.expires = expires
        self.cookie_policy = cookie_policy or CookiePolicy()

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            settings.secret_key,
            expires=timedelta(hours=settings.token_expire_hours),
            cookie_policy=CookiePolicy.from_settings(settings),
        )

    def issue(self, claims: Dict[str, Any], *, now: Optional[datetime] = None) -> str:
        """Sign *claims* verbatim with an issued-at and a fixed expiry."""
        issued_at = now or datetime.now(timezone.utc)
        payload = dict(claims)
        payload.update(
            {
                "iat": int(issued_at.timestamp()),
                "exp": int((issued_at + self.expires).timestamp()),
            }
        )
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> Dict[str, Any]:
        """Return the claims embedded in *token*.

        Raises ``ExpiredToken`` past the validity window and ``InvalidToken``
        for a bad signature or a malformed token.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError as exc:
            logger.info("Rejected expired session token")
            raise ExpiredToken("Token expired") from exc
        except JWTError as exc:
            logger.info("Rejected invalid session token: %s", exc)
            raise InvalidToken("Invalid token") from exc

        for claim in _REGISTERED_CLAIMS:
            payload.pop(claim, None)
        return payload

    def set_auth_cookie(self, response: Response, token: str) -> None:
        """Set the HTTP-only session cookie"""
        policy = self.cookie_policy
        response.set_cookie(
            key=policy.name,
            value=token,
            httponly=True,
            secure=policy.secure,
            samesite=policy.samesite,
        )

    def clear_auth_cookie(self, response: Response) -> None:
        policy = self.cookie_policy
        response.delete_cookie(
            key=policy.name,
            httponly=True,
            secure=policy.secure,
            samesite=policy.samesite,
        )
