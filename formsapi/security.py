import datetime
import logging
from typing import Annotated, Literal, Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi.config import config
from formsapi.database import get_connection, user_table
from formsapi.errors import AuthenticationError, AuthorizationError
from formsapi.models.user import Role, User, UserInDB

logging.getLogger('passlib').setLevel(logging.ERROR)
logger = logging.getLogger(__name__)

SESSION_COOKIE = "auth-token"
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)
pwd_context = CryptContext(schemes=["bcrypt"])


def create_unauthorized_exception(detail: str) -> AuthenticationError:
    return AuthenticationError(detail)


def access_token_expire_minutes() -> int:
    return config.SESSION_EXPIRE_MINUTES


def create_access_token(user: User):
    logger.debug("Creating access token", extra={"username": user.username})
    expire = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
        minutes=access_token_expire_minutes()
    )
    jwt_data = {
        "sub": user.username,
        "uid": user.id,
        "role": user.role.value,
        "exp": expire,
        "type": "access",
    }
    encoded_jwt = jwt.encode(jwt_data, key=config.SECRET_KEY, algorithm=config.ALGORITHM)
    return encoded_jwt


def get_subject_for_token_type(
    token: str, type: Literal["access"]
) -> str:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except ExpiredSignatureError as e:
        raise create_unauthorized_exception("Token has expired") from e
    except JWTError as e:
        raise create_unauthorized_exception("Invalid token") from e

    username = payload.get("sub")
    if username is None:
        raise create_unauthorized_exception("Token is missing 'sub' field")

    token_type = payload.get("type")
    if token_type is None or token_type != type:
        raise create_unauthorized_exception(
            f"Token has incorrect type, expected '{type}'"
        )

    return username


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # malformed or foreign hash in the users table
        logger.warning("Stored password hash could not be verified")
        return False


async def get_user(conn: AsyncConnection, username: str) -> Optional[UserInDB]:
    query = user_table.select().where(user_table.c.username == username)
    result = (await conn.execute(query)).first()
    if result:
        return UserInDB(**result._mapping)
    return None


async def get_user_by_id(conn: AsyncConnection, user_id: int) -> Optional[UserInDB]:
    query = user_table.select().where(user_table.c.id == user_id)
    result = (await conn.execute(query)).first()
    if result:
        return UserInDB(**result._mapping)
    return None


async def authenticate_user(conn: AsyncConnection, username: str, password: str) -> User:
    logger.debug("Authenticating user", extra={"username": username})
    user = await get_user(conn, username)
    if not user:
        raise create_unauthorized_exception("Invalid credentials")
    if not verify_password(password, user.password_hash):
        raise create_unauthorized_exception("Invalid credentials")
    return User(**user.model_dump(exclude={"password_hash"}))


async def authenticate_signer(conn: AsyncConnection, username: str, password: str) -> User:
    """Verify a signing principal independently of the caller's session.

    The signer re-enters their own credentials at the moment of signing, so a
    CEO can countersign while someone else's session is open.
    """
    signer = await authenticate_user(conn, username, password)
    if not signer.can_sign:
        logger.warning(f"User {signer.username} with role {signer.role.value} attempted to sign")
        raise AuthorizationError("Only administrators and CEOs can sign forms.")
    return signer


async def get_current_user(
    request: Request,
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
) -> User:
    token = token or request.cookies.get(SESSION_COOKIE)
    if not token:
        raise create_unauthorized_exception("Not authenticated")
    username = get_subject_for_token_type(token, "access")
    user = await get_user(conn, username=username)
    if user is None:
        raise create_unauthorized_exception("Could not find user for this token")
    return User(**user.model_dump(exclude={"password_hash"}))


def require_roles(*allowed_roles: Role):
    async def check_roles(current_user: Annotated[User, Depends(get_current_user)]):
        logger.debug(f"Current user role: {current_user.role.value}")
        if current_user.role not in allowed_roles:
            raise AuthorizationError("Insufficient permissions")
        return current_user
    return check_roles
