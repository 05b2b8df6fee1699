import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi.config import config
from formsapi.database import get_connection
from formsapi.errors import NotFoundError
from formsapi.models.user import Credentials, User
from formsapi.security import (
    SESSION_COOKIE,
    access_token_expire_minutes,
    authenticate_signer,
    authenticate_user,
    create_access_token,
    get_current_user,
    get_user,
)
from formsapi.seed import DEMO_PASSWORD, create_demo_users

logger = logging.getLogger(__name__)
router = APIRouter()


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="lax",
        max_age=access_token_expire_minutes() * 60,
        path="/",
    )


def start_session(response: Response, user: User) -> dict:
    access_token = create_access_token(user)
    set_session_cookie(response, access_token)
    logger.info(f"User {user.username} logged in")
    return {"access_token": access_token, "token_type": "bearer", "user": user.model_dump()}


def require_demo_mode() -> None:
    if not config.DEMO_MODE:
        raise NotFoundError("Demo mode is disabled")


@router.post("/login", status_code=200)
async def login(
    credentials: Credentials,
    response: Response,
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    user = await authenticate_user(conn, credentials.username, credentials.password)
    return start_session(response, user)


@router.post("/token", status_code=200)
async def token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    response: Response,
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    user = await authenticate_user(conn, form_data.username, form_data.password)
    return start_session(response, user)


@router.post("/logout", status_code=200)
async def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"detail": "Logged out"}


@router.get("/me", response_model=User)
async def me(current_user: Annotated[User, Depends(get_current_user)]):
    return current_user


@router.post("/signature-auth", response_model=User)
async def signature_auth(
    credentials: Credentials,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    signer = await authenticate_signer(conn, credentials.username, credentials.password)
    logger.info(f"{signer.username} verified for signing in the session of {current_user.username}")
    return signer


@router.post("/create-demo-users", status_code=201, dependencies=[Depends(require_demo_mode)])
async def demo_users(conn: Annotated[AsyncConnection, Depends(get_connection)]):
    usernames = await create_demo_users(conn)
    return {
        "detail": "Demo users created successfully",
        "users": [{"username": name, "password": DEMO_PASSWORD} for name in usernames],
    }


@router.post("/demo-login", status_code=200, dependencies=[Depends(require_demo_mode)])
async def demo_login(response: Response, conn: Annotated[AsyncConnection, Depends(get_connection)]):
    user = await get_user(conn, "demo")
    if user is None:
        raise NotFoundError("Demo users have not been created")
    return start_session(response, User(**user.model_dump(exclude={"password_hash"})))
