from typing import Annotated, Optional

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Request, Response
from itsdangerous import BadData, URLSafeTimedSerializer
from passlib.context import CryptContext

import crud
from db import SessionDep
from models import Role, User
from permissions import Actor
from schemas import LoginData, Message, TokenResponse, UserCreate, UserRead

router = APIRouter(tags=["auth"])

SESSION_COOKIE = "session"

pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def make_serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt="session")


def create_session_token(serializer: URLSafeTimedSerializer, user_id: int) -> str:
    """
    Store the user id in a signed token. The role is not part of the token;
    it is read from the user row on every request.
    """
    return serializer.dumps({"user_id": user_id})


def verify_session_token(
    serializer: URLSafeTimedSerializer, token: str, max_age_seconds: int
) -> Optional[dict]:
    """
    Returns {'user_id': ...} if valid, or None if the token is
    invalid or expired.
    """
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadData:
        return None


def _set_session_cookie(request: Request, response: Response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=request.app.state.settings.session_max_age,
    )


def _token_from(authorization: Optional[str], session_token: Optional[str]) -> Optional[str]:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
    return session_token


def get_current_user(
    request: Request,
    session: SessionDep,
    authorization: Optional[str] = Header(default=None),
    session_token: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
) -> User:
    """
    Reads the bearer token or the 'session' cookie, verifies it and looks
    up the user. Raises 401 if not logged in / invalid.
    """
    token = _token_from(authorization, session_token)
    if token is None:
        raise HTTPException(status_code=401, detail="Not logged in")

    data = verify_session_token(
        request.app.state.serializer,
        token,
        request.app.state.settings.session_max_age,
    )
    if not data:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    user = session.get(User, data.get("user_id"))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found for this session")
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def get_current_actor(user: CurrentUserDep) -> Actor:
    return Actor.from_user(user)


CurrentActorDep = Annotated[Actor, Depends(get_current_actor)]


@router.post("/register", response_model=TokenResponse, status_code=201)
def register(user_in: UserCreate, request: Request, response: Response, session: SessionDep):
    """
    Register a new donor, recipient or logistics user with a hashed password.
    Administrators are never created through this route.
    """
    user = User(
        name=user_in.name,
        email=user_in.email,
        password_hash=hash_password(user_in.password),
        role=Role(user_in.role),
        phone=user_in.phone,
        organization=user_in.organization,
        address=user_in.address.model_dump(mode="json") if user_in.address else None,
    )
    crud.register_user(session, user)

    token = create_session_token(request.app.state.serializer, user.id)
    _set_session_cookie(request, response, token)
    return TokenResponse(access_token=token, user=UserRead.model_validate(user))


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginData, request: Request, response: Response, session: SessionDep):
    """
    Log in with email + password, set a signed cookie and return the token.
    """
    user = crud.get_user_by_email(session, payload.email)
    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    token = create_session_token(request.app.state.serializer, user.id)
    _set_session_cookie(request, response, token)
    return TokenResponse(access_token=token, user=UserRead.model_validate(user))


@router.post("/logout", response_model=Message)
def logout(response: Response):
    """
    Clear the session cookie.
    """
    response.delete_cookie(SESSION_COOKIE)
    return Message(message="Logged out")


@router.get("/me", response_model=UserRead)
def read_me(user: CurrentUserDep):
    """
    Get info about the currently logged-in user.
    """
    return UserRead.model_validate(user)
