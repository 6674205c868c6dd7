import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import jwt
from passlib.context import CryptContext
from pymongo import ReturnDocument
from pymongo.database import Database

import factory
from config import Settings, app_settings
from database import get_db, utcnow
from email_service import EmailDeliveryError, Mailer, get_mailer
from errors import AppError
from resources import ACTIVE_USERS, USERS
from schemas import ForgotPasswordRequest, PasswordPair, SigninRequest, SignupRequest, UpdatePasswordRequest

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
RESET_TOKEN_TTL = timedelta(minutes=10)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/users/signin", auto_error=False)

router = APIRouter()


# Helpers

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def _timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def sign_token(user_id: Any, settings: Settings, issued_at: Optional[datetime] = None) -> str:
    iat = int(_timestamp(issued_at or datetime.now(timezone.utc)))
    payload = {"sub": str(user_id), "iat": iat, "exp": iat + settings.jwt_expires_in}
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def changed_password_after(user: Dict[str, Any], issued_at: int) -> bool:
    """True when the password was changed after a token issued at `issued_at` (epoch seconds)."""
    changed_at = user.get("passwordChangedAt")
    if changed_at:
        return issued_at < int(_timestamp(changed_at))
    return False


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def create_password_reset_token() -> Tuple[str, str, datetime]:
    """Return the plain token to send, its stored hash and its expiry."""
    token = secrets.token_hex(32)
    return token, hash_reset_token(token), utcnow() + RESET_TOKEN_TTL


def create_send_token(user: Dict[str, Any], status_code: int, settings: Settings) -> JSONResponse:
    token = sign_token(user["_id"], settings)
    response = JSONResponse(
        status_code=status_code,
        content={"status": "success", "token": token, "data": {"user": factory.present(USERS, user)}},
    )
    response.set_cookie(
        "jwt",
        token,
        max_age=settings.jwt_cookie_expires_in_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.is_production,
    )
    return response


def set_password(db: Database, user_id: ObjectId, password: str) -> Dict[str, Any]:
    # one second back so a token issued right after the change stays valid
    return db["users"].find_one_and_update(
        {"_id": user_id},
        {
            "$set": {
                "password": hash_password(password),
                "passwordChangedAt": utcnow() - timedelta(seconds=1),
                "passwordResetToken": None,
                "passwordResetExpires": None,
            },
            "$inc": {"__v": 1},
        },
        return_document=ReturnDocument.AFTER,
    )


# Request guards

def protect(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(app_settings),
) -> Dict[str, Any]:
    if not token:
        raise AppError("You are not logged in! Please log in to get access.", 401)

    payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise AppError("Invalid token. Please log in again!", 401)

    user = db["users"].find_one({"_id": ObjectId(user_id), **ACTIVE_USERS})
    if not user:
        raise AppError("The user belonging to this token does no longer exist.", 401)

    if changed_password_after(user, int(payload.get("iat", 0))):
        raise AppError("User recently changed password! Please log in again.", 401)

    request.state.user = user
    return user


def restrict_to(*roles: str):
    def role_gate(current_user: Dict[str, Any] = Depends(protect)) -> Dict[str, Any]:
        if current_user.get("role") not in roles:
            raise AppError("You do not have permission to perform this action", 403)
        return current_user

    return role_gate


# Routes

@router.post("/signup", status_code=201)
def signup(payload: SignupRequest, db: Database = Depends(get_db), settings: Settings = Depends(app_settings)):
    user = factory.create(
        db,
        USERS,
        {
            "name": payload.name,
            "email": payload.email,
            "photo": payload.photo,
            "password": hash_password(payload.password),
            "role": "user",
        },
    )
    return create_send_token(user, 201, settings)


@router.post("/signin")
def signin(payload: SigninRequest, db: Database = Depends(get_db), settings: Settings = Depends(app_settings)):
    if not payload.email or not payload.password:
        raise AppError("Please provide email and password!", 400)

    user = db["users"].find_one({"email": payload.email.lower(), **ACTIVE_USERS})
    if not user or not verify_password(payload.password, user.get("password", "")):
        logger.info("Failed sign-in for %s", payload.email)
        raise AppError("Incorrect email or password", 401)
    return create_send_token(user, 200, settings)


@router.post("/forgot-password")
def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    db: Database = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    user = db["users"].find_one({"email": payload.email.lower(), **ACTIVE_USERS})
    if not user:
        raise AppError("There is no user with that email address.", 404)

    reset_token, hashed_token, expires = create_password_reset_token()
    db["users"].update_one(
        {"_id": user["_id"]},
        {"$set": {"passwordResetToken": hashed_token, "passwordResetExpires": expires}},
    )

    reset_url = f"{request.base_url}api/v1/users/reset-password/{reset_token}"
    message = (
        f"Forgot your password? Submit a PATCH request with your new password and passwordConfirm to: {reset_url}.\n"
        "If you didn't forget your password, please ignore this email!"
    )
    try:
        mailer.send(user["email"], "Your password reset token (valid for 10 min)", message)
    except EmailDeliveryError as exc:
        logger.error("Could not send reset email to %s: %s", user["email"], exc)
        db["users"].update_one(
            {"_id": user["_id"]},
            {"$set": {"passwordResetToken": None, "passwordResetExpires": None}},
        )
        raise AppError("There was an error sending the email. Try again later!", 500)

    return {"status": "success", "message": "Token sent to email!"}


@router.patch("/reset-password/{token}")
def reset_password(
    token: str,
    payload: PasswordPair,
    db: Database = Depends(get_db),
    settings: Settings = Depends(app_settings),
):
    user = db["users"].find_one(
        {
            "passwordResetToken": hash_reset_token(token),
            "passwordResetExpires": {"$gt": utcnow()},
            **ACTIVE_USERS,
        }
    )
    if not user:
        raise AppError("Token is invalid or has expired", 400)

    user = set_password(db, user["_id"], payload.password)
    return create_send_token(user, 200, settings)


@router.patch("/update-my-password")
def update_password(
    payload: UpdatePasswordRequest,
    current_user: Dict[str, Any] = Depends(protect),
    db: Database = Depends(get_db),
    settings: Settings = Depends(app_settings),
):
    if not verify_password(payload.password_current, current_user.get("password", "")):
        raise AppError("Your current password is wrong.", 401)

    user = set_password(db, current_user["_id"], payload.password)
    return create_send_token(user, 200, settings)
