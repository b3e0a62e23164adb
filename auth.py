import logging
import secrets
from datetime import datetime, timedelta

import bcrypt
import jwt
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

import config
from database import get_db, User
from email_service import (
    load_email_settings,
    send_verification_email,
    send_password_reset_email,
)
from schemas import (
    UserCreate,
    UserLogin,
    UserOut,
    Token,
    EmailRequest,
    PasswordReset,
    RegisterResponse,
    MessageResponse,
)

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes
BCRYPT_MAX_BYTES = 72

auth_router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login")


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), stored_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def create_access_token(user_id: str, email: str, expires_delta: timedelta = None):
    expire = datetime.utcnow() + (
        expires_delta or timedelta(days=config.ACCESS_TOKEN_EXPIRE_DAYS)
    )
    to_encode = {"sub": user_id, "email": email, "exp": expire}
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_access_token(token: str):
    """Payload of a valid token, or None if it is malformed, tampered or expired."""
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
    if not payload.get("sub"):
        return None
    return payload


def generate_token() -> str:
    return secrets.token_hex(32)


async def get_current_user(
    token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    payload = decode_access_token(token)
    if payload is None:
        raise credentials_exception

    user = db.query(User).filter(User.id == payload["sub"]).first()
    if user is None:
        raise credentials_exception
    return user


def is_admin(db: Session, user: User) -> bool:
    if config.ADMIN_EMAIL:
        return user.email == config.ADMIN_EMAIL
    first = db.query(User).order_by(User.created_at, User.id).first()
    return first is not None and first.id == user.id


async def get_admin_user(
    current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    if not is_admin(db, current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the administrator can manage settings",
        )
    return current_user


def _user_by_email(db: Session, email: str):
    return db.query(User).filter(User.email == email.strip().lower()).first()


def _is_expired(expires_at):
    return expires_at is not None and expires_at < datetime.utcnow()


def create_user(db: Session, email: str, password: str, name: str = None) -> User:
    if _user_by_email(db, email):
        raise HTTPException(status_code=400, detail="Email already registered")

    new_user = User(
        email=email.strip().lower(),
        password_hash=hash_password(password),
        name=name,
        email_verified=False,
        verification_token=generate_token(),
        verification_expires=datetime.utcnow()
        + timedelta(hours=config.VERIFICATION_TOKEN_EXPIRE_HOURS),
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    logger.info(f"Registered user {new_user.id}")
    return new_user


def authenticate_user(db: Session, email: str, password: str) -> Token:
    db_user = _user_by_email(db, email)
    if not db_user or not verify_password(password, db_user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if config.REQUIRE_EMAIL_VERIFICATION and not db_user.email_verified:
        raise HTTPException(
            status_code=401,
            detail="Email not verified. Check your inbox.",
        )

    access_token = create_access_token(db_user.id, db_user.email)
    return Token(access_token=access_token, user=UserOut.model_validate(db_user))


def verify_email(db: Session, token: str) -> User:
    user = db.query(User).filter(User.verification_token == token).first()
    if not user:
        raise HTTPException(status_code=400, detail="Invalid token")
    if _is_expired(user.verification_expires):
        raise HTTPException(
            status_code=400,
            detail="Token expired. Request a new verification email.",
        )
    if user.email_verified:
        raise HTTPException(status_code=400, detail="Email already verified")

    user.email_verified = True
    user.verification_token = None
    user.verification_expires = None
    db.commit()
    logger.info(f"Email verified for user {user.id}")
    return user


def resend_verification(db: Session, email: str) -> User:
    user = _user_by_email(db, email)
    if not user:
        raise HTTPException(status_code=404, detail="Email not found")
    if user.email_verified:
        raise HTTPException(status_code=400, detail="Email already verified")

    user.verification_token = generate_token()
    user.verification_expires = datetime.utcnow() + timedelta(
        hours=config.VERIFICATION_TOKEN_EXPIRE_HOURS
    )
    db.commit()
    return user


def request_password_reset(db: Session, email: str):
    """Issue a reset token. Returns the user, or None when the email is unknown."""
    user = _user_by_email(db, email)
    if not user:
        return None

    user.reset_token = generate_token()
    user.reset_expires = datetime.utcnow() + timedelta(
        hours=config.RESET_TOKEN_EXPIRE_HOURS
    )
    db.commit()
    return user


def _user_by_reset_token(db: Session, token: str) -> User:
    user = db.query(User).filter(User.reset_token == token).first()
    if not user:
        raise HTTPException(status_code=400, detail="Invalid token")
    if _is_expired(user.reset_expires):
        raise HTTPException(
            status_code=400,
            detail="Token expired. Request a new password reset.",
        )
    return user


def verify_reset_token(db: Session, token: str) -> User:
    return _user_by_reset_token(db, token)


def reset_password(db: Session, token: str, new_password: str) -> User:
    user = _user_by_reset_token(db, token)
    user.password_hash = hash_password(new_password)
    user.reset_token = None
    user.reset_expires = None
    db.commit()
    logger.info(f"Password reset for user {user.id}")
    return user


@auth_router.post("/register", response_model=RegisterResponse)
async def register(user: UserCreate, db: Session = Depends(get_db)):
    new_user = create_user(db, user.email, user.password, user.name)

    email_sent = send_verification_email(
        load_email_settings(db),
        new_user.email,
        new_user.verification_token,
        config.BASE_URL,
    )
    if not email_sent:
        # the account exists, the client can use /resend-verification
        logger.error(f"Verification email not sent for user {new_user.id}")

    return RegisterResponse(
        message="Registration complete. Check your email to verify the account.",
        email_sent=email_sent,
    )


@auth_router.get("/verify-email", response_model=MessageResponse)
async def verify_email_route(token: str, db: Session = Depends(get_db)):
    verify_email(db, token)
    return MessageResponse(message="Email verified")


@auth_router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification_route(body: EmailRequest, db: Session = Depends(get_db)):
    user = resend_verification(db, body.email)
    if not send_verification_email(
        load_email_settings(db), user.email, user.verification_token, config.BASE_URL
    ):
        raise HTTPException(
            status_code=500, detail="Could not send the email. Try again later."
        )
    return MessageResponse(message="Verification email sent")


@auth_router.post("/login", response_model=Token)
async def login(user: UserLogin, db: Session = Depends(get_db)):
    return authenticate_user(db, user.email, user.password)


@auth_router.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)):
    return current_user


@auth_router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(body: EmailRequest, db: Session = Depends(get_db)):
    user = request_password_reset(db, body.email)
    if user is not None:
        if not send_password_reset_email(
            load_email_settings(db), user.email, user.reset_token, config.BASE_URL
        ):
            logger.error(f"Password reset email not sent for user {user.id}")

    # same answer whether or not the email is registered
    return MessageResponse(
        message="If the email is registered you will receive a link to reset the password."
    )


@auth_router.get("/verify-reset-token")
async def verify_reset_token_route(token: str, db: Session = Depends(get_db)):
    user = verify_reset_token(db, token)
    return {"valid": True, "email": user.email}


@auth_router.post("/reset-password", response_model=MessageResponse)
async def reset_password_route(body: PasswordReset, db: Session = Depends(get_db)):
    reset_password(db, body.token, body.password)
    return MessageResponse(message="Password updated")
