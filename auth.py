"""
Account credentials: password hashing, email OTP issue and consumption,
admin access tokens and the admin authorization check.

OTP consumption is a single conditional update (code, expiry and state are
all part of the filter), so a code can only ever be spent once even when
requests race.
"""
import logging
import os
import secrets
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, utcnow
from errors import (
    AlreadyRegistered,
    InvalidCredentials,
    InvalidOrExpiredOtp,
    MissingCredential,
    NotFound,
    ProtectedRecord,
    Unauthorized,
)
from mailer import OTP_BODY, OTP_SUBJECT, RESET_BODY, RESET_SUBJECT, Mailer
from schemas import Admin

# Environment / Auth settings
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 10))
OTP_EXPIRE_MINUTES = int(os.getenv("OTP_EXPIRE_MINUTES", 15))

OTP_MIN = 100000
OTP_MAX = 999999

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)

logger = logging.getLogger(__name__)


# Passwords
def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        # keep unknown accounts as slow as wrong passwords
        pwd_context.dummy_verify()
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def generate_unique_id() -> str:
    return str(uuid.uuid4())


# Admin access tokens
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> str:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid or expired token")
    unique_id = payload.get("sub")
    if not unique_id:
        raise Unauthorized("Invalid or expired token")
    return unique_id


# OTP
def generate_otp() -> str:
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def _otp_fields():
    issued_at = utcnow()
    return generate_otp(), issued_at + timedelta(minutes=OTP_EXPIRE_MINUTES)


def _live_otp_filter(email: str, code: str) -> Dict[str, Any]:
    # a cleared otp is null and never equals a supplied string
    return {"email": email, "otp": code, "otpExpiry": {"$gt": utcnow()}}


def request_otp(db: Database, mailer: Mailer, email: str) -> None:
    """Issue a registration code for `email` and mail it.

    Creates a bare unverified user on first request. The code is stored before
    dispatch; if delivery fails the stored code stays and a resend overwrites it.
    """
    users = db["user"]
    if users.find_one({"email": email, "isVerified": True}):
        raise AlreadyRegistered()

    otp, expiry = _otp_fields()
    update = {
        "$set": {"otp": otp, "otpExpiry": expiry, "updatedAt": utcnow()},
        "$setOnInsert": {"favorites": [], "createdAt": utcnow()},
    }
    try:
        users.update_one({"email": email, "isVerified": False}, update, upsert=True)
    except DuplicateKeyError:
        # either verified in the meantime or a concurrent first request won the insert
        if users.find_one({"email": email, "isVerified": True}):
            raise AlreadyRegistered()
        users.update_one({"email": email, "isVerified": False}, {"$set": update["$set"]})

    logger.info("Registration OTP issued for %s", email)
    mailer.send_mail(email, OTP_SUBJECT, OTP_BODY.format(otp=otp, minutes=OTP_EXPIRE_MINUTES))


def verify_and_register(db: Database, email: str, otp: str, password: str) -> Dict[str, Any]:
    password_hash = get_password_hash(password)
    unique_id = generate_unique_id()

    query = _live_otp_filter(email, otp)
    query["isVerified"] = False
    user = db["user"].find_one_and_update(
        query,
        {"$set": {
            "passwordHash": password_hash,
            "uniqueId": unique_id,
            "isVerified": True,
            "otp": None,
            "otpExpiry": None,
            "updatedAt": utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if user is None:
        if not db["user"].find_one({"email": email}):
            raise NotFound("User not found")
        raise InvalidOrExpiredOtp()

    logger.info("User %s verified", email)
    return user


def request_password_reset(db: Database, mailer: Mailer, email: str) -> None:
    otp, expiry = _otp_fields()
    # only verified accounts have a password to reset
    result = db["user"].update_one(
        {"email": email, "isVerified": True},
        {"$set": {"otp": otp, "otpExpiry": expiry, "updatedAt": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFound("User not found")

    logger.info("Password reset OTP issued for %s", email)
    mailer.send_mail(email, RESET_SUBJECT, RESET_BODY.format(otp=otp, minutes=OTP_EXPIRE_MINUTES))


def reset_password(db: Database, email: str, otp: str, new_password: str) -> None:
    password_hash = get_password_hash(new_password)
    query = _live_otp_filter(email, otp)
    query["isVerified"] = True
    user = db["user"].find_one_and_update(
        query,
        {"$set": {"passwordHash": password_hash, "otp": None, "otpExpiry": None, "updatedAt": utcnow()}},
    )
    if user is None:
        if not db["user"].find_one({"email": email, "isVerified": True}):
            raise NotFound("User not found")
        raise InvalidOrExpiredOtp()


# Logins
def user_login(db: Database, email: str, password: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email})
    ok = verify_password(password, user.get("passwordHash") if user else None)
    if not ok or not user.get("isVerified"):
        raise InvalidCredentials()
    return user


def admin_login(db: Database, email: str, password: str) -> Dict[str, Any]:
    admin = db["admin"].find_one({"email": email})
    if not verify_password(password, admin.get("passwordHash") if admin else None):
        raise InvalidCredentials()
    return admin


# Admin records
def register_admin(db: Database, email: str, password: str, is_top_admin: bool = False) -> Dict[str, Any]:
    if is_top_admin and db["admin"].find_one({"isTopAdmin": True}):
        raise AlreadyRegistered("Top admin already registered")

    admin = Admin(
        email=email,
        passwordHash=get_password_hash(password),
        uniqueId=generate_unique_id(),
        isTopAdmin=is_top_admin,
        createdAt=utcnow(),
    )
    try:
        create_document(db, "admin", admin)
    except DuplicateKeyError:
        raise AlreadyRegistered("Email already registered")
    logger.info("Admin %s registered (top=%s)", email, is_top_admin)
    return admin.model_dump()


def authorize(db: Database, claimed_unique_id: Optional[str]) -> Dict[str, Any]:
    if not claimed_unique_id:
        raise MissingCredential()
    admin = db["admin"].find_one({"uniqueId": claimed_unique_id})
    if not admin:
        raise Unauthorized()
    return admin


def ensure_not_protected(db: Database, target_unique_id: str, action: str = "modify") -> None:
    top_admin = db["admin"].find_one({"isTopAdmin": True})
    if top_admin and top_admin.get("uniqueId") == target_unique_id:
        logger.warning("Rejected attempt to %s the top admin", action)
        raise ProtectedRecord(f"Cannot {action} top admin")
