# backend/routes/auth.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from models.settings import UserSettings
from models.users import STUDENT, Student
from schemas import user as schemas
from utils.audit import client_ip, write_log
from utils.exceptions import ServerError
from utils.hashing import get_password_hash, verify_password
from utils.identity import allocate_id
from utils.role_router import email_taken, find_by_identifier, login_taken
from utils.tokenJWT import issue_token, set_token_cookie

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


def _auth_payload(message: str, profile, token: str) -> dict:
    return {
        "message": message,
        "userId": profile.id,
        "role": profile.role,
        "table_name": profile.table_name,
        "profileCompleted": bool(profile.profileCompleted),
        "token": token,
    }


# Register a new student account
@router.post("/register", response_model=schemas.AuthResponse)
def register(payload: schemas.RegisterRequest, response: Response, request: Request, db: Session = Depends(get_db)):
    # Email and login are unique across every role table
    if email_taken(db, payload.email):
        write_log(db, user_id=None, action="REGISTER", resource="auth", status="FAIL",
                  ip=client_ip(request), meta={"email": payload.email, "reason": "Email exists"})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    if login_taken(db, payload.login):
        write_log(db, user_id=None, action="REGISTER", resource="auth", status="FAIL",
                  ip=client_ip(request), meta={"login": payload.login, "reason": "Login exists"})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Login already taken")

    try:
        new_user = Student(
            id=allocate_id(db),
            email=payload.email,
            login=payload.login,
            password_hash=get_password_hash(payload.password),
            role_id=STUDENT,
            first_name="",
            last_name="",
            verified=False,
            profileCompleted=False,
        )
        db.add(new_user)
        db.add(UserSettings(user_id=new_user.id, language=settings.DEFAULT_LANGUAGE))
        db.flush()
        token = issue_token(db, new_user)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Registration of %s failed", payload.email)
        raise ServerError("Registration failed") from exc

    write_log(db, user_id=new_user.id, action="REGISTER", resource="auth",
              ip=client_ip(request), meta={"email": new_user.email})

    set_token_cookie(response, token)
    return _auth_payload("Registration successful", new_user, token)


# Authenticate by email or login and issue a JWT
@router.post("/login", response_model=schemas.AuthResponse)
def login(payload: schemas.LoginRequest, response: Response, request: Request, db: Session = Depends(get_db)):
    db_user = find_by_identifier(db, payload.identifier)

    # Validate credentials and log failure on error
    if db_user is None or not verify_password(payload.password, db_user.password_hash):
        write_log(db, user_id=(db_user.id if db_user else None), action="LOGIN", resource="auth",
                  status="FAIL", ip=client_ip(request), meta={"identifier": payload.identifier})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = issue_token(db, db_user)
    db.commit()

    write_log(db, user_id=db_user.id, action="LOGIN", resource="auth",
              ip=client_ip(request), meta={"table_name": db_user.table_name})

    set_token_cookie(response, token)
    return _auth_payload("Login successful", db_user, token)
