# backend/routes/users.py
import logging
from datetime import datetime, timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from models.session import EmailToken, UserSession
from models.settings import UserSettings
from models.subject import Subject, TeacherSubject
from models.users import ADMIN, MODERATOR, ROLE_MODELS, ROLE_NAMES, STUDENT, TEACHER, Student, Teacher
from schemas import user as schemas
from utils.audit import client_ip, write_log
from utils.exceptions import AccountError, Unauthorized, ValidationError
from utils.hashing import get_password_hash, verify_password
from utils.role_migration import migrate_role
from utils.role_router import find_by_identifier, find_user_anywhere, list_profiles, login_taken
from utils.tokenJWT import AuthContext, create_access_token, get_current_user, require_moderator, set_token_cookie

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])

LANGUAGES = ("ru", "kz")

# Roles a user may switch themselves to: never upwards
SELF_SERVICE_TARGETS = {
    STUDENT: {TEACHER},
    TEACHER: {STUDENT},
    MODERATOR: {TEACHER, STUDENT},
    ADMIN: {MODERATOR, TEACHER, STUDENT},
}


def _teacher_subjects(db: Session, teacher_id: int) -> List[str]:
    rows = (
        db.query(Subject.name)
        .join(TeacherSubject, TeacherSubject.subject_id == Subject.id)
        .filter(TeacherSubject.teacher_id == teacher_id)
        .order_by(Subject.name)
        .all()
    )
    return [row.name for row in rows]


def _language(db: Session, user_id: int) -> str:
    row = db.query(UserSettings).filter(UserSettings.user_id == user_id).first()
    return row.language if row else settings.DEFAULT_LANGUAGE


def _migrate(db: Session, request: Request, response: Response, current_user: AuthContext,
             user_id: int, new_role_id: int, source_table: str = None) -> dict:
    try:
        result = migrate_role(db, user_id, new_role_id, source_table=source_table)
    except AccountError as exc:
        write_log(db, user_id=current_user.id, action="ROLE_CHANGE", resource="users", status="FAIL",
                  ip=client_ip(request), meta={"target": user_id, "newRoleId": new_role_id, "error": exc.message})
        raise

    write_log(db, user_id=current_user.id, action="ROLE_CHANGE", resource="users", ip=client_ip(request),
              meta={"target": user_id, "newUserId": result.new_id, "newRoleId": new_role_id,
                    "from": result.source_table, "to": result.target_table})

    if not result.migrated:
        return {"message": f"User role updated to {result.role}"}

    # The caller's own identity moved: hand them the fresh credential
    if user_id == current_user.id:
        set_token_cookie(response, result.token)
    return {"message": "User role updated, sign in with the new token", "newUserId": result.new_id, "token": result.token}


# List accounts visible to the caller (admins see everyone)
@router.get("/list", response_model=List[schemas.UserListItem])
def list_users(db: Session = Depends(get_db), current_user: AuthContext = Depends(require_moderator)):
    if current_user.role_id == ADMIN:
        role_ids = ROLE_MODELS.keys()
    else:
        role_ids = (TEACHER, STUDENT)
    return list_profiles(db, role_ids)


@router.get("/profile", response_model=schemas.ProfileResponse)
def get_profile(db: Session = Depends(get_db), current_user: AuthContext = Depends(get_current_user)):
    profile = current_user.profile
    data = {column: getattr(profile, column) for column in (
        "id", "email", "login", "role_id", "first_name", "last_name",
        "patronymic", "phone", "birth_date", "profileCompleted",
    )}
    if isinstance(profile, Student):
        data["grade"] = profile.grade
        data["grade_letter"] = profile.grade_letter
    if isinstance(profile, Teacher):
        data["subject"] = _teacher_subjects(db, profile.id)
    data["language"] = _language(db, profile.id)
    return data


# Update the caller's profile; a different role_id moves the account to another role table
@router.put("/profile", response_model=schemas.RoleChangeResponse, response_model_exclude_none=True)
def update_profile(
    payload: schemas.ProfileUpdate,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    current_user: AuthContext = Depends(get_current_user),
):
    if payload.role_id is not None and payload.role_id != current_user.role_id:
        if payload.role_id not in ROLE_MODELS:
            raise ValidationError("Invalid new role", code="INVALID_ROLE")
        if payload.role_id not in SELF_SERVICE_TARGETS.get(current_user.role_id, set()):
            raise Unauthorized(
                f"A {current_user.role} cannot switch themselves to {ROLE_NAMES[payload.role_id]}",
                code="ROLE_CHANGE_FORBIDDEN",
            )
        return _migrate(db, request, response, current_user, current_user.id, payload.role_id,
                        source_table=current_user.table_name)

    profile = current_user.profile
    if payload.login is not None and payload.login != profile.login and login_taken(db, payload.login):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Login already taken")

    # Only provided fields change
    for column in ("first_name", "last_name", "patronymic", "login", "phone", "birth_date"):
        value = getattr(payload, column)
        if value is not None:
            setattr(profile, column, value)
    if isinstance(profile, Student):
        if payload.grade is not None:
            profile.grade = payload.grade
        if payload.grade_letter is not None:
            profile.grade_letter = payload.grade_letter
    profile.profileCompleted = True

    if isinstance(profile, Teacher) and payload.subject is not None:
        db.query(TeacherSubject).filter(TeacherSubject.teacher_id == profile.id).delete(synchronize_session=False)
        subjects = db.query(Subject).filter(Subject.name.in_(set(payload.subject))).all()
        for subject in subjects:
            db.add(TeacherSubject(teacher_id=profile.id, subject_id=subject.id))

    db.commit()
    write_log(db, user_id=current_user.id, action="PROFILE_UPDATE", resource="users", ip=client_ip(request),
              meta={"fields": sorted(payload.model_dump(exclude_none=True).keys())})
    return {"message": "Profile updated"}


@router.get("/check-profile")
def check_profile(db: Session = Depends(get_db), current_user: AuthContext = Depends(get_current_user)):
    profile = current_user.profile
    result = {"profileCompleted": bool(profile.profileCompleted)}
    if isinstance(profile, Teacher):
        result["subject"] = bool(_teacher_subjects(db, profile.id))
    if isinstance(profile, Student):
        result["grade"] = profile.grade
        result["grade_letter"] = profile.grade_letter
    return result


@router.get("/role")
def get_role(db: Session = Depends(get_db), current_user: AuthContext = Depends(get_current_user)):
    profile = find_user_anywhere(db, current_user.id)
    return {"role": profile.role}


@router.put("/change-password", response_model=schemas.Message)
def change_password(
    payload: schemas.ChangePassword,
    request: Request,
    db: Session = Depends(get_db),
    current_user: AuthContext = Depends(get_current_user),
):
    if payload.newPassword != payload.confirmPassword:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="New password and confirmation do not match")

    profile = current_user.profile
    if not verify_password(payload.oldPassword, profile.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Old password is incorrect")

    profile.password_hash = get_password_hash(payload.newPassword)
    db.commit()
    write_log(db, user_id=current_user.id, action="PASSWORD_CHANGE", resource="users", ip=client_ip(request))
    return {"message": "Password changed"}


@router.put("/change-language", response_model=schemas.Message)
def change_language(
    payload: schemas.ChangeLanguage,
    db: Session = Depends(get_db),
    current_user: AuthContext = Depends(get_current_user),
):
    if payload.language not in LANGUAGES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown language. Available: 'ru', 'kz'")

    row = db.query(UserSettings).filter(UserSettings.user_id == current_user.id).first()
    if row is None:
        db.add(UserSettings(user_id=current_user.id, language=payload.language))
    else:
        row.language = payload.language
    db.commit()
    return {"message": "Language changed"}


# Change another account's role (admins and moderators)
@router.api_route("/update-role", methods=["POST", "PUT"], response_model=schemas.RoleChangeResponse,
                  response_model_exclude_none=True)
def update_role(
    payload: schemas.RoleUpdate,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    current_user: AuthContext = Depends(require_moderator),
):
    if payload.newRoleId not in ROLE_MODELS:
        raise ValidationError("Invalid user id or role", code="INVALID_ROLE")

    target = find_user_anywhere(db, payload.userId, avoid_table=ROLE_MODELS[payload.newRoleId].__tablename__)

    if current_user.role_id == MODERATOR:
        if target.role_id in (ADMIN, MODERATOR):
            raise Unauthorized("You are not allowed to edit this user")
        if payload.newRoleId == ADMIN:
            raise Unauthorized("Only administrators can grant the admin role")

    return _migrate(db, request, response, current_user, payload.userId, payload.newRoleId,
                    source_table=target.table_name)


@router.post("/forgot-password", response_model=schemas.Message)
def forgot_password(payload: schemas.ForgotPassword, db: Session = Depends(get_db)):
    profile = find_by_identifier(db, payload.email)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    expires_delta = timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES)
    reset_token = create_access_token(
        {"id": profile.id, "email": profile.email, "purpose": "password_reset"},
        expires_delta=expires_delta,
    )

    db.query(EmailToken).filter(
        EmailToken.user_id == profile.id, EmailToken.type == "password_reset"
    ).delete(synchronize_session=False)
    db.add(EmailToken(user_id=profile.id, token=reset_token, type="password_reset",
                      expires_at=datetime.utcnow() + expires_delta))
    db.commit()

    # Delivery is handled outside this service
    logger.info("Password reset token issued for user %s", profile.id)
    return {"message": "A password reset link has been sent to your email."}


@router.post("/reset-password", response_model=schemas.Message)
def reset_password(payload: schemas.ResetPassword, request: Request, db: Session = Depends(get_db)):
    record = (
        db.query(EmailToken)
        .filter(
            EmailToken.token == payload.token,
            EmailToken.type == "password_reset",
            EmailToken.expires_at > datetime.utcnow(),
        )
        .first()
    )
    if record is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token is invalid or expired")

    user_id = record.user_id
    profile = find_user_anywhere(db, user_id)
    profile.password_hash = get_password_hash(payload.newPassword)

    db.query(EmailToken).filter(
        EmailToken.user_id == user_id, EmailToken.type == "password_reset"
    ).delete(synchronize_session=False)
    # Every device has to sign in again
    db.query(UserSession).filter(UserSession.user_id == user_id).delete(synchronize_session=False)
    db.commit()

    write_log(db, user_id=user_id, action="PASSWORD_RESET", resource="users", ip=client_ip(request))
    return {"message": "Password changed. Please sign in again."}


@router.get("/subjects", response_model=List[str])
def list_subjects(db: Session = Depends(get_db), current_user: AuthContext = Depends(get_current_user)):
    names = [row.name for row in db.query(Subject.name).order_by(Subject.name).all()]
    if not names:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No subjects found")
    return names
