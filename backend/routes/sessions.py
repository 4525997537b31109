# backend/routes/sessions.py
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import get_db
from models.session import UserSession
from utils.audit import client_ip, write_log
from utils.tokenJWT import AuthContext, bearer_scheme, clear_token_cookie, get_current_user, COOKIE_NAME

router = APIRouter(prefix="/sessions", tags=["Sessions"])


# Log out the current device; succeeds even without a valid token
@router.post("/logout")
def logout(
    response: Response,
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
):
    token = credentials.credentials if credentials else request.cookies.get(COOKIE_NAME)
    if token:
        owner = db.query(UserSession.user_id).filter(UserSession.token == token).first()
        db.query(UserSession).filter(UserSession.token == token).delete(synchronize_session=False)
        db.commit()
        if owner is not None:
            write_log(db, user_id=owner.user_id, action="LOGOUT", resource="sessions", ip=client_ip(request))

    clear_token_cookie(response)
    return {"message": "Logged out"}


# Terminate every session of the caller
@router.post("/logout-all")
def logout_all(
    response: Response,
    request: Request,
    db: Session = Depends(get_db),
    current_user: AuthContext = Depends(get_current_user),
):
    removed = (
        db.query(UserSession)
        .filter(UserSession.user_id == current_user.id)
        .delete(synchronize_session=False)
    )
    db.commit()
    write_log(db, user_id=current_user.id, action="LOGOUT", resource="sessions",
              ip=client_ip(request), meta={"all": True, "sessions": removed})

    clear_token_cookie(response)
    return {"message": "All sessions terminated"}
