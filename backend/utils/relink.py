# backend/utils/relink.py
"""Dependent-record relinkers.

Tables that reference a user id register a relinker here. A role migration
calls every registered relinker inside its transaction, so a new dependent
table only needs a new ``@relinker`` function.
"""

import logging
from typing import Callable, Dict, List, Tuple

from sqlalchemy.orm import Session

from models.session import EmailToken, UserSession
from models.settings import UserSettings
from models.subject import TeacherSubject
from models.users import TEACHER

logger = logging.getLogger(__name__)

# fn(db, old_id, new_id, source_role_id, target_role_id) -> rows touched
Relinker = Callable[[Session, int, int, int, int], int]

_registry: List[Tuple[str, Relinker]] = []


def relinker(name: str):
    """Register a relinker under ``name``; later registrations with the same name replace it."""
    def decorator(fn: Relinker) -> Relinker:
        unregister(name)
        _registry.append((name, fn))
        return fn
    return decorator


def unregister(name: str) -> None:
    _registry[:] = [(n, fn) for n, fn in _registry if n != name]


def registered() -> List[str]:
    return [name for name, _ in _registry]


def relink_dependents(db: Session, old_id: int, new_id: int, source_role_id: int, target_role_id: int) -> Dict[str, int]:
    if old_id == new_id:
        return {name: 0 for name, _ in _registry}

    counts = {}
    for name, fn in list(_registry):
        counts[name] = fn(db, old_id, new_id, source_role_id, target_role_id)
        logger.debug("Relinked %s: %s -> %s (%d rows)", name, old_id, new_id, counts[name])
    return counts


@relinker("sessions")
def relink_sessions(db, old_id, new_id, source_role_id, target_role_id):
    return (
        db.query(UserSession)
        .filter(UserSession.user_id == old_id)
        .update({UserSession.user_id: new_id}, synchronize_session=False)
    )


@relinker("user_settings")
def relink_settings(db, old_id, new_id, source_role_id, target_role_id):
    # user_id is unique: copy onto the new id, then drop the old row
    old = db.query(UserSettings).filter(UserSettings.user_id == old_id).first()
    if old is None:
        return 0
    existing = db.query(UserSettings).filter(UserSettings.user_id == new_id).first()
    if existing is None:
        db.add(UserSettings(user_id=new_id, language=old.language))
    else:
        existing.language = old.language
    db.delete(old)
    db.flush()
    return 1


@relinker("teacher_subjects")
def relink_teacher_subjects(db, old_id, new_id, source_role_id, target_role_id):
    old_rows = db.query(TeacherSubject).filter(TeacherSubject.teacher_id == old_id).all()
    touched = 0

    if target_role_id == TEACHER:
        have = {
            row.subject_id
            for row in db.query(TeacherSubject).filter(TeacherSubject.teacher_id == new_id)
        }
        for row in old_rows:
            if row.subject_id not in have:
                db.add(TeacherSubject(teacher_id=new_id, subject_id=row.subject_id))
                touched += 1

    # The old id stops being a teacher either way, so its rows go
    for row in old_rows:
        db.delete(row)
    db.flush()
    return touched + len(old_rows)


@relinker("email_tokens")
def relink_email_tokens(db, old_id, new_id, source_role_id, target_role_id):
    return (
        db.query(EmailToken)
        .filter(EmailToken.user_id == old_id)
        .update({EmailToken.user_id: new_id}, synchronize_session=False)
    )


# Rows owned by an id that is being discarded outright
DEPENDENT_COLUMNS = (
    UserSession.user_id,
    UserSettings.user_id,
    TeacherSubject.teacher_id,
    EmailToken.user_id,
)


def purge_dependents(db: Session, user_id: int) -> Dict[str, int]:
    counts = {}
    for column in DEPENDENT_COLUMNS:
        model = column.class_
        counts[model.__tablename__] = (
            db.query(model).filter(column == user_id).delete(synchronize_session=False)
        )
    return counts
