# backend/utils/role_router.py
from typing import Iterable, List

from sqlalchemy import func, literal, or_, select, union_all
from sqlalchemy.orm import Session

from models.users import ROLE_MODELS, TABLE_MODELS
from utils.exceptions import NotFound

# Probe order matches the historical UNION: users, teachers, moders, admins
PROBE_ORDER = ("users", "teachers", "moders", "admins")


def _locate(db: Session, criteria):
    """Return (table_name, id) pairs matching ``criteria(model)`` in probe order."""
    selects = [
        select(literal(name).label("table_name"), TABLE_MODELS[name].id.label("id"), literal(pos).label("pos"))
        .where(criteria(TABLE_MODELS[name]))
        for pos, name in enumerate(PROBE_ORDER)
    ]
    query = union_all(*selects).subquery()
    return db.execute(select(query.c.table_name, query.c.id).order_by(query.c.pos)).all()


def get_profile(db: Session, user_id: int, table_name: str, for_update: bool = False):
    model = TABLE_MODELS.get(table_name)
    if model is None:
        raise NotFound(user_id, f"Unknown role table: {table_name}")
    query = db.query(model).filter(model.id == user_id)
    if for_update:
        query = query.with_for_update()
    profile = query.first()
    if profile is None:
        raise NotFound(user_id)
    return profile


# Resolve an id to its live row, whichever role table currently holds it
def find_user_anywhere(db: Session, user_id: int, for_update: bool = False, avoid_table: str = None):
    """Return the profile row for ``user_id``.

    An interrupted migration can leave the same id in two tables. When
    ``avoid_table`` is given (the migration target), a match in any other
    table wins over the copy sitting in ``avoid_table``.
    """
    matches = _locate(db, lambda model: model.id == user_id)
    if not matches:
        raise NotFound(user_id)
    preferred = [row for row in matches if row.table_name != avoid_table]
    table_name = (preferred or matches)[0].table_name
    return get_profile(db, user_id, table_name, for_update=for_update)


def find_by_identifier(db: Session, identifier: str):
    """Look a profile up by email or login across all role tables; None if absent."""
    normalized = identifier.strip()
    matches = _locate(
        db,
        lambda model: or_(func.lower(model.email) == normalized.lower(), model.login == normalized),
    )
    if not matches:
        return None
    row = matches[0]
    return get_profile(db, row.id, row.table_name)


def email_taken(db: Session, email: str) -> bool:
    return bool(_locate(db, lambda model: func.lower(model.email) == email.strip().lower()))


def login_taken(db: Session, login: str) -> bool:
    return bool(_locate(db, lambda model: model.login == login))


def list_profiles(db: Session, role_ids: Iterable[int]) -> List:
    profiles = []
    for role_id in sorted(role_ids, reverse=True):
        model = ROLE_MODELS[role_id]
        profiles.extend(db.query(model).order_by(model.id).all())
    return profiles
