# backend/utils/identity.py
from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from models.users import UserId

# Issue a brand new id from the ledger. The caller owns the transaction.
def allocate_id(db: Session) -> int:
    row = UserId()
    db.add(row)
    db.flush()
    return row.id

# Record that user_id was issued. Inserting an id that is already in the
# ledger is a success, not an error. Returns True when a row was added.
def ensure_id(db: Session, user_id: int) -> bool:
    dialect = db.get_bind().dialect.name

    if dialect == "sqlite":
        stmt = sqlite_insert(UserId).values(id=user_id).on_conflict_do_nothing()
    elif dialect == "postgresql":
        stmt = pg_insert(UserId).values(id=user_id).on_conflict_do_nothing()
    elif dialect in ("mysql", "mariadb"):
        stmt = insert(UserId).values(id=user_id).prefix_with("IGNORE")
    else:
        if db.get(UserId, user_id) is not None:
            return False
        db.add(UserId(id=user_id))
        db.flush()
        return True

    result = db.execute(stmt)
    return bool(result.rowcount)
