# backend/utils/role_migration.py
"""Cross-table role migration.

A profile lives in exactly one role table. Changing its role to one held by
another table moves the row: a fresh id is allocated, the shared columns are
copied into the target table, dependent records are relinked, the source row
is deleted and a new identity token is minted. Everything happens in one
transaction; any failure rolls the database back to its pre-migration state.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.users import ROLE_MODELS, ROLE_NAMES, SHARED_COLUMNS
from utils.exceptions import AccountError, DuplicateTargetRow, NotFound, ServerError, ValidationError
from utils.identity import allocate_id, ensure_id
from utils.relink import purge_dependents, relink_dependents
from utils.role_router import find_user_anywhere, get_profile
from utils.tokenJWT import issue_token

logger = logging.getLogger(__name__)


class MigrationState(str, enum.Enum):
    PENDING = "PENDING"
    SOURCE_LOCATED = "SOURCE_LOCATED"
    TARGET_PREPARED = "TARGET_PREPARED"
    DEPENDENTS_RELINKED = "DEPENDENTS_RELINKED"
    SOURCE_REMOVED = "SOURCE_REMOVED"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


@dataclass
class MigrationResult:
    old_id: int
    new_id: int
    source_table: str
    target_table: str
    target_role_id: int
    # False when the target role lives in the source table (role_id bump only)
    migrated: bool
    token: Optional[str] = None
    relinked: Dict[str, int] = field(default_factory=dict)
    stale_rows: List[DuplicateTargetRow] = field(default_factory=list)
    state: MigrationState = MigrationState.COMPLETE

    @property
    def role(self) -> str:
        return ROLE_NAMES[self.target_role_id]


class RoleMigrator:
    """Moves one profile between role tables.

    With ``verify=True`` the target row is re-read after every step and the
    migration aborts if it went missing. Operator tooling turns this on; the
    HTTP handlers leave it off.
    """

    def __init__(self, db: Session, verify: bool = False, mint_token: bool = True):
        self.db = db
        self.verify = verify
        self.mint_token = mint_token
        self.state = MigrationState.PENDING

    def migrate(self, user_id: int, target_role_id: int, source_table: str = None) -> MigrationResult:
        if target_role_id not in ROLE_MODELS:
            raise ValidationError(f"Invalid role id: {target_role_id}", code="INVALID_ROLE")

        target_model = ROLE_MODELS[target_role_id]
        try:
            source = self._locate(user_id, source_table, target_model)

            if isinstance(source, target_model):
                return self._bump_in_place(source, target_role_id)

            ensure_id(self.db, user_id)
            stale = self._guard_duplicates(source, target_model)
            target = self._insert_target(source, target_model, target_role_id)
            relinked = self._relink(source, target, target_role_id)
            self._remove_source(source, target)
            token = issue_token(self.db, target) if self.mint_token else None

            self.db.commit()
        except AccountError:
            self._fail()
            raise
        except SQLAlchemyError as exc:
            self._fail()
            logger.exception("Role migration of user %s failed", user_id)
            raise ServerError("Role migration failed") from exc

        self.state = MigrationState.COMPLETE
        logger.info(
            "Migrated user %s (%s) to %s as %s",
            user_id, source.__tablename__, target_model.__tablename__, target.id,
        )
        return MigrationResult(
            old_id=user_id,
            new_id=target.id,
            source_table=source.__tablename__,
            target_table=target_model.__tablename__,
            target_role_id=target_role_id,
            migrated=True,
            token=token,
            relinked=relinked,
            stale_rows=stale,
        )

    # Step 1: read and lock the source row
    def _locate(self, user_id, source_table, target_model):
        if source_table:
            source = get_profile(self.db, user_id, source_table, for_update=True)
        else:
            # A copy already in the target table is a leftover, never the source
            source = find_user_anywhere(self.db, user_id, for_update=True, avoid_table=target_model.__tablename__)
        self.state = MigrationState.SOURCE_LOCATED
        return source

    def _bump_in_place(self, source, target_role_id):
        if source.role_id != target_role_id:
            source.role_id = target_role_id
        self.db.commit()
        self.state = MigrationState.COMPLETE
        return MigrationResult(
            old_id=source.id,
            new_id=source.id,
            source_table=source.__tablename__,
            target_table=source.__tablename__,
            target_role_id=target_role_id,
            migrated=False,
        )

    # Step 2: leftovers of an interrupted migration would collide with the new row
    def _guard_duplicates(self, source, target_model):
        stale_rows = (
            self.db.query(target_model)
            .filter(or_(
                target_model.id == source.id,
                target_model.email == source.email,
                target_model.login == source.login,
            ))
            .all()
        )
        found = []
        for row in stale_rows:
            duplicate = DuplicateTargetRow(target_model.__tablename__, row.id)
            logger.warning("%s; removing it before migrating user %s", duplicate, source.id)
            found.append(duplicate)
            if row.id != source.id:
                # Records owned by the discarded id would be left pointing at nothing
                purged = purge_dependents(self.db, row.id)
                logger.warning("Dropped records of stale user %s: %s", row.id, purged)
            self.db.delete(row)
        if stale_rows:
            self.db.flush()
        return found

    # Step 3: copy the shared columns under a freshly allocated id
    def _insert_target(self, source, target_model, target_role_id):
        new_id = allocate_id(self.db)
        values = {column: getattr(source, column) for column in SHARED_COLUMNS}
        target = target_model(id=new_id, role_id=target_role_id, **values)
        self.db.add(target)
        self.db.flush()
        self.state = MigrationState.TARGET_PREPARED
        self._check_target(target, "insert")
        return target

    # Step 4
    def _relink(self, source, target, target_role_id):
        relinked = relink_dependents(self.db, source.id, target.id, source.role_id, target_role_id)
        self.state = MigrationState.DEPENDENTS_RELINKED
        self._check_target(target, "relink")
        return relinked

    # Step 5
    def _remove_source(self, source, target):
        model = type(source)
        deleted = self.db.query(model).filter(model.id == source.id).delete(synchronize_session=False)
        if deleted != 1:
            # Another transaction moved or removed the row after we located it
            raise NotFound(source.id)
        self.db.expunge(source)
        self.state = MigrationState.SOURCE_REMOVED
        self._check_target(target, "remove")

    def _check_target(self, target, step):
        if not self.verify:
            return
        model = type(target)
        found = self.db.query(model.id).filter(model.id == target.id).first()
        logger.debug("Verification after %s: %s in %s -> %s", step, target.id, model.__tablename__, found)
        if found is None:
            raise ServerError(f"User {target.id} missing from {model.__tablename__} after {step}")

    def _fail(self):
        self.state = MigrationState.FAILED
        self.db.rollback()


def migrate_role(db: Session, user_id: int, target_role_id: int, **kwargs) -> MigrationResult:
    source_table = kwargs.pop("source_table", None)
    return RoleMigrator(db, **kwargs).migrate(user_id, target_role_id, source_table=source_table)
