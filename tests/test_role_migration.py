"""Tests for moving profiles between role tables."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import snapshot
from models.session import EmailToken, UserSession
from models.settings import UserSettings
from models.subject import Subject, TeacherSubject
from models.users import ADMIN, MODERATOR, ROLE_MODELS, STUDENT, TEACHER, Student, Teacher, UserId
from utils import relink
from utils.exceptions import NotFound, ServerError, ValidationError
from utils.role_migration import MigrationState, RoleMigrator, migrate_role
from utils.tokenJWT import decode_token


def _add_session(db, user_id, token="tok"):
    db.add(UserSession(user_id=user_id, token=f"{token}-{user_id}", expires_at=datetime.utcnow() + timedelta(days=1)))
    db.commit()


def _add_subjects(db, teacher_id, *names):
    for name in names:
        subject = db.query(Subject).filter(Subject.name == name).first()
        if subject is None:
            subject = Subject(name=name)
            db.add(subject)
            db.flush()
        db.add(TeacherSubject(teacher_id=teacher_id, subject_id=subject.id))
    db.commit()


def _rows_holding(db, user_id):
    return [model.__tablename__ for model in ROLE_MODELS.values() if db.get(model, user_id) is not None]


@pytest.fixture
def teacher(db, make_user):
    teacher = make_user(TEACHER, login="teacher42", email="t42@example.com", language="kz")
    _add_session(db, teacher.id, "a")
    _add_session(db, teacher.id, "b")
    _add_subjects(db, teacher.id, "Математика", "Физика")
    return teacher


class TestTeacherToStudent:
    def test_profile_moves_to_users_under_a_fresh_id(self, db, teacher):
        old_id = teacher.id
        result = migrate_role(db, old_id, STUDENT)

        assert result.migrated is True
        assert result.state is MigrationState.COMPLETE
        assert result.new_id != old_id
        assert (result.source_table, result.target_table) == ("teachers", "users")

        db.expire_all()
        assert _rows_holding(db, old_id) == []
        assert _rows_holding(db, result.new_id) == ["users"]

        student = db.get(Student, result.new_id)
        assert student.role_id == STUDENT
        assert student.email == "t42@example.com"
        assert student.login == "teacher42"
        assert student.birth_date is not None

    def test_sessions_follow_the_new_id(self, db, teacher):
        old_id = teacher.id
        result = migrate_role(db, old_id, STUDENT)

        assert db.query(UserSession).filter(UserSession.user_id == old_id).count() == 0
        # two relinked sessions plus the one for the reissued token
        assert db.query(UserSession).filter(UserSession.user_id == result.new_id).count() == 3
        assert result.relinked["sessions"] == 2

    def test_settings_are_carried_over(self, db, teacher):
        old_id = teacher.id
        result = migrate_role(db, old_id, STUDENT)

        assert db.query(UserSettings).filter(UserSettings.user_id == old_id).count() == 0
        settings = db.query(UserSettings).filter(UserSettings.user_id == result.new_id).one()
        assert settings.language == "kz"

    def test_teacher_subjects_are_deleted_not_orphaned(self, db, teacher):
        old_id = teacher.id
        result = migrate_role(db, old_id, STUDENT)

        assert db.query(TeacherSubject).filter(TeacherSubject.teacher_id == old_id).count() == 0
        assert db.query(TeacherSubject).filter(TeacherSubject.teacher_id == result.new_id).count() == 0

    def test_new_token_carries_new_identity(self, db, teacher):
        result = migrate_role(db, teacher.id, STUDENT)

        claims = decode_token(result.token)
        assert claims["id"] == result.new_id
        assert claims["role_id"] == STUDENT
        assert claims["table_name"] == "users"
        assert db.query(UserSession).filter(UserSession.token == result.token).count() == 1

    def test_old_id_stays_in_the_ledger(self, db, teacher):
        old_id = teacher.id
        result = migrate_role(db, old_id, STUDENT)
        assert db.get(UserId, old_id) is not None
        assert db.get(UserId, result.new_id) is not None


class TestStudentToTeacher:
    def test_subjects_held_under_old_id_are_copied_forward(self, db, make_user):
        student = make_user(STUDENT, grade=7, grade_letter="А")
        old_id = student.id
        _add_subjects(db, old_id, "История")

        result = migrate_role(db, old_id, TEACHER)

        names = [
            row.subject.name
            for row in db.query(TeacherSubject).filter(TeacherSubject.teacher_id == result.new_id)
        ]
        assert names == ["История"]
        assert db.query(TeacherSubject).filter(TeacherSubject.teacher_id == old_id).count() == 0
        assert isinstance(db.get(Teacher, result.new_id), Teacher)

    def test_every_role_can_be_reached(self, db, make_user):
        profile = make_user(STUDENT)
        current = profile.id
        for role_id in (TEACHER, MODERATOR, ADMIN, STUDENT):
            result = migrate_role(db, current, role_id)
            db.expire_all()
            assert _rows_holding(db, current) == []
            assert _rows_holding(db, result.new_id) == [ROLE_MODELS[role_id].__tablename__]
            current = result.new_id


class TestNoOpAndValidation:
    def test_same_role_changes_nothing(self, db, teacher):
        before = snapshot(db)
        result = migrate_role(db, teacher.id, TEACHER)

        assert result.migrated is False
        assert result.new_id == teacher.id
        assert result.token is None
        assert snapshot(db) == before

    def test_same_table_bump_repairs_role_id(self, db, make_user):
        profile = make_user(STUDENT)
        profile.role_id = TEACHER  # row sits in "users" with a stale role_id
        db.commit()

        result = migrate_role(db, profile.id, STUDENT)
        assert result.migrated is False
        db.expire_all()
        assert db.get(Student, profile.id).role_id == STUDENT

    def test_invalid_role_is_rejected_before_any_change(self, db, teacher):
        before = snapshot(db)
        with pytest.raises(ValidationError):
            migrate_role(db, teacher.id, 7)
        assert snapshot(db) == before

    def test_unknown_user(self, db):
        with pytest.raises(NotFound):
            migrate_role(db, 12345, STUDENT)

    def test_source_table_must_hold_the_user(self, db, teacher):
        with pytest.raises(NotFound):
            migrate_role(db, teacher.id, ADMIN, source_table="users")


class TestRepeatedMigration:
    def test_second_migration_of_old_id_sees_not_found(self, db, teacher):
        old_id = teacher.id
        migrate_role(db, old_id, STUDENT)

        with pytest.raises(NotFound):
            migrate_role(db, old_id, STUDENT)
        with pytest.raises(NotFound):
            migrate_role(db, old_id, ADMIN, source_table="teachers")

    def test_source_deleted_mid_flight_aborts(self, db, teacher, monkeypatch):
        old_id = teacher.id
        original = RoleMigrator._relink

        # Simulate a concurrent migration that removed the source row first
        def racing_relink(self, source, target, target_role_id):
            relinked = original(self, source, target, target_role_id)
            self.db.query(Teacher).filter(Teacher.id == source.id).delete(synchronize_session=False)
            return relinked

        monkeypatch.setattr(RoleMigrator, "_relink", racing_relink)
        before = snapshot(db)

        with pytest.raises(NotFound):
            migrate_role(db, old_id, STUDENT)
        assert snapshot(db) == before


class TestConcurrentRequests:
    def test_second_request_fails_after_first_commits(self, db, session_factory, teacher, monkeypatch):
        old_id = teacher.id
        other = session_factory()
        finished = []
        original = RoleMigrator._locate

        # Request B runs start to finish right after request A located the row
        def locate_then_interleave(self, *args):
            source = original(self, *args)
            if self.db is db:
                finished.append(RoleMigrator(other).migrate(old_id, STUDENT))
            return source

        monkeypatch.setattr(RoleMigrator, "_locate", locate_then_interleave)
        try:
            with pytest.raises(NotFound):
                RoleMigrator(db).migrate(old_id, STUDENT)
        finally:
            other.close()

        winner = finished[0]
        assert winner.migrated is True
        db.expire_all()
        assert [s.id for s in db.query(Student).all()] == [winner.new_id]
        assert db.get(Teacher, old_id) is None
        # two relinked sessions plus the token minted for B
        assert db.query(UserSession).filter(UserSession.user_id == winner.new_id).count() == 3


class TestDuplicateTargetRow:
    def test_stale_target_row_is_removed(self, db, teacher):
        old_id = teacher.id
        # Leftover of an interrupted migration: same id already in "users"
        db.add(Student(
            id=old_id, email="t42@example.com", login="teacher42", password_hash="x",
            role_id=STUDENT, profileCompleted=False, verified=False,
        ))
        db.commit()

        result = migrate_role(db, old_id, STUDENT)

        assert [(s.table_name, s.row_id) for s in result.stale_rows] == [("users", old_id)]
        db.expire_all()
        assert db.query(Student).filter(Student.email == "t42@example.com").count() == 1
        assert _rows_holding(db, old_id) == []
        assert _rows_holding(db, result.new_id) == ["users"]

    def test_named_target_table_is_not_taken_as_source(self, db, teacher):
        old_id = teacher.id
        db.add(Student(
            id=old_id, email="t42@example.com", login="teacher42", password_hash="x",
            role_id=STUDENT, profileCompleted=False, verified=False,
        ))
        db.commit()

        result = migrate_role(db, old_id, STUDENT, source_table="teachers")

        assert result.migrated is True
        db.expire_all()
        assert _rows_holding(db, old_id) == []

    def test_records_of_a_stale_row_under_another_id_are_dropped(self, db, teacher, make_user):
        old_id = teacher.id
        stale = make_user(STUDENT, login="teacher42", email="leftover@example.com")
        stale_id = stale.id
        _add_session(db, stale_id, "stale")

        result = migrate_role(db, old_id, STUDENT)

        assert [(s.table_name, s.row_id) for s in result.stale_rows] == [("users", stale_id)]
        assert db.query(UserSession).filter(UserSession.user_id == stale_id).count() == 0
        assert db.query(UserSettings).filter(UserSettings.user_id == stale_id).count() == 0
        # The migrated user's own records are untouched
        assert db.query(UserSettings).filter(UserSettings.user_id == result.new_id).one().language == "kz"

    def test_legacy_id_missing_from_ledger_is_recorded(self, db):
        # Rows created before the ledger existed have ids unknown to user_ids
        db.add(Teacher(
            id=900, email="legacy@example.com", login="legacy", password_hash="x",
            role_id=TEACHER, profileCompleted=True,
        ))
        db.commit()
        assert db.get(UserId, 900) is None

        result = migrate_role(db, 900, MODERATOR)

        assert db.get(UserId, 900) is not None
        assert result.new_id > 900


class TestAtomicity:
    @pytest.mark.parametrize("step", ["_insert_target", "_relink", "_remove_source"])
    def test_failure_at_any_step_rolls_everything_back(self, db, teacher, monkeypatch, step):
        original = getattr(RoleMigrator, step)

        def failing(self, *args):
            original(self, *args)
            raise SQLAlchemyError(f"injected failure after {step}")

        monkeypatch.setattr(RoleMigrator, step, failing)
        before = snapshot(db)

        migrator = RoleMigrator(db)
        with pytest.raises(ServerError):
            migrator.migrate(teacher.id, STUDENT)

        assert migrator.state is MigrationState.FAILED
        assert snapshot(db) == before

    def test_verification_catches_a_vanished_target(self, db, teacher):
        @relink.relinker("drop_target")
        def drop_target(session, old_id, new_id, source_role_id, target_role_id):
            session.query(Student).filter(Student.id == new_id).delete(synchronize_session=False)
            return 1

        try:
            before = snapshot(db)
            with pytest.raises(ServerError):
                RoleMigrator(db, verify=True).migrate(teacher.id, STUDENT)
            assert snapshot(db) == before
        finally:
            relink.unregister("drop_target")


class TestRelinkRegistry:
    def test_registered_relinker_runs_inside_the_migration(self, db, teacher):
        old_id = teacher.id
        calls = []

        @relink.relinker("audit_probe")
        def probe(session, old_id, new_id, source_role_id, target_role_id):
            calls.append((old_id, new_id, source_role_id, target_role_id))
            return 0

        try:
            result = migrate_role(db, old_id, STUDENT)
        finally:
            relink.unregister("audit_probe")

        assert calls == [(old_id, result.new_id, TEACHER, STUDENT)]
        assert "audit_probe" not in relink.registered()

    def test_builtin_relinkers(self):
        assert relink.registered()[:4] == ["sessions", "user_settings", "teacher_subjects", "email_tokens"]

    def test_same_id_is_a_noop(self, db, teacher):
        before = snapshot(db)
        counts = relink.relink_dependents(db, teacher.id, teacher.id, TEACHER, STUDENT)
        db.commit()
        assert set(counts.values()) == {0}
        assert snapshot(db) == before

    def test_reset_tokens_follow_the_new_id(self, db, teacher):
        db.add(EmailToken(user_id=teacher.id, token="reset", type="password_reset",
                          expires_at=datetime.utcnow() + timedelta(minutes=15)))
        db.commit()

        result = migrate_role(db, teacher.id, STUDENT)
        assert db.query(EmailToken).one().user_id == result.new_id
