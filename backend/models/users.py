# backend/models/users.py
from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, SmallInteger, String
from sqlalchemy.orm import declared_attr

from database import Base

ADMIN, MODERATOR, TEACHER, STUDENT = 1, 2, 3, 4

ROLE_NAMES = {ADMIN: "admin", MODERATOR: "moderator", TEACHER: "teacher", STUDENT: "student"}
ROLE_IDS = {name: role_id for role_id, name in ROLE_NAMES.items()}


# Ledger of every user id ever issued; rows are never deleted or reused
class UserId(Base):
    __tablename__ = "user_ids"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)


# Columns shared by the four role tables. Primary keys come from user_ids,
# never from the role table itself.
class RoleProfileMixin:
    @declared_attr
    def id(cls):
        return Column(Integer, ForeignKey("user_ids.id"), primary_key=True, autoincrement=False)

    email = Column(String(255), nullable=False, unique=True, index=True)
    login = Column(String(64), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role_id = Column(SmallInteger, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    patronymic = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    birth_date = Column(Date, nullable=True)
    profileCompleted = Column(Boolean, nullable=False, default=False)

    @property
    def role(self) -> str:
        return ROLE_NAMES.get(self.role_id, "student")

    @property
    def table_name(self) -> str:
        return self.__tablename__


# Students keep the historical "users" table name
class Student(RoleProfileMixin, Base):
    __tablename__ = "users"

    grade = Column(SmallInteger, nullable=True)
    grade_letter = Column(String(1), nullable=True)
    verified = Column(Boolean, nullable=False, default=False)


class Teacher(RoleProfileMixin, Base):
    __tablename__ = "teachers"


class Moderator(RoleProfileMixin, Base):
    __tablename__ = "moders"


class Admin(RoleProfileMixin, Base):
    __tablename__ = "admins"


ROLE_MODELS = {ADMIN: Admin, MODERATOR: Moderator, TEACHER: Teacher, STUDENT: Student}
TABLE_MODELS = {model.__tablename__: model for model in ROLE_MODELS.values()}

# Columns copied verbatim when a profile moves between role tables
SHARED_COLUMNS = (
    "email", "login", "password_hash", "first_name", "last_name",
    "patronymic", "phone", "birth_date", "profileCompleted",
)