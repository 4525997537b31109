# backend/seed_db.py
import click
from sqlalchemy.orm import Session

from config import settings
from database import SessionLocal, init_db
from models.settings import UserSettings
from models.subject import Subject
from models.users import ADMIN, Admin
from utils.hashing import get_password_hash
from utils.identity import allocate_id
from utils.role_router import email_taken, login_taken

# Subject catalogue offered to teachers
DEFAULT_SUBJECTS = (
    "Математика",
    "Русский язык",
    "Казахский язык",
    "Английский язык",
    "История",
    "География",
    "Биология",
    "Физика",
    "Химия",
    "Информатика",
)


def seed_subjects(db: Session, names=DEFAULT_SUBJECTS) -> int:
    """Insert missing subjects; returns how many were added."""
    existing = {row.name for row in db.query(Subject.name).all()}
    to_add = [Subject(name=name) for name in names if name not in existing]
    db.add_all(to_add)
    db.commit()
    return len(to_add)


def create_admin(db: Session, email: str, login: str, password: str) -> Admin:
    if email_taken(db, email) or login_taken(db, login):
        raise click.ClickException(f"An account with email {email} or login {login} already exists")

    admin = Admin(
        id=allocate_id(db),
        email=email.strip().lower(),
        login=login,
        password_hash=get_password_hash(password),
        role_id=ADMIN,
        profileCompleted=True,
    )
    db.add(admin)
    db.add(UserSettings(user_id=admin.id, language=settings.DEFAULT_LANGUAGE))
    db.commit()
    return admin


@click.command()
@click.option("--admin-email", default=None, help="Create an administrator with this email.")
@click.option("--admin-login", default="admin", show_default=True)
@click.option("--admin-password", default=None, help="Required together with --admin-email.")
def cli(admin_email, admin_login, admin_password):
    """Create tables, seed subjects and optionally an administrator."""
    init_db()
    db = SessionLocal()
    try:
        added = seed_subjects(db)
        click.echo(f"Added {added} subjects.")

        if admin_email:
            if not admin_password:
                raise click.UsageError("--admin-password is required with --admin-email")
            admin = create_admin(db, admin_email, admin_login, admin_password)
            click.echo(f"Created admin {admin.email} with id {admin.id}.")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
