# backend/change_role.py
"""Operator tool: move an account to another role outside the HTTP layer.

    python change_role.py USER_ID ROLE

ROLE is a name (student, teacher, moderator, admin) or an id 1-4. The target
row is re-read after every step unless --no-verify is given.
"""

import logging
import sys

import click

from database import SessionLocal, init_db
from models.users import ROLE_IDS, ROLE_MODELS, ROLE_NAMES
from utils.exceptions import AccountError
from utils.role_migration import RoleMigrator
from utils.role_router import find_user_anywhere

logger = logging.getLogger(__name__)

ROLE_HELP = "Roles: 1 (admin), 2 (moderator), 3 (teacher), 4 (student)"


def parse_role(value: str) -> int:
    value = value.strip().lower()
    if value in ROLE_IDS:
        return ROLE_IDS[value]
    if value.isdigit() and int(value) in ROLE_NAMES:
        return int(value)
    raise click.BadParameter(f'invalid role "{value}". {ROLE_HELP}', param_hint="ROLE")


@click.command(epilog=ROLE_HELP)
@click.argument("user_id", type=int)
@click.argument("role")
@click.option("--verify/--no-verify", default=True, show_default=True,
              help="Re-read the target row after every migration step.")
@click.option("-v", "--verbose", is_flag=True, help="Log each step.")
def cli(user_id: int, role: str, verify: bool, verbose: bool) -> None:
    """Move USER_ID to ROLE, relocating the profile between role tables."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    role_id = parse_role(role)

    init_db()
    db = SessionLocal()
    try:
        try:
            current = find_user_anywhere(db, user_id, avoid_table=ROLE_MODELS[role_id].__tablename__)
        except AccountError as exc:
            click.echo(f"Error: {exc.message}", err=True)
            sys.exit(1)

        click.echo(f"Found user {user_id} in {current.table_name} (role_id={current.role_id})")
        if current.role_id == role_id:
            click.echo(f'User {user_id} already has role "{ROLE_NAMES[role_id]}" (role_id={role_id}).')
            return

        try:
            result = RoleMigrator(db, verify=verify, mint_token=False).migrate(
                user_id, role_id, source_table=current.table_name
            )
        except AccountError as exc:
            click.echo(f"Error changing role: {exc.message}", err=True)
            sys.exit(1)

        if result.migrated:
            for name, count in result.relinked.items():
                click.echo(f"  relinked {name}: {count}")
            for stale in result.stale_rows:
                click.echo(f"  removed stale row {stale.row_id} from {stale.table_name}")
            click.echo(
                f'User {user_id} moved from {result.source_table} to {result.target_table} '
                f'as {result.new_id} with role "{result.role}" (role_id={role_id}).'
            )
        else:
            click.echo(f'User {user_id} now has role "{result.role}" (role_id={role_id}).')
    finally:
        db.close()


if __name__ == "__main__":
    cli()
