"""Party Admin CLI tool (party-admin)."""

import json

import typer

app = typer.Typer(name="party-admin", help="Party Admin CLI")
db_app = typer.Typer(help="Database management commands")
roles_app = typer.Typer(help="Role catalogue commands")
accounts_app = typer.Typer(help="Account maintenance commands")
app.add_typer(db_app, name="db")
app.add_typer(roles_app, name="roles")
app.add_typer(accounts_app, name="accounts")


@db_app.command("create")
def db_create():
    """Create the MySQL database named in DATABASE_URL if it doesn't exist."""
    import pymysql
    from sqlalchemy.engine import make_url
    from party_admin.core.config import settings

    url = make_url(settings.DATABASE_URL)
    if not url.drivername.startswith("mysql"):
        typer.echo(f"ℹ️  {url.drivername} databases need no explicit creation")
        return

    conn = pymysql.connect(
        host=url.host or "localhost",
        port=url.port or 3306,
        user=url.username,
        password=url.password or "",
    )
    try:
        cursor = conn.cursor()
        cursor.execute(
            f"CREATE DATABASE IF NOT EXISTS `{url.database}` "
            "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
        )
        conn.commit()
        typer.echo(f"✅ Database '{url.database}' created (or already exists)")
    finally:
        conn.close()


@db_app.command("create-tables")
def db_create_tables():
    """Create directory tables and the local identity schema."""
    from party_admin.db.base import Base
    from party_admin.db.session import engine
    from party_admin.identity.provider import get_identity_provider
    import party_admin.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    get_identity_provider()
    typer.echo("✅ Tables created")


@db_app.command("seed")
def db_seed():
    """Seed roles and the bootstrap super admin."""
    from party_admin.db.session import SessionLocal
    from party_admin.db.seeds.seed_roles import seed_roles
    from party_admin.db.seeds.seed_super_admin import seed_super_admin
    from party_admin.identity.provider import get_identity_provider

    db = SessionLocal()
    try:
        seed_roles(db)
        seed_super_admin(db, get_identity_provider())
    finally:
        db.close()
    typer.echo("✅ All seeds applied")


@db_app.command("reset")
def db_reset():
    """Drop and recreate the directory tables (DANGER)."""
    confirm = typer.confirm("⚠️  This will DROP all directory tables. Continue?")
    if not confirm:
        raise typer.Abort()
    from party_admin.db.base import Base
    from party_admin.db.session import engine
    import party_admin.models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    typer.echo("✅ Directory tables reset")


@roles_app.command("list")
def roles_list():
    """List every role, active or not."""
    from party_admin.db.session import SessionLocal
    from party_admin.models.role import Role
    from party_admin.services.role_service import permissions_of

    db = SessionLocal()
    try:
        for role in db.query(Role).order_by(Role.created_at, Role.name).all():
            state = "active" if role.is_active else "inactive"
            typer.echo(f"  [{role.id}] {role.name} ({state}) {json.dumps(permissions_of(role))}")
    finally:
        db.close()


def _set_role_active(name: str, active: bool) -> None:
    from party_admin.core.exceptions import ResourceNotFoundError
    from party_admin.db.session import SessionLocal
    from party_admin.services.role_service import role_service

    db = SessionLocal()
    try:
        role_service.set_active(db, name, active)
    except ResourceNotFoundError as e:
        typer.echo(f"❌ {e.message}", err=True)
        raise typer.Exit(code=1)
    finally:
        db.close()
    typer.echo(f"✅ Role '{name}' {'activated' if active else 'deactivated'}")


@roles_app.command("activate")
def roles_activate(name: str = typer.Argument(..., help="Role name")):
    """Make a role assignable again."""
    _set_role_active(name, True)


@roles_app.command("deactivate")
def roles_deactivate(name: str = typer.Argument(..., help="Role name")):
    """Stop a role from being assigned; holders lose its privileges."""
    _set_role_active(name, False)


@accounts_app.command("reconcile")
def accounts_reconcile(
    fix: bool = typer.Option(False, "--fix", help="Delete orphaned records"),
):
    """Report identities and directory records that no longer match."""
    from party_admin.db.session import SessionLocal
    from party_admin.identity.provider import get_identity_provider
    from party_admin.services.account_service import account_service

    db = SessionLocal()
    try:
        report = account_service.reconcile(db, get_identity_provider(), fix=fix)
    finally:
        db.close()

    for user in report["orphaned_identities"]:
        marker = "managed" if user["is_admin"] else "foreign"
        typer.echo(f"  identity without account: {user['email']} [{user['id']}] ({marker})")
    for account in report["accounts_without_identity"]:
        typer.echo(f"  account without identity: {account['email']} [{account['id']}]")
    if fix:
        typer.echo(f"✅ Fixed {len(report['fixed'])} records")
    elif report["orphaned_identities"] or report["accounts_without_identity"]:
        typer.echo("Run again with --fix to clean up")
    else:
        typer.echo("✅ Identity provider and directory agree")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(True, help="Auto-reload"),
):
    """Start the FastAPI development server."""
    import uvicorn
    uvicorn.run("party_admin.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
