"""Gatekeeper admin CLI tool (gatekeeper)."""

from contextlib import contextmanager
from typing import List, Optional

import typer

from gatekeeper.core.config import settings
from gatekeeper.core.exceptions import GatekeeperError
from gatekeeper.main import Gatekeeper, configure_logging

app = typer.Typer(name="gatekeeper", help="Gatekeeper RBAC CLI")
db_app = typer.Typer(help="Database management commands")
users_app = typer.Typer(help="Identity commands")
roles_app = typer.Typer(help="Role and grant commands")
cache_app = typer.Typer(help="Permission cache commands")
invites_app = typer.Typer(help="Invite code commands")
app.add_typer(db_app, name="db")
app.add_typer(users_app, name="users")
app.add_typer(roles_app, name="roles")
app.add_typer(cache_app, name="cache")
app.add_typer(invites_app, name="invites")


def build_gatekeeper() -> Gatekeeper:
    return Gatekeeper()


@contextmanager
def running_gatekeeper(connect: bool = True):
    """Build the app, surface domain errors as a non-zero exit, always shut down."""
    gk = build_gatekeeper()
    try:
        if connect:
            gk.start(warm_cache=False)
        yield gk
    except GatekeeperError as exc:
        typer.echo(f"❌ {exc.message}", err=True)
        raise typer.Exit(code=1)
    finally:
        gk.stop()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    """Gatekeeper administration."""
    if verbose:
        settings.LOG_LEVEL = "DEBUG"
    configure_logging(settings)


# ---- db ----
@db_app.command("create")
def db_create():
    """Create all tables if they don't exist."""
    with running_gatekeeper(connect=False) as gk:
        gk.create_tables()
    typer.echo("✅ Tables created (or already exist)")


@db_app.command("seed")
def db_seed():
    """Seed default roles and the super-admin."""
    from gatekeeper.db.seeds.seed_roles import seed_roles
    from gatekeeper.db.seeds.seed_super_admin import seed_super_admin

    with running_gatekeeper(connect=False) as gk:
        db = gk.session_factory()
        try:
            seed_roles(db)
            seed_super_admin(db)
        finally:
            db.close()
    typer.echo("✅ All seeds applied")


@db_app.command("reset")
def db_reset(yes: bool = typer.Option(False, "--yes", help="Skip confirmation")):
    """Drop and recreate all tables (DANGER)."""
    if not yes:
        confirm = typer.confirm("⚠️  This will DROP every Gatekeeper table. Continue?")
        if not confirm:
            raise typer.Abort()
    with running_gatekeeper(connect=False) as gk:
        gk.drop_tables()
        gk.create_tables()
    typer.echo("✅ Database reset")


# ---- users ----
@users_app.command("create")
def users_create(
    identity: str = typer.Argument(..., help="User id"),
    email: Optional[str] = typer.Option(None, help="Email address"),
    full_name: Optional[str] = typer.Option(None, help="Display name"),
):
    """Create an identity that roles can be granted to."""
    with running_gatekeeper(connect=False) as gk:
        gk.role_store.create_user(identity, email=email, full_name=full_name)
    typer.echo(f"✅ User '{identity}' ready")


# ---- roles ----
@roles_app.command("create")
def roles_create(
    role_key: str = typer.Argument(..., help="Role key, e.g. channel:42:post"),
    description: Optional[str] = typer.Option(None, help="Description"),
):
    """Provision a role."""
    from gatekeeper.permissions.role_key import check_action

    with running_gatekeeper(connect=False) as gk:
        role_id = gk.role_store.create_role(check_action(role_key), description=description)
    typer.echo(f"✅ Role '{role_key}' has id {role_id}")


@roles_app.command("grant")
def roles_grant(
    identity: str = typer.Argument(..., help="User receiving the role"),
    role_key: str = typer.Argument(..., help="Role key to grant"),
    granter: Optional[str] = typer.Option(None, help="User recorded as granter"),
    create: bool = typer.Option(False, "--create", help="Provision the role if missing"),
):
    """Grant a role to a user."""
    with running_gatekeeper() as gk:
        if create:
            granted = gk.policy_engine.create_role_and_assign(granter, identity, role_key)
            typer.echo(f"{'✅' if granted else '❌'} {role_key} -> {identity}")
            return
        outcome = gk.policy_engine.grant_with_report(granter, identity, role_key)
    if not outcome.granted:
        typer.echo(f"❌ Could not grant {role_key} to {identity}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"✅ Granted {role_key} to {identity}")
    if not outcome.cache_refreshed:
        typer.echo(f"⚠️  Cache not refreshed: {outcome.refresh_error}")


@roles_app.command("revoke")
def roles_revoke(
    identity: str = typer.Argument(..., help="User losing the role"),
    role_key: str = typer.Argument(..., help="Role key to revoke"),
    revoker: Optional[str] = typer.Option(None, help="User recorded as revoker"),
):
    """Revoke a role from a user."""
    with running_gatekeeper() as gk:
        revoked = gk.policy_engine.revoke(revoker, identity, role_key)
    typer.echo(f"✅ Revoked {role_key} from {identity}" if revoked else f"ℹ️  {identity} did not hold {role_key}")


@roles_app.command("list")
def roles_list(
    identity: str = typer.Argument(..., help="User id"),
    implied: bool = typer.Option(False, "--implied", help="Include roles implied by the hierarchy"),
):
    """List the roles a user holds."""
    with running_gatekeeper() as gk:
        if implied:
            roles = sorted(str(r) for r in gk.policy_engine.get_all_implied_roles_for_user(identity))
        else:
            roles = sorted(gk.policy_engine.get_roles_for_user(identity))
    for role in roles:
        typer.echo(role)


@app.command("check")
def check(
    identity: str = typer.Argument(..., help="User id"),
    role_keys: List[str] = typer.Argument(..., help="Accepted role keys"),
):
    """Check whether a user holds any of the given roles. Exits 1 when denied."""
    with running_gatekeeper() as gk:
        allowed = gk.policy_engine.validate_any(identity, role_keys)
    typer.echo("allowed" if allowed else "denied")
    if not allowed:
        raise typer.Exit(code=1)


# ---- cache ----
@cache_app.command("warm")
def cache_warm(
    limit: int = typer.Option(settings.CACHE_WARM_LIMIT, help="Max roles to cache"),
    ttl: int = typer.Option(settings.PERMISSION_CACHE_TTL_SECONDS, help="TTL in seconds"),
):
    """Populate the permission cache from the role store."""
    with running_gatekeeper() as gk:
        count = gk.policy_engine.populate_cache(ttl_seconds=ttl, limit=limit)
    typer.echo(f"✅ Cached {count} role keys")


# ---- invites ----
@invites_app.command("create")
def invites_create(
    role_keys: List[str] = typer.Argument(..., help="Role keys bundled in the code"),
    admin: str = typer.Option(settings.SUPER_ADMIN_ID, help="Creating admin"),
    hours: Optional[float] = typer.Option(None, help="Hours until expiry"),
):
    """Create an invite code."""
    with running_gatekeeper() as gk:
        invite = gk.invite_service.create_invite(admin, role_keys, expires_in_hours=hours)
    typer.echo(f"✅ {invite.code} (id {invite.code_id}) expires {invite.expires_at.isoformat()}")


@invites_app.command("list")
def invites_list(
    admin: str = typer.Option(settings.SUPER_ADMIN_ID, help="Listing admin"),
    status: Optional[str] = typer.Option(None, help="active, used, expired or revoked"),
    limit: int = typer.Option(50, help="Page size"),
    offset: int = typer.Option(0, help="Page offset"),
):
    """List invite codes."""
    with running_gatekeeper() as gk:
        page = gk.invite_service.list_invite_codes(admin, status=status, limit=limit, offset=offset)
    for invite in page.data:
        typer.echo(f"{invite.code_id}\t{invite.code}\t{invite.status.value}\t{','.join(invite.role_keys)}")
    typer.echo(f"{len(page.data)} of {page.total_count}")


@invites_app.command("purge-expired")
def invites_purge_expired(
    admin: str = typer.Option(settings.SUPER_ADMIN_ID, help="Purging admin"),
):
    """Delete invite codes that expired unused."""
    with running_gatekeeper() as gk:
        deleted = gk.invite_service.purge_expired(admin)
    typer.echo(f"✅ Deleted {deleted} expired invite codes")


if __name__ == "__main__":
    app()
