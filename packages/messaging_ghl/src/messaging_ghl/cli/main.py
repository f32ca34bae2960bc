"""
GHL Bridge CLI

Command-line interface for GHL bridge administration.

Commands:
- init-db: Create the bridge tables
- list-instances: List a tenant's GREEN-API instances
- create-instance: Provision a GREEN-API instance for a tenant
- rename-instance: Rename an instance
- remove-instance: Delete an instance
- refresh-token: Force a GHL token refresh for a tenant
- send-test: Send a test message through an instance
"""

import asyncio
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="ghl-bridge",
    help="GHL <-> GREEN-API bridge CLI",
)

console = Console()


def get_db():
    """Get database session."""
    from basecore.db import get_db as _get_db
    return next(_get_db())


def get_services():
    """Build bridge services from settings."""
    from basecore.db import get_sessionmaker
    from basecore.redis import get_async_redis_client
    from basecore.settings import get_settings
    from messaging_ghl.service.bootstrap import BridgeServices

    return BridgeServices(
        get_settings(),
        session_factory=get_sessionmaker(),
        redis_client=get_async_redis_client(),
    )


@app.callback()
def main():
    from basecore.logging import setup_logging
    setup_logging()


@app.command()
def init_db():
    """
    Create the bridge tables.

    Intended for development and SQLite; existing tables are left untouched.
    """
    from basecore.db import create_tables
    from messaging_ghl.persistence.models import BridgeBase

    tables = create_tables(BridgeBase.metadata)
    rprint(f"[green]Bridge tables ready:[/green] {', '.join(tables)}")


@app.command()
def list_instances(
    tenant_id: str = typer.Argument(..., help="GHL location ID"),
):
    """
    List GREEN-API instances for a tenant, newest first.
    """
    db = get_db()

    try:
        from messaging_ghl.persistence.repo import BridgeRepository

        instances = BridgeRepository(db).get_instances_by_tenant(tenant_id)

        if not instances:
            rprint("[yellow]No instances found[/yellow]")
            raise typer.Exit(0)

        table = Table(title=f"Instances for location {tenant_id}")
        table.add_column("Instance ID", style="dim")
        table.add_column("Name")
        table.add_column("State")
        table.add_column("WhatsApp ID")
        table.add_column("Created")

        for instance in instances:
            table.add_row(
                str(instance.id),
                instance.name or "-",
                instance.state,
                (instance.settings or {}).get("wid") or "-",
                instance.created_at.strftime("%Y-%m-%d %H:%M") if instance.created_at else "-",
            )

        console.print(table)

    finally:
        db.close()


@app.command()
def create_instance(
    tenant_id: str = typer.Argument(..., help="GHL location ID"),
    id_instance: int = typer.Argument(..., help="GREEN-API idInstance"),
    api_token: str = typer.Argument(..., help="GREEN-API apiTokenInstance (will be encrypted)"),
    name: Optional[str] = typer.Option(None, help="Display name"),
):
    """
    Provision a GREEN-API instance for a tenant.

    Validates the credentials with GREEN-API and points the instance's
    webhooks at this service.
    """
    from messaging_ghl.errors import BridgeError

    db = get_db()
    services = get_services()

    if not services.cipher.enabled:
        rprint("[yellow]Warning: GREEN_API_ENCRYPTION_KEY not set, storing API token unencrypted[/yellow]")

    async def provision():
        try:
            return await services.instance_service(db).provision(tenant_id, id_instance, api_token, name=name)
        finally:
            await services.close()

    try:
        instance = asyncio.run(provision())
    except BridgeError as e:
        rprint(f"[red]Failed to create instance: {e.message}[/red]")
        rprint(f"  Code: {e.code}")
        raise typer.Exit(1)
    finally:
        db.close()

    rprint("[green]Successfully created instance:[/green]")
    rprint(f"  ID: {instance.id}")
    rprint(f"  Tenant: {instance.tenant_id}")
    rprint(f"  State: {instance.state}")
    rprint(f"  Webhook URL: {instance.settings.get('webhookUrl')}")


@app.command()
def rename_instance(
    id_instance: int = typer.Argument(..., help="GREEN-API idInstance"),
    name: str = typer.Argument(..., help="New display name"),
):
    """
    Rename an instance.
    """
    from messaging_ghl.errors import BridgeError

    db = get_db()

    try:
        instance = get_services().instance_service(db).rename(id_instance, name)
        rprint(f"[green]Instance {instance.id} renamed to {instance.name}[/green]")
    except BridgeError as e:
        rprint(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()


@app.command()
def remove_instance(
    id_instance: int = typer.Argument(..., help="GREEN-API idInstance"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """
    Delete an instance.

    GHL messages for the tenant are routed to its remaining instances.
    """
    from messaging_ghl.errors import BridgeError

    db = get_db()

    try:
        if not force:
            confirm = typer.confirm(f"Remove instance {id_instance}?")
            if not confirm:
                rprint("[yellow]Cancelled[/yellow]")
                raise typer.Exit(0)

        get_services().instance_service(db).remove(id_instance)
        rprint(f"[green]Instance {id_instance} removed[/green]")
    except BridgeError as e:
        rprint(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()


@app.command()
def refresh_token(
    tenant_id: str = typer.Argument(..., help="GHL location ID"),
):
    """
    Force a GHL access token refresh for a tenant.
    """
    from messaging_ghl.errors import AuthError

    services = get_services()

    async def refresh():
        try:
            return await services.token_manager.force_refresh(tenant_id)
        finally:
            await services.close()

    try:
        asyncio.run(refresh())
    except AuthError as e:
        rprint(f"[red]Token refresh failed: {e.message}[/red]")
        rprint(f"  Reason: {e.reason.value}")
        raise typer.Exit(1)

    rprint(f"[green]Token refreshed for location {tenant_id}[/green]")


@app.command()
def send_test(
    id_instance: int = typer.Argument(..., help="GREEN-API idInstance"),
    to: str = typer.Argument(..., help="Recipient phone number (e.g., +5511999999999)"),
    text: str = typer.Option("Hello from the GHL bridge!", help="Message text"),
):
    """
    Send a test message.

    This sends a message directly via GREEN-API, without GHL.
    """
    from messaging_ghl.errors import UpstreamError
    from messaging_ghl.persistence.repo import BridgeRepository
    from messaging_ghl.transform.phone import format_chat_id

    db = get_db()

    try:
        instance = BridgeRepository(db).get_instance(id_instance)
        if not instance:
            rprint(f"[red]Instance not found: {id_instance}[/red]")
            raise typer.Exit(1)

        services = get_services()

        async def send():
            try:
                current = await services.instance_service(db).refresh_state(id_instance)
                if not current.is_authorized:
                    rprint(f"[yellow]Warning: instance state is {current.state}[/yellow]")
                client = services.greenapi_factory.for_instance(current)
                return await client.send_message(format_chat_id(to), text)
            finally:
                await services.close()

        try:
            response = asyncio.run(send())
        except UpstreamError as e:
            rprint("[red]Failed to send message[/red]")
            rprint(f"  Error: {e.message}")
            rprint(f"  Code: {e.code}")
            raise typer.Exit(1)

        rprint("[green]Message sent successfully![/green]")
        rprint(f"  Message ID: {response.id_message}")

    finally:
        db.close()


if __name__ == "__main__":
    app()
