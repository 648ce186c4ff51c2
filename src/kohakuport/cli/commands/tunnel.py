"""
KohakuPort tunnel commands.

Usage:
    kohakuport tunnel list
    kohakuport tunnel create CONTAINER PORT [--proto http] [--url URL]
    kohakuport tunnel remove CONTAINER     # close now, keep the intent
    kohakuport tunnel cancel CONTAINER     # delete the intent and close
    kohakuport tunnel intents
"""

import json
from typing import Annotated

import typer
from rich.table import Table

from kohakuport.cli import client
from kohakuport.cli import config as cli_config
from kohakuport.cli.output import console, print_error, print_success, print_warning
from kohakuport.models.enums import Protocol

app = typer.Typer(help="Tunnel management")


def _print_endpoints(endpoints: list[dict], title: str = "Tunnels") -> None:
    if cli_config.OUTPUT_FORMAT == "json":
        console.print_json(json.dumps(endpoints))
        return
    if not endpoints:
        console.print("[dim]No tunnels.[/dim]")
        return

    table = Table(title=title)
    table.add_column("Container", style="cyan")
    table.add_column("Port", justify="right")
    table.add_column("Protocol")
    table.add_column("URL", style="green")
    for ep in endpoints:
        table.add_row(
            ep["container_id"][:12],
            str(ep["target_port"]),
            ep.get("protocol", ""),
            ep["url"],
        )
    console.print(table)


@app.command("list")
def list_tunnels():
    """List live tunnels."""
    try:
        _print_endpoints(client.list_tunnels())
    except client.APIError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("create")
def create_tunnel(
    container: Annotated[str, typer.Argument(help="Container ID or name")],
    port: Annotated[int, typer.Argument(help="Published port to expose")],
    proto: Annotated[
        Protocol | None,
        typer.Option("--proto", "-p", help="Skip detection and force a protocol"),
    ] = None,
    url: Annotated[
        str | None, typer.Option("--url", "-u", help="Reserved public URL")
    ] = None,
    pooling: Annotated[
        bool, typer.Option("--pooling", help="Enable endpoint pooling")
    ] = False,
    description: Annotated[
        str, typer.Option("--description", "-d", help="Endpoint description")
    ] = "",
    metadata: Annotated[str, typer.Option("--metadata", help="Endpoint metadata")] = "",
):
    """Request a tunnel for a container port."""
    try:
        result = client.create_tunnel(
            container,
            port,
            protocol=proto.value if proto else None,
            url=url,
            pooling_enabled=pooling,
            description=description,
            metadata=metadata,
        )
    except client.APIError as e:
        print_error(str(e))
        raise typer.Exit(1)

    endpoint = result.get("endpoint")
    if endpoint:
        print_success(f"{container} is online at [bold]{endpoint['url']}[/bold]")
    else:
        print_warning(
            f"Intent recorded, tunnel not open yet: {result.get('error')}. "
            "It will be retried automatically."
        )


@app.command("remove")
def remove_tunnel(
    container: Annotated[str, typer.Argument(help="Container ID or name")],
):
    """Close a tunnel now (the intent stays, so it may come back)."""
    try:
        remaining = client.remove_tunnel(container)
    except client.APIError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success(f"Closed tunnel for {container}")
    _print_endpoints(list(remaining.values()), title="Remaining tunnels")


@app.command("cancel")
def cancel_tunnel(
    container: Annotated[str, typer.Argument(help="Container ID or name")],
):
    """Stop tunneling a container for good."""
    try:
        remaining = client.cancel_tunnel(container)
    except client.APIError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success(f"Cancelled tunnel for {container}")
    _print_endpoints(list(remaining.values()), title="Remaining tunnels")


@app.command("intents")
def list_intents():
    """List stored tunnel intents."""
    try:
        intents = client.list_intents()
    except client.APIError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if cli_config.OUTPUT_FORMAT == "json":
        console.print_json(json.dumps(intents))
        return

    table = Table(title="Intents")
    table.add_column("Container", style="cyan")
    table.add_column("Port", justify="right")
    table.add_column("Protocol")
    table.add_column("URL")
    table.add_column("Pooling")
    for intent in intents:
        table.add_row(
            intent["container_id"],
            str(intent["target_port"]),
            intent.get("protocol_override") or "[dim]detect[/dim]",
            intent.get("url") or "[dim]random[/dim]",
            "yes" if intent.get("pooling_enabled") else "no",
        )
    console.print(table)
