"""
KohakuPort unified CLI entry point.

Usage:
    kohakuport [OPTIONS] COMMAND [ARGS]...

Commands:
    serve     Run the tunnel service
    tunnel    Tunnel management
    converge  Run a convergence pass now
    status    Show service status
    version   Show version information
"""

from typing import Annotated

import typer
from rich.table import Table

from kohakuport.cli import client
from kohakuport.cli import config as cli_config
from kohakuport.cli.commands import serve, tunnel
from kohakuport.cli.output import console, print_error

app = typer.Typer(
    name="kohakuport",
    help="KohakuPort: ngrok tunnels for Docker containers",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register command groups
app.add_typer(tunnel.app, name="tunnel", help="Tunnel management")
app.command("serve")(serve.serve)


@app.callback()
def main(
    host: Annotated[
        str | None,
        typer.Option("--host", "-H", help="API address", envvar="KOHAKUPORT_HOST"),
    ] = None,
    port: Annotated[
        int | None,
        typer.Option("--api-port", "-P", help="API port", envvar="KOHAKUPORT_API_PORT"),
    ] = None,
    socket_path: Annotated[
        str | None,
        typer.Option("--api-socket", help="API unix socket", envvar="KOHAKUPORT_API_SOCKET"),
    ] = None,
    output_format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format: table|json"),
    ] = "table",
):
    """
    KohakuPort CLI.

    Run the service, or manage tunnels on a running one.
    """
    if host:
        cli_config.HOST_ADDRESS = host
    if port:
        cli_config.HOST_PORT = port
    if socket_path:
        cli_config.SOCKET_PATH = socket_path
    cli_config.OUTPUT_FORMAT = output_format


@app.command("version")
def version():
    """Show version information."""
    from kohakuport import __version__

    console.print(f"KohakuPort v{__version__}")


@app.command("converge")
def converge():
    """Run a convergence pass now."""
    try:
        report = client.converge()
    except client.APIError as e:
        print_error(str(e))
        raise typer.Exit(1)

    console.print(
        f"Pass [bold]{report['outcome']}[/bold]: "
        f"opened {len(report['opened'])}, closed {len(report['closed'])}, "
        f"adopted {len(report['adopted'])}"
    )
    for container_id, error in report.get("errors", {}).items():
        console.print(f"  [red]{container_id}[/red]: {error}")


@app.command("status")
def status():
    """Show service status."""
    try:
        info = client.get_status()
    except client.APIError as e:
        print_error(str(e))
        raise typer.Exit(1)

    console.print(
        f"KohakuPort {info['version']}: "
        f"{info['endpoint_count']} tunnel(s), {info['intent_count']} intent(s)"
    )
    last = info.get("last_converge")
    if last:
        console.print(f"Last pass: {last['outcome']} at {last['started_at']}")

    errors = info.get("container_errors") or {}
    if errors:
        table = Table(title="Pending errors")
        table.add_column("Container", style="cyan")
        table.add_column("Error", style="red")
        for container_id, error in errors.items():
            table.add_row(container_id, error)
        console.print(table)


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
