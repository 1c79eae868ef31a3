"""
Command line entry point.

Usage:
    lt-forward --port 8080 [OPTIONS]

Example:
    # Expose a local HTTPS service with a self-signed certificate
    lt-forward -p 8443 --local-https --allow-invalid-cert
"""

import asyncio
from typing import Annotated

import typer
from pydantic import ValidationError

from . import __version__
from .common.exceptions import (
    ConfigurationError,
    FatalDialError,
    TunnelLostError,
)
from .common.logging import get_logger, setup_logging
from .common.utils import validate_port
from .config import DialFailurePolicy, ForwarderConfig, TLSPolicy, UpstreamAddress
from .runner import serve
from .tunnel.listener import ListenerTunnel

logger = get_logger(__name__)

app = typer.Typer(
    name="lt-forward",
    help="Expose a local service through a tunnel",
    add_completion=False,
)


def build_config(
    *,
    port: int | None,
    local_host: str = "localhost",
    local_https: bool = False,
    local_cert: str | None = None,
    local_key: str | None = None,
    local_ca: str | None = None,
    allow_invalid_cert: bool = False,
    max_connections: int = 10,
    dial_failure: DialFailurePolicy = DialFailurePolicy.DROP,
    reconnect_attempts: int = 0,
) -> ForwarderConfig:
    """Turn command line values into a validated ForwarderConfig.

    Raises:
        ConfigurationError: If a required value is missing or invalid
    """
    if not port:
        raise ConfigurationError("missing required argument: port")

    try:
        tls = None
        if local_https:
            tls = TLSPolicy(
                server_name=local_host,
                cert_file=local_cert,
                key_file=local_key,
                ca_file=local_ca,
                allow_invalid_cert=allow_invalid_cert,
            )
        return ForwarderConfig(
            upstream=UpstreamAddress(host=local_host, port=port),
            tls=tls,
            max_connections=max_connections,
            dial_failure_policy=dial_failure,
            reconnect_attempts=reconnect_attempts,
        )
    except ValidationError as e:
        messages = "; ".join(error["msg"] for error in e.errors())
        raise ConfigurationError(f"invalid args: {messages}") from e


def check_listen_port(port: int) -> None:
    """Validate the local listening port; 0 asks the OS for a free one.

    Raises:
        ConfigurationError: If the port is out of range
    """
    if port == 0:
        return
    try:
        validate_port(port, "Listen port")
    except ValueError as e:
        raise ConfigurationError(f"invalid args: {e}") from e


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.command()
def main(
    ctx: typer.Context,
    port: Annotated[
        int | None, typer.Option("--port", "-p", help="Internal HTTP server port")
    ] = None,
    local_host: Annotated[
        str,
        typer.Option(
            "--local-host",
            "-l",
            help="Tunnel traffic to this host instead of localhost",
        ),
    ] = "localhost",
    local_https: Annotated[
        bool, typer.Option("--local-https", help="Tunnel traffic to a local HTTPS server")
    ] = False,
    local_cert: Annotated[
        str | None,
        typer.Option("--local-cert", help="Path to certificate PEM file"),
    ] = None,
    local_key: Annotated[
        str | None,
        typer.Option("--local-key", help="Path to certificate key file"),
    ] = None,
    local_ca: Annotated[
        str | None,
        typer.Option("--local-ca", help="Path to CA file for self-signed certificates"),
    ] = None,
    allow_invalid_cert: Annotated[
        bool,
        typer.Option(
            "--allow-invalid-cert",
            help="Disable certificate checks (ignores cert/key/ca options)",
        ),
    ] = False,
    max_connections: Annotated[
        int,
        typer.Option(
            "--max-connections", "-m", help="Max number of simultaneous connections"
        ),
    ] = 10,
    listen_host: Annotated[
        str, typer.Option("--listen-host", help="Address accepting tunnel connections")
    ] = "127.0.0.1",
    listen_port: Annotated[
        int, typer.Option("--listen-port", help="Port accepting tunnel connections")
    ] = 0,
    dial_failure: Annotated[
        DialFailurePolicy,
        typer.Option(
            "--dial-failure",
            help="On upstream connect failure: drop the connection or exit",
        ),
    ] = DialFailurePolicy.DROP,
    reconnect_attempts: Annotated[
        int,
        typer.Option("--reconnect-attempts", help="Reopen a lost tunnel this often"),
    ] = 0,
    print_requests: Annotated[
        bool, typer.Option("--print-requests", help="No op, compatibility flag")
    ] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Show debug logs")] = False,
    json_logs: Annotated[
        bool, typer.Option("--json-logs", help="Write logs as JSON")
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version number",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Forward connections arriving through the tunnel to a local service."""
    try:
        config = build_config(
            port=port,
            local_host=local_host,
            local_https=local_https,
            local_cert=local_cert,
            local_key=local_key,
            local_ca=local_ca,
            allow_invalid_cert=allow_invalid_cert,
            max_connections=max_connections,
            dial_failure=dial_failure,
            reconnect_attempts=reconnect_attempts,
        )
        config.ssl_context()
        check_listen_port(listen_port)
    except ConfigurationError as e:
        typer.echo(str(e), err=True)
        typer.echo(ctx.get_help(), err=True)
        raise typer.Exit(1)

    setup_logging(level="DEBUG" if debug else "INFO", json_format=json_logs)

    async def open_tunnel() -> ListenerTunnel:
        return await ListenerTunnel.open(listen_host, listen_port)

    def announce(url: str) -> None:
        typer.echo(f"your url is: {url}")

    try:
        asyncio.run(serve(open_tunnel, config, on_ready=announce))
    except (TunnelLostError, FatalDialError) as e:
        logger.error("Forwarder stopped", error=str(e))
        raise typer.Exit(1)
    except OSError as e:
        typer.echo(f"failed to initialize tunnel: {e}", err=True)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        typer.echo("Stopped.")
