import sys
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from pydantic import ValidationError

from admission_control.config import AdmissionConfig, load_config
from admission_control.exceptions import ListenerError
from admission_control.services import admissiond

app = typer.Typer(no_args_is_help=True)


def _config_from_options(**options) -> AdmissionConfig:
    # Unset flags fall back to the environment.
    overrides = {key: value for key, value in options.items() if value not in (None, [])}
    return load_config(**overrides)


def serve(
    host: Optional[str] = typer.Option(None, help="The address to bind to"),
    port: Optional[int] = typer.Option(None, help="The port to listen on"),
    cert_path: Optional[Path] = typer.Option(None, help="Path to the PEM encoded TLS certificate"),
    key_path: Optional[Path] = typer.Option(None, help="Path to the unencrypted TLS private key"),
    http_only: bool = typer.Option(
        False, "--http-only", help="Serve plain HTTP, e.g. behind a TLS terminating proxy"
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    ignored_namespace: List[str] = typer.Option(
        [], help="Namespace exempt from the deny policies (repeatable)"
    ),
    cloud_provider: Optional[str] = typer.Option(
        None, help="Cloud provider whose internal load balancer annotation is required"
    ),
):
    try:
        config = _config_from_options(
            bind_address=host,
            port=port,
            tls_cert_path=cert_path,
            tls_key_path=key_path,
            http_only=http_only or None,
            debug=debug or None,
            ignored_namespaces=ignored_namespace,
            cloud_provider=cloud_provider,
        )
    except ValidationError as e:
        logger.error(f"Invalid configuration:\n{e}")
        sys.exit(1)

    if not config.http_only and not config.tls_enabled:
        logger.error("--cert-path and --key-path are required unless --http-only is set")
        sys.exit(1)

    try:
        admissiond.run(config)
    except ListenerError as e:
        logger.error(f"Admission webhook server stopped: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Admission webhook server failed:\n{e}")
        sys.exit(1)


def show_config(
    host: Optional[str] = typer.Option(None, help="The address to bind to"),
    port: Optional[int] = typer.Option(None, help="The port to listen on"),
):
    try:
        config = _config_from_options(bind_address=host, port=port)
    except ValidationError as e:
        logger.error(f"Invalid configuration:\n{e}")
        sys.exit(1)

    print(config.export_json())


app.command(name="serve", help="Run the example admission webhook server.")(serve)
app.command(name="show-config", help="Print the effective configuration.")(show_config)

if __name__ == "__main__":
    app()
