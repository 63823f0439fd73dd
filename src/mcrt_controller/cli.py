"""ManagedCertificate controller CLI (mcrtctl).

Usage:
    mcrtctl run                   # Run the controller
    mcrtctl describe mcrt-1234    # Show an SslCertificate with translated statuses
    mcrtctl delete mcrt-1234      # Delete an SslCertificate if it exists
"""

from __future__ import annotations

import click
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from google.auth.exceptions import DefaultCredentialsError

from .config import Config, ConfigurationError
from .main import run as run_controller
from .security import get_compute_credential
from .ssl import SslCertificateClient
from .status import StatusMappingError
from .sync import build_status


def make_ssl_client(project: str | None) -> SslCertificateClient:
    """Build a client from the environment configuration.

    Raises:
        click.ClickException: If configuration or credentials are missing.
    """
    try:
        config = Config.from_env()
        credential, discovered_project_id = get_compute_credential()
    except (ConfigurationError, DefaultCredentialsError) as e:
        raise click.ClickException(str(e)) from e

    project_id = project or config.project_id or discovered_project_id
    if not project_id:
        raise click.ClickException("Project id required. Set GCP_PROJECT_ID or use --project.")

    return SslCertificateClient.from_config(config, credential, project_id)


@click.group()
@click.version_option(version="0.1.0", prog_name="mcrtctl")
def cli() -> None:
    """ManagedCertificate controller CLI (mcrtctl)."""
    pass


@cli.command()
def run() -> None:
    """Run the controller with configuration from the environment."""
    run_controller()


@cli.command()
@click.argument("name")
@click.option("--project", "-p", envvar="GCP_PROJECT_ID", help="GCP project id")
def describe(name: str, project: str | None) -> None:
    """Show an SslCertificate and its ManagedCertificate statuses."""
    with make_ssl_client(project) as ssl_client:
        try:
            certificate = ssl_client.get(name)
        except ResourceNotFoundError as e:
            raise click.ClickException(f"SslCertificate {name} not found") from e
        except HttpResponseError as e:
            raise click.ClickException(f"Failed to fetch {name}: {e.message}") from e

    click.echo(f"Name:     {certificate.name}")
    click.echo(f"Type:     {certificate.type}")
    click.echo(f"Domains:  {', '.join(certificate.domains)}")
    click.echo(f"Expires:  {certificate.expire_time or '-'}")

    try:
        status = build_status(certificate)
    except StatusMappingError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Status:   {status.certificate_status.value or '-'} ({certificate.status or '-'})")
    for domain, domain_status in status.domain_status.items():
        click.echo(f"  {domain}: {domain_status.value}")


@cli.command()
@click.argument("name")
@click.option("--project", "-p", envvar="GCP_PROJECT_ID", help="GCP project id")
def delete(name: str, project: str | None) -> None:
    """Delete an SslCertificate. Succeeds when it is already gone.

    Only certificates carrying the controller's name prefix can be deleted.
    """
    try:
        prefix = Config.from_env().certificate_name_prefix
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    if not name.startswith(prefix):
        raise click.ClickException(
            f"Refusing to delete {name}: not a controller certificate (prefix {prefix})"
        )

    with make_ssl_client(project) as ssl_client:
        try:
            if not ssl_client.exists(name):
                click.echo(f"SslCertificate {name} does not exist")
                return
            ssl_client.delete(name)
        except HttpResponseError as e:
            raise click.ClickException(f"Failed to delete {name}: {e.message}") from e

    click.secho(f"✓ SslCertificate {name} deletion requested", fg="green")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
