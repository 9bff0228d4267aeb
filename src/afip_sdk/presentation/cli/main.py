import logging

import typer

from afip_sdk.client import AfipClient
from afip_sdk.config import settings
from afip_sdk.domain.errors import AfipError
from afip_sdk.domain.model import HealthStatus

app = typer.Typer(help="AFIP SDK CLI")

PROBED_SERVICES = ("wsfe", "wsfex", "wsmtxca")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v")) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


def build_client() -> AfipClient:
    return AfipClient(settings)


@app.command()
def ticket(service: str = typer.Argument("wsfe")) -> None:
    """Obtains a WSAA ticket for SERVICE and prints its validity window."""
    try:
        with build_client() as client:
            t = client.get_valid_ticket(service)
    except AfipError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Ticket {t.service_name}: generado {t.generated_at.isoformat()} vence {t.expires_at.isoformat()}")


@app.command()
def health(probe: bool = typer.Option(False, "--probe", "-p", help="GET each invoicing WSDL before reporting")) -> None:
    """Prints the health report of the connection pool."""
    with build_client() as client:
        if probe:
            for service in PROBED_SERVICES:
                url = client.settings.url_for(service)
                try:
                    client.execute(service, lambda c, url=url: c.get(url, params={"WSDL": ""}))
                except AfipError as e:
                    typer.echo(f"  {service}: {e}", err=True)
        report = client.check_health()
    typer.echo(f"Estado: {report.overall.value}")
    for name, h in report.services.items():
        typer.echo(f"  {name}: {h.status.value} ({h.failure_ratio:.1%} fallas, {h.average_response_time:.3f}s)")
    if report.overall is HealthStatus.UNHEALTHY:
        raise typer.Exit(code=1)
