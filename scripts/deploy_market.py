#!/usr/bin/python3

from pathlib import Path

import click
from ape.cli import ConnectedProviderCommand, account_option, network_option

from lending_deployment.options import auto_option, params_option, treasury_option, verify_option
from lending_deployment.orchestrator import Orchestrator


@click.command(cls=ConnectedProviderCommand, name="deploy-market")
@account_option()
@network_option(required=True)
@params_option
@treasury_option
@verify_option
@auto_option
def cli(account, network, params, treasury, verify, auto):
    """Deploy a lending market, its reward chain and one reserve, then smoke test it."""
    click.echo(f"Connected to {network.name} network.")

    orchestrator = Orchestrator.from_yaml(
        filepath=Path(params),
        account=account,
        treasury=treasury,
        autosign=auto,
        verify=verify,
    )
    context = orchestrator.run()
    orchestrator.finalize()

    report = context.smoke_report
    click.secho(
        f"Deployed {len(context.registry)} contracts; "
        f"reserve grew by {report.reserve_after - report.reserve_before}.",
        fg="green",
    )
    if report.flash_loan_before != report.flash_loan_after:
        click.secho(
            f"Flash loan consumer balance moved from {report.flash_loan_before} "
            f"to {report.flash_loan_after}.",
            fg="yellow",
        )


if __name__ == "__main__":
    cli()
