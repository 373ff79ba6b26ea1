import click

from lending_deployment.constants import CONSTRUCTOR_PARAMS_DIR
from lending_deployment.types import ChecksumAddress

params_option = click.option(
    "--params",
    "-p",
    help="Deployment parameters file.",
    type=click.Path(exists=True, dir_okay=False),
    default=str(CONSTRUCTOR_PARAMS_DIR / "local" / "market.yml"),
    show_default=True,
)

treasury_option = click.option(
    "--treasury",
    "-t",
    help="Recipient of liquidation fees; defaults to the deployer.",
    type=ChecksumAddress(),
    required=False,
)

registry_filepath_option = click.option(
    "--registry-filepath",
    "-r",
    help="Filepath of a deployment registry artifact.",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
)

verify_option = click.option(
    "--verify",
    help="Publish the deployed contracts to the network's block explorer.",
    is_flag=True,
)

auto_option = click.option(
    "--auto",
    help="Automatically sign transactions.",
    is_flag=True,
)
