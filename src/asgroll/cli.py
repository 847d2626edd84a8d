import logging
import os
import signal

import click
from rich.console import Console
from rich.logging import RichHandler

from .constants import (
    DEFAULT_ACCOUNTS_FILE,
    DEFAULT_CONFIG_FILE,
    DEFAULT_HEALTHY_PERCENTAGE,
    DEFAULT_IMAGE_POLL_SECONDS,
    DEFAULT_IMAGE_TIMEOUT_MINUTES,
    DEFAULT_INSTANCE_WARMUP,
    DEFAULT_UPDATE_DELAY_SECONDS,
    DEFAULT_UPDATE_TIMEOUT_MINUTES,
)
from .core import Deployer
from .errors import DeployerError
from .models import Credential
from .services.accounts import AccountStore
from .services.config_loader import ConfigLoader

console = Console()


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


def _resolve_number(cli_value, config, key, default, convert=int):
    value = _resolve_option(cli_value, config, key, default=default)
    try:
        return convert(value)
    except (TypeError, ValueError) as exc:
        raise click.ClickException(f"Configuration value `{key}` must be a number, got {value!r}.") from exc


def _load_config(config):
    try:
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path
        return ConfigLoader().load(resolved_config)
    except DeployerError as exc:
        raise click.ClickException(str(exc)) from exc


def _configure_logging(logger, verbose, log_file):
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


def _install_cancel_handler(deployer):
    def handle_sigint(signum, frame):
        console.print(
            "[yellow]Stopping after the current step. Press Ctrl+C again to abort immediately.[/yellow]"
        )
        deployer.request_cancel()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    try:
        return signal.signal(signal.SIGINT, handle_sigint)
    except ValueError:
        # signal handlers can only be installed from the main thread
        return None


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.group()
def main():
    """Re-image one auto scaling group instance and roll the fleet onto it."""


@main.command()
@click.argument("group_name")
@click.option("--account", required=False, help="Stored account whose credential is used.")
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option(
    "--instance-warmup",
    required=False,
    type=click.IntRange(min=0),
    default=None,
    help=f"Instance warm-up in seconds for the refresh (default: {DEFAULT_INSTANCE_WARMUP}).",
)
@click.option(
    "--healthy-percentage",
    required=False,
    type=click.IntRange(0, 100),
    default=None,
    help=f"Minimum healthy percentage during the refresh (default: {DEFAULT_HEALTHY_PERCENTAGE}).",
)
@click.option("--accounts-file", required=False, type=click.Path(), help="Path to the accounts file.")
@click.option("--report-file", required=False, type=click.Path(), help="Write a JSON run report here.")
@click.option(
    "--image-timeout-minutes",
    required=False,
    type=float,
    default=None,
    help="Maximum time to wait for the new image to become available.",
)
@click.option(
    "--image-poll-seconds",
    required=False,
    type=float,
    default=None,
    help="Delay between image availability checks.",
)
@click.option(
    "--update-command",
    required=False,
    help="Command run to update the detached instance, with `{address}` as placeholder.",
)
@click.option(
    "--update-timeout-minutes",
    required=False,
    type=float,
    default=None,
    help="Timeout for the update command.",
)
@click.option(
    "--update-delay-seconds",
    required=False,
    type=float,
    default=None,
    help="Wait used instead of an update command when none is configured.",
)
@click.option(
    "--use-private-address",
    is_flag=True,
    default=None,
    help="Run the update against the instance's private address.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
def deploy(
    group_name,
    account,
    config,
    instance_warmup,
    healthy_percentage,
    accounts_file,
    report_file,
    image_timeout_minutes,
    image_poll_seconds,
    update_command,
    update_timeout_minutes,
    update_delay_seconds,
    use_private_address,
    verbose,
    log_file,
):
    """Deploy an update to GROUP_NAME through a new image and an instance refresh."""
    logger = logging.getLogger("asgroll")
    config_values = _load_config(config)

    account = _resolve_option(account, config_values, "account")
    instance_warmup = _resolve_number(
        instance_warmup, config_values, "instance_warmup", DEFAULT_INSTANCE_WARMUP
    )
    healthy_percentage = _resolve_number(
        healthy_percentage, config_values, "healthy_percentage", DEFAULT_HEALTHY_PERCENTAGE, convert=int
    )
    accounts_file = _resolve_option(
        accounts_file, config_values, "accounts_file", default=DEFAULT_ACCOUNTS_FILE
    )
    report_file = _resolve_option(report_file, config_values, "report_file")
    image_timeout_minutes = _resolve_number(
        image_timeout_minutes, config_values, "image_timeout_minutes", DEFAULT_IMAGE_TIMEOUT_MINUTES, convert=float
    )
    image_poll_seconds = _resolve_number(
        image_poll_seconds, config_values, "image_poll_seconds", DEFAULT_IMAGE_POLL_SECONDS, convert=float
    )
    update_command = _resolve_option(update_command, config_values, "update_command")
    update_timeout_minutes = _resolve_number(
        update_timeout_minutes, config_values, "update_timeout_minutes", DEFAULT_UPDATE_TIMEOUT_MINUTES, convert=float
    )
    update_delay_seconds = _resolve_number(
        update_delay_seconds, config_values, "update_delay_seconds", DEFAULT_UPDATE_DELAY_SECONDS, convert=float
    )
    use_private_address = bool(
        _resolve_option(use_private_address, config_values, "use_private_address", default=False)
    )
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    if not account:
        raise click.ClickException("Missing required option '--account' (or provide it in config).")

    _configure_logging(logger, verbose, log_file)

    try:
        deployer = Deployer(
            group_name=group_name,
            account=account,
            instance_warmup=instance_warmup,
            healthy_percentage=healthy_percentage,
            accounts_file=accounts_file,
            report_file=report_file,
            image_timeout_minutes=image_timeout_minutes,
            image_poll_seconds=image_poll_seconds,
            update_command=update_command,
            update_timeout_minutes=update_timeout_minutes,
            update_delay_seconds=update_delay_seconds,
            use_private_address=use_private_address,
        )
    except DeployerError as exc:
        raise click.ClickException(str(exc)) from exc

    previous_handler = _install_cancel_handler(deployer)
    try:
        exit_code = deployer.run()
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    raise SystemExit(exit_code)


@main.group()
def accounts():
    """Manage stored AWS credentials."""


def _account_store(accounts_file):
    return AccountStore(accounts_file or DEFAULT_ACCOUNTS_FILE, logger=logging.getLogger("asgroll"))


@accounts.command("add")
@click.argument("name")
@click.option("--access-key", required=True, help="AWS access key id.")
@click.option("--secret-key", required=True, prompt=True, hide_input=True, help="AWS secret access key.")
@click.option("--region", required=True, help="AWS region, e.g. us-east-1.")
@click.option("--accounts-file", required=False, type=click.Path(), help="Path to the accounts file.")
def add_account(name, access_key, secret_key, region, accounts_file):
    """Store or replace the credential for NAME."""
    try:
        _account_store(accounts_file).add(
            name,
            Credential(access_key=access_key, secret_key=secret_key, region=region),
        )
    except DeployerError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Account '{name}' saved.[/green]")


@accounts.command("list")
@click.option("--accounts-file", required=False, type=click.Path(), help="Path to the accounts file.")
def list_accounts(accounts_file):
    """List stored account names."""
    try:
        names = _account_store(accounts_file).list_accounts()
    except DeployerError as exc:
        raise click.ClickException(str(exc)) from exc

    if not names:
        console.print("[dim]No accounts stored.[/dim]")
        return
    for name in names:
        click.echo(name)


@accounts.command("remove")
@click.argument("name")
@click.option("--accounts-file", required=False, type=click.Path(), help="Path to the accounts file.")
def remove_account(name, accounts_file):
    """Remove the credential stored for NAME."""
    try:
        removed = _account_store(accounts_file).remove(name)
    except DeployerError as exc:
        raise click.ClickException(str(exc)) from exc

    if not removed:
        raise click.ClickException(f"Account '{name}' not found.")
    console.print(f"[green]Account '{name}' removed.[/green]")


if __name__ == "__main__":
    main()
