import asyncio
import functools
import logging
import logging.config
from typing import Any

import click
import yaml
from pydantic_settings import BaseSettings

from acmeclient.client import AcmeClient
from acmeclient.client.exceptions import AcmeClientException
from acmeclient.models import ChallengeType, Dns01Data, RevocationReason

logger = logging.getLogger(__name__)

VERBOSITY_LEVELS = {
    "off": logging.WARNING,
    "status": logging.INFO,
    "debug": logging.DEBUG,
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}
"""Maps the legacy verbosity values to log levels."""


class Config(BaseSettings, extra="forbid"):
    client: AcmeClient.Config = AcmeClient.Config()
    logging: Any = None
    verbosity: str | int | None = None


def load_config(config_file: str | None) -> Config:
    if not config_file:
        return Config()

    with open(config_file) as stream:
        config = yaml.safe_load(stream) or {}

    return Config.model_validate(config)


def configure_logging(config: Config) -> None:
    if config.logging:
        logging.config.dictConfig(config.logging)
        return

    verbosity = config.verbosity if config.verbosity is not None else "status"
    if verbosity not in VERBOSITY_LEVELS:
        raise click.BadParameter(
            f"verbosity must be one of off, status, debug, 0, 1 or 2, not {verbosity}"
        )
    logging.basicConfig(level=VERBOSITY_LEVELS[verbosity])


def run(coro):
    try:
        return asyncio.run(coro)
    except AcmeClientException as e:
        raise click.ClickException(str(e))


def order_options(f):
    @click.option("--basename", "-b", help="Preferred common name, defaults to the first domain.")
    @click.option("--key-type", "-k", help="Certificate key type, e.g. rsa-2048 or ec-384.")
    @click.option("--not-before", default="", help="Start of validity, YYYY-MM-DDThh:mm:ssZ.")
    @click.option("--not-after", default="", help="End of validity, YYYY-MM-DDThh:mm:ssZ.")
    @click.argument("domains", nargs=-1, required=True)
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return f(*args, **kwargs)

    return wrapper


async def open_order(config: Config, domains, basename, key_type, not_before, not_after):
    client = AcmeClient.from_config(config.client)
    try:
        await client.start()
        order = await client.get_or_create_order(
            basename or domains[0],
            list(domains),
            key_type or config.client.key_type,
            not_before,
            not_after,
        )
    except BaseException:
        await client.close()
        raise
    return client, order


@click.group()
@click.option("--config-file", envvar="ACMECLIENT_CONFIG_FILE", type=click.Path(exists=True))
@click.pass_context
def main(ctx, config_file):
    """ACME client for requesting, renewing and revoking certificates."""
    config = load_config(config_file)
    configure_logging(config)
    ctx.obj = config


@main.command()
@click.pass_obj
def register(config: Config):
    """Looks up or registers the account."""

    async def _register():
        async with AcmeClient.from_config(config.client) as client:
            account = client.account
            click.echo(f"Account {account.url} is {account.status.value}")
            for contact in account.contact or ():
                click.echo(f"  {contact}")

    run(_register())


@main.command()
@order_options
@click.option(
    "--challenge-type",
    "-c",
    type=click.Choice([t.value for t in ChallengeType]),
    default=ChallengeType.HTTP_01.value,
    show_default=True,
)
@click.pass_obj
def order(config: Config, domains, basename, key_type, not_before, not_after, challenge_type):
    """Creates or loads an order and lists its pending challenges."""

    async def _order():
        client, order = await open_order(config, domains, basename, key_type, not_before, not_after)
        try:
            click.echo(f"Order {order.url} is {order.status.value}")
            for data in order.authorizations.pending(challenge_type):
                if isinstance(data, Dns01Data):
                    click.echo(f"{data.record_name} TXT {data.dns_digest}")
                else:
                    click.echo(
                        f"http://{data.identifier}/.well-known/acme-challenge/{data.filename} {data.content}"
                    )
        finally:
            await client.close()

    run(_order())


@main.command()
@order_options
@click.option(
    "--challenge-type",
    "-c",
    type=click.Choice([t.value for t in ChallengeType]),
    default=ChallengeType.HTTP_01.value,
    show_default=True,
)
@click.option("--local-check/--no-local-check", default=True, show_default=True)
@click.option("--timeout", type=float, help="Seconds to wait for each authorization.")
@click.pass_obj
def verify(
    config: Config, domains, basename, key_type, not_before, not_after, challenge_type, local_check, timeout
):
    """Asks the server to validate the pending challenges of the order."""

    async def _verify():
        client, order = await open_order(config, domains, basename, key_type, not_before, not_after)
        try:
            for domain in domains:
                accepted = await order.authorizations.verify(domain, challenge_type, local_check, timeout)
                click.echo(f"{domain}: {'submitted' if accepted else 'not submitted'}")
        finally:
            await client.close()

    run(_verify())


@main.command()
@order_options
@click.option("--preferred-chain", help="Issuer common name of the preferred chain.")
@click.pass_obj
def finalize(config: Config, domains, basename, key_type, not_before, not_after, preferred_chain):
    """Finalizes the order and downloads the certificate."""

    async def _finalize():
        client, order = await open_order(config, domains, basename, key_type, not_before, not_after)
        try:
            if not order.is_finalized() and not await order.finalize():
                raise click.ClickException(f"Order {order.url} is {order.status.value}, cannot finalize")
            if not await order.get_certificate(preferred_chain or config.client.preferred_chain):
                raise click.ClickException("The certificate is not ready yet, try again later")
            click.echo(f"Certificate of order {order.url} stored")
        finally:
            await client.close()

    run(_finalize())


@main.command()
@order_options
@click.option(
    "--reason",
    type=click.Choice([r.name for r in RevocationReason]),
    default=RevocationReason.unspecified.name,
    show_default=True,
)
@click.pass_obj
def revoke(config: Config, domains, basename, key_type, not_before, not_after, reason):
    """Revokes the order's certificate."""

    async def _revoke():
        client, order = await open_order(config, domains, basename, key_type, not_before, not_after)
        try:
            if not await order.revoke_certificate(RevocationReason[reason]):
                raise click.ClickException("The certificate could not be revoked")
            click.echo("Certificate revoked")
        finally:
            await client.close()

    run(_revoke())


@main.command("update-contact")
@click.argument("contact", nargs=-1)
@click.pass_obj
def update_contact(config: Config, contact):
    """Replaces the account's contact addresses."""

    async def _update():
        async with AcmeClient.from_config(config.client) as client:
            account = await client.update_account(list(contact))
            click.echo(f"Contacts of {account.url}: {', '.join(account.contact or ())}")

    run(_update())


@main.command()
@click.pass_obj
def rollover(config: Config):
    """Replaces the account key."""

    async def _rollover():
        async with AcmeClient.from_config(config.client) as client:
            account = await client.change_account_keys()
            click.echo(f"Key of account {account.url} changed")

    run(_rollover())


@main.command()
@click.confirmation_option(prompt="Really deactivate the account?")
@click.pass_obj
def deactivate(config: Config):
    """Deactivates the account. This cannot be undone."""

    async def _deactivate():
        async with AcmeClient.from_config(config.client) as client:
            await client.deactivate_account()
            click.echo("Account deactivated")

    run(_deactivate())


if __name__ == "__main__":
    main()
