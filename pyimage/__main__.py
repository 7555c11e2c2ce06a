import logging

import click
import httpx

import pyimage.oci
from pyimage.authn import BadDockerConfig, Basic
from pyimage.name import BadReference


class Session:
    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        insecure: bool = False,
        timeout: float = 30.0,
        debug: bool = False,
    ):
        if debug:
            logging.basicConfig(level=logging.DEBUG)
        self.auth = None
        if username is not None:
            self.auth = Basic(username=username, password=password or "")
        self.insecure = insecure
        self.timeout = httpx.Timeout(timeout)

    def open(self, reference: str) -> pyimage.oci.RemoteImage:
        return pyimage.oci.open_image(
            reference, auth=self.auth, insecure=self.insecure, timeout=self.timeout
        )


@click.group()
@click.option("-u", "--username", help="Username", envvar="PYIMAGE_USERNAME")
@click.option("-p", "--password", help="Password", envvar="PYIMAGE_PASSWORD")
@click.option("--insecure", help="Use plain http", is_flag=True)
@click.option("--timeout", help="Request timeout in seconds", type=float, default=30.0)
@click.option("-d", "--debug", help="Debug output", is_flag=True)
@click.pass_context
def cli(ctx, username, password, insecure, timeout, debug):
    ctx.obj = Session(
        username=username,
        password=password,
        insecure=insecure,
        timeout=timeout,
        debug=debug,
    )


def _dump(ctx, reference: str, fetch) -> None:
    obj: Session = ctx.ensure_object(Session)
    try:
        with obj.open(reference) as image:
            document = fetch(image)
    except (
        BadReference,
        BadDockerConfig,
        pyimage.oci.RegistryError,
        httpx.HTTPError,
    ) as e:
        raise click.ClickException(f"{reference}: {e}") from e
    click.echo(document.model_dump_json(exclude_none=True, by_alias=True))


@cli.command()
@click.argument("reference")
@click.pass_context
def config(ctx, reference: str):
    """Print the config file of an image."""
    _dump(ctx, reference, lambda image: image.config_file())


@cli.command()
@click.argument("reference")
@click.pass_context
def manifest(ctx, reference: str):
    """Print the manifest of an image."""
    _dump(ctx, reference, lambda image: image.manifest())


if __name__ == "__main__":
    cli()
