"""
Command line entry point for SDN Redirect.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import click

from sdnredirect import __version__
from sdnredirect.config import get_config
from sdnredirect.logging_config import setup_logging
from sdnredirect.redirection.cli import redirect


@click.group()
@click.version_option(__version__, prog_name="sdnredirect")
@click.option("--backend", "backend_url", envvar="SDNREDIRECT_BACKEND",
              help="Backend URL: memory://, sqlite:///path.db or the Neutron endpoint")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
              help="Log level (default from SDNREDIRECT_LOG_LEVEL or INFO)")
@click.option("--log-file", help="Also write logs to this file")
@click.pass_context
def main(ctx, backend_url, log_level, log_file):
    """SDN Redirect - steer traffic through inspection devices."""
    config = get_config()
    setup_logging(
        level=log_level or config.log_level,
        log_file=log_file,
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["backend_url"] = backend_url or config.backend_url


main.add_command(redirect)


if __name__ == "__main__":
    main()
