"""Adorn CLI - Main Entry Point.

Commands:
    manifest - Build the route manifest of an entry module
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from adorn import __version__
from adorn.config import load_config
from adorn.faults import Fault
from adorn.manifest import build_manifest, generate_openapi, render_manifest
from adorn.response import dumps

from . import __cli_name__


def _error(message: str) -> None:
    """Print error message in red to stderr."""
    click.echo(click.style(message, fg="red"), err=True)


@click.group()
@click.version_option(version=__version__, prog_name=__cli_name__)
@click.option('--verbose', '-v', is_flag=True, help='Log build steps to stderr')
@click.pass_context
def cli(ctx, verbose: bool):
    """Build route manifests and OpenAPI documents from controllers."""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


# ============================================================================
# Commands
# ============================================================================

@cli.command('manifest')
@click.argument('entry', required=False)
@click.option('--out-dir', type=click.Path(), default=None, help='Build cache directory (default: .adorn)')
@click.option('--no-cache', is_flag=True, help='Always re-run static analysis')
@click.option('--openapi', 'as_openapi', is_flag=True, help='Print the OpenAPI document instead')
@click.pass_context
def manifest(ctx, entry: Optional[str], out_dir: Optional[str], no_cache: bool, as_openapi: bool):
    """
    Print the manifest of ENTRY as JSON.

    ENTRY is the path of the module exposing the controllers, relative
    to the working directory.

    Examples:
      adorn manifest app.py
      adorn manifest app.py --openapi > openapi.json
    """
    if not entry:
        click.echo(ctx.get_usage(), err=True)
        _error("Missing argument 'ENTRY'.")
        sys.exit(1)

    cwd = Path.cwd()
    try:
        config = load_config(cwd)
        result = build_manifest(
            entry,
            cwd=cwd,
            out_dir=out_dir,
            use_cache=not no_cache,
            config=config,
        )
    except Fault as e:
        _error(f"[{e.code}] {e.message}")
        sys.exit(1)
    except Exception as e:
        _error(f"Build failed: {type(e).__name__}: {e}")
        sys.exit(1)

    if as_openapi:
        click.echo(dumps(generate_openapi(result.routes, config), indent=True, sort_keys=True).decode("utf-8"))
    else:
        click.echo(render_manifest(result.manifest))


def main():
    """Entry point for `adorn` command."""
    cli(obj={})


if __name__ == '__main__':
    main()
