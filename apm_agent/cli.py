# apm_agent/cli.py - Command-line interface
"""
Command-line interface for the APM agent.
"""

import builtins
import click
import os
import sys

from apm_agent.utils.logger import setup_logging
from apm_agent.utils.config import Config
from apm_agent.utils.helpers import check_prerequisites


def load_script(path: str):
    """Compile a script file the way `python path` does"""
    with open(path, 'rb') as f:
        return compile(f.read(), path, 'exec', dont_inherit=True)


def script_globals(path: str) -> dict:
    """Namespace of a script run as __main__"""
    return {
        '__name__': '__main__',
        '__file__': path,
        '__builtins__': builtins,
        '__doc__': None,
        '__loader__': None,
        '__package__': None,
        '__spec__': None,
        '__cached__': None,
    }


@click.group()
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Agent log level (default: logging.level)')
@click.option('--log-file', type=click.Path(), help='Log file path')
@click.option('--config', 'config_file', type=click.Path(exists=True), help='YAML configuration file')
@click.pass_context
def cli(ctx, log_level, log_file, config_file):
    """
    APM agent

    Reports timing, resource usage and faults of Python programs to an APM collector.
    """
    ctx.ensure_object(dict)

    cfg = Config.from_env(config_file)
    setup_logging(level=log_level or cfg.get('logging.level', 'WARNING'), log_file=log_file)

    ctx.obj['config'] = cfg


@cli.command(context_settings={'ignore_unknown_options': True, 'allow_interspersed_args': False})
@click.argument('script', type=click.Path(exists=True, dir_okay=False))
@click.argument('script_args', nargs=-1, type=click.UNPROCESSED)
@click.option('--service-name', help='Service name reported to the collector')
@click.option('--host', help='Collector base URL')
@click.option('--secret-token', help='Bearer token for the collector')
@click.option('--enable/--disable', default=None, help='Override apm.enable')
@click.option('--dry-run', is_flag=True, help='Print the batch instead of posting it')
@click.option('--raw', is_flag=True, help='With --dry-run, print raw NDJSON')
@click.pass_context
def run(ctx, script, script_args, service_name, host, secret_token, enable, dry_run, raw):
    """
    Run a Python script as one reported execution.

    Example:
        apm-agent run --service-name cron jobs/cleanup.py --days 7
        apm-agent run --dry-run --enable --service-name test script.py
    """
    from apm_agent.agent import Agent
    from apm_agent.collector.context import RequestAttributes
    from apm_agent.exporters.stdout import ConsoleExporter

    cfg = ctx.obj['config']

    # Override config with CLI options
    if service_name:
        cfg.set('apm.service_name', service_name)
    if host:
        cfg.set('apm.host', host)
    if secret_token:
        cfg.set('apm.secret_token', secret_token)
    if enable is not None:
        cfg.set('apm.enable', enable)

    exporter = ConsoleExporter(raw=raw) if dry_run else None
    agent = Agent(cfg, exporter=exporter)
    agent.start()

    script_path = os.path.abspath(script)
    sys.argv = [script, *script_args]
    sys.path.insert(0, os.path.dirname(script_path))

    exit_code = 0
    agent.begin_execution(RequestAttributes.for_script(script_path))
    try:
        exec(load_script(script_path), script_globals(script_path))
    except SystemExit as e:
        exit_code = e.code
    except BaseException:
        # Same path the interpreter takes for an uncaught exception
        sys.excepthook(*sys.exc_info())
        exit_code = 1
    finally:
        result = agent.end_execution()
        agent.stop()

    if result is not None and not result.delivered:
        click.echo(f"Report not delivered: {result.error}", err=True)

    sys.exit(exit_code)


@cli.command()
@click.pass_context
def check(ctx):
    """
    Check that the agent can report.

    Verifies:
    - Agent enabled and service name set
    - CPU counters readable
    - Collector reachable
    """
    all_passed = True

    click.echo("Checking prerequisites...")
    for name, passed in check_prerequisites(ctx.obj['config']):
        status = "✓" if passed else "✗"
        click.echo(f"  {status} {name}")
        all_passed = all_passed and passed

    if all_passed:
        click.echo("\n✓ All prerequisites met!")
        sys.exit(0)
    else:
        click.echo("\n✗ Some prerequisites are missing")
        sys.exit(1)


@cli.command('config')
@click.option('--show-secrets', is_flag=True, help='Do not mask the secret token')
@click.pass_context
def show_config(ctx, show_secrets):
    """
    Show the effective configuration.
    """
    click.echo(ctx.obj['config'].to_yaml(redact=not show_secrets), nl=False)


if __name__ == '__main__':
    cli(obj={})
