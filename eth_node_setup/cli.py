import logging
import sys
from pathlib import Path

import click
import yaml
from tabulate import tabulate

from . import __version__
from .backup import create_backup, prune_backups
from .config import ConfigError, NodeConfig, get_config_path, is_encrypted, load_config
from .config_validator import CRITICAL, INFO, WARNING, has_critical, validate_config
from .context import ProvisionContext
from .crypto import decrypt_to_file, encrypt_file, password_from_env
from .logging_setup import setup_logging
from .node_status import get_node_status
from .provisioner import FAILED, OK, SKIPPED, Provisioner, StepFailed
from .runner import CommandRunner, ProvisioningError
from .setup_wizard import SetupWizard, show_next_steps, write_config

logger = logging.getLogger(__name__)

STATUS_ICONS = {OK: '✅', SKIPPED: '⏭️', FAILED: '❌'}
SEVERITY_ICONS = [(CRITICAL, 'CRITICAL', '🚨'), (WARNING, 'WARNING', '⚠️'), (INFO, 'INFO', 'ℹ️')]


def error_exit(message):
    """Log the error and terminate with a non-zero status"""
    logger.error(message)
    click.secho(f"❌ {message}", fg='red', err=True)
    sys.exit(1)


def _prompt_password():
    return click.prompt("🔒 Configuration password", hide_input=True)


def _load(ctx) -> NodeConfig:
    path = ctx.obj['config_path']
    try:
        return load_config(path, password_callback=_prompt_password)
    except (ConfigError, OSError) as e:
        error_exit(str(e))


def _print_issues(issues):
    for severity, label, emoji in SEVERITY_ICONS:
        selected = [i for i in issues if i.severity == severity]
        if selected:
            click.echo(f"\n{emoji} {label} ({len(selected)} issues):")
            for issue in selected:
                click.echo(f"   • {issue.key}: {issue.description}")
                if issue.current_value not in (None, ''):
                    click.echo(f"     Current: {issue.current_value}")
                if issue.suggested_value not in (None, ''):
                    click.echo(f"     💡 Suggested: {issue.suggested_value}")


def _print_report(report):
    rows = []
    for result in report.results:
        icon = STATUS_ICONS.get(result.status, '⏸️')
        duration = f"{result.duration:.1f}s" if result.status in (OK, FAILED) else '-'
        rows.append([f"{icon} {result.name}", result.status, duration, result.detail])
    click.echo(tabulate(rows, headers=['Step', 'Status', 'Time', 'Detail'], tablefmt='fancy_grid'))

    counts = report.counts()
    click.echo(f"\n📊 SUMMARY: {counts.get(OK, 0)} ok, {counts.get(SKIPPED, 0)} skipped, "
               f"{counts.get(FAILED, 0)} failed")
    if report.installed_versions:
        installed = ', '.join(f"{name} {version}" for name, version in report.installed_versions.items())
        click.echo(f"📦 Installed: {installed}")


def _save_report(config, report):
    path = Path(config.log_file).parent / 'last-run.yaml'
    try:
        report.write(path)
        click.echo(f"📄 Run report saved to: {path}")
    except OSError as e:
        logger.warning(f"Could not save run report to {path}: {e}")


@click.group(invoke_without_command=True)
@click.option('--config', '-c', 'config_path', type=click.Path(dir_okay=False),
              help='Configuration file (default: ./eth-node.env, $ETH_NODE_SETUP_CONFIG, /etc/eth-node-setup)')
@click.option('--verbose', '-v', is_flag=True, help='Show debug output')
@click.version_option(__version__, prog_name='eth-node-setup')
@click.pass_context
def cli(ctx, config_path, verbose):
    """🚀 Ethereum Node Setup: provision execution, consensus and validator clients"""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path or str(get_config_path())
    ctx.obj['verbose'] = verbose
    setup_logging(None, verbose)

    # Without a subcommand, provision everything
    if ctx.invoked_subcommand is None:
        ctx.invoke(run_cmd)


@cli.command(name='run')
@click.option('--dry-run', is_flag=True, help='Show what would be done without changing the system')
@click.option('--skip', multiple=True, metavar='STEP', help='Leave out a step (repeatable, see "plan")')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def run_cmd(ctx, dry_run, skip, yes):
    """Provision this host according to the configuration."""
    config = _load(ctx)
    setup_logging(config.log_file, ctx.obj['verbose'])

    issues = validate_config(config, ctx.obj['config_path'])
    if issues:
        _print_issues(issues)
    if has_critical(issues):
        error_exit("Configuration has critical issues; fix them and run again")

    runner = CommandRunner(dry_run=dry_run)
    try:
        provision_ctx = ProvisionContext.create(config, runner, config_path=ctx.obj['config_path'])
    except ValueError as e:
        error_exit(str(e))
    provisioner = Provisioner(provision_ctx)

    click.echo(f"\n🔧 {config.network}: {config.execution_client} + {config.consensus_client}"
               f"{' (dry run)' if dry_run else ''}")
    if not dry_run and not yes:
        enabled = [entry['step'] for entry in provisioner.plan(skip) if entry['enabled']]
        click.echo(f"   {len(enabled)} steps will run: {', '.join(enabled)}")
        if not click.confirm("Proceed with provisioning this host?", default=False):
            raise click.Abort()

    try:
        report = provisioner.run(skip=skip)
    except StepFailed as e:
        _print_report(e.report)
        if not dry_run:
            _save_report(config, e.report)
        error_exit(str(e))
    except ProvisioningError as e:
        error_exit(str(e))

    _print_report(report)
    if dry_run:
        click.echo(f"\n📝 Planned actions ({len(runner.history)}):")
        for record in runner.history:
            click.echo(f"   [{record.kind}] {record.target}")
    else:
        _save_report(config, report)

    if report.notes:
        click.echo("\n💡 Next steps:")
        for note in report.notes:
            click.echo(f"   • {note}")
    click.echo("\n🎉 Provisioning complete!" if not dry_run else "\n✅ Dry run complete")


@cli.command(name='plan')
@click.option('--skip', multiple=True, metavar='STEP', help='Leave out a step (repeatable)')
@click.option('--format', 'output_format', type=click.Choice(['table', 'yaml']), default='table',
              show_default=True)
@click.pass_context
def plan_cmd(ctx, skip, output_format):
    """Show the ordered steps and which ones the configuration enables."""
    config = _load(ctx)
    try:
        provision_ctx = ProvisionContext.create(config, CommandRunner(dry_run=True))
    except ValueError as e:
        error_exit(str(e))
    plan = Provisioner(provision_ctx).plan(skip)

    if output_format == 'yaml':
        click.echo(yaml.safe_dump(plan, default_flow_style=False, sort_keys=False))
        return

    rows = [[entry['order'], entry['step'], '✅' if entry['enabled'] else '⏭️',
             entry['description'] if entry['enabled'] else entry['reason']] for entry in plan]
    click.echo(tabulate(rows, headers=['#', 'Step', 'Run', 'Description / skip reason'], tablefmt='fancy_grid'))


@cli.command(name='status')
@click.pass_context
def status_cmd(ctx):
    """📊 Show service states and client sync status."""
    config = _load(ctx)
    click.echo("🔄 Fetching live data from the node...")
    status = get_node_status(config)

    service_rows = [[name, ('✅ ' if state == 'active' else '❌ ') + state]
                    for name, state in status['services'].items()]
    click.echo(tabulate(service_rows, headers=['Service', 'State'], tablefmt='fancy_grid'))

    client_rows = []
    for layer in ('execution', 'consensus'):
        info = status[layer]
        client_rows.append([layer.title(), info['client'], info['version'], info['sync'], info['peers']])
    click.echo(tabulate(client_rows, headers=['Layer', 'Client', 'Version', 'Sync', 'Peers'],
                        tablefmt='fancy_grid'))
    if 'mev_boost' in status:
        click.echo(f"⚡ MEV-boost: {status['mev_boost']}")


@cli.group(name='config')
def config_group():
    """🔧 Create, inspect, validate and encrypt the configuration"""
    pass


@config_group.command(name='init')
@click.option('--path', 'target', type=click.Path(dir_okay=False), help='Where to write the file')
@click.option('--force', is_flag=True, help='Overwrite an existing file')
@click.option('--interactive', '-i', is_flag=True, help='Answer a few questions instead of using defaults')
@click.pass_context
def config_init(ctx, target, force, interactive):
    """Write a default (or interactively built) configuration file."""
    path = Path(target or ctx.obj['config_path'])
    if is_encrypted(path):
        path = path.with_name(path.name[:-len('.enc')])
    if path.exists() and not force:
        error_exit(f"{path} already exists (use --force to overwrite)")

    config = SetupWizard().run_interactive_setup() if interactive else NodeConfig.defaults()
    try:
        write_config(config, path)
    except OSError as e:
        error_exit(f"Cannot write {path}: {e}")
    click.echo(f"✅ Created: {path}")
    show_next_steps(path)


@config_group.command(name='show')
@click.pass_context
def config_show(ctx):
    """Show the effective configuration with secrets masked."""
    config = _load(ctx)
    rows = list(config.masked().items())
    click.echo(f"📄 {ctx.obj['config_path']}")
    click.echo(tabulate(rows, headers=['Key', 'Value'], tablefmt='simple'))


@config_group.command(name='validate')
@click.pass_context
def config_validate(ctx):
    """✅ Validate the configuration and report issues."""
    config = _load(ctx)
    click.echo("✅ Starting configuration validation...")
    issues = validate_config(config, ctx.obj['config_path'])

    if not issues:
        click.echo("🎉 Configuration is valid - no issues detected!")
        return

    click.echo(f"\n⚠️  Found {len(issues)} configuration issues:")
    _print_issues(issues)
    if has_critical(issues):
        sys.exit(1)


@config_group.command(name='encrypt')
@click.option('--keep-plaintext', is_flag=True, help='Do not delete the plaintext file')
@click.pass_context
def config_encrypt(ctx, keep_plaintext):
    """🔒 Encrypt the configuration file (AES-256-CBC via openssl)."""
    path = Path(ctx.obj['config_path'])
    if is_encrypted(path):
        error_exit(f"{path} is already encrypted")
    if not path.exists():
        error_exit(f"Configuration file not found: {path}")

    password = password_from_env() or click.prompt("🔒 New configuration password", hide_input=True,
                                                   confirmation_prompt=True)
    try:
        target = encrypt_file(path, password, keep_plaintext=keep_plaintext)
    except ConfigError as e:
        error_exit(str(e))
    click.echo(f"✅ Encrypted configuration: {target}")
    if not keep_plaintext:
        click.echo(f"🗑️  Removed plaintext: {path}")


@config_group.command(name='decrypt')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Plaintext output path')
@click.pass_context
def config_decrypt(ctx, output):
    """🔓 Decrypt the configuration for editing."""
    path = Path(ctx.obj['config_path'])
    if not path.exists():
        error_exit(f"Configuration file not found: {path}")

    password = password_from_env() or _prompt_password()
    try:
        target = decrypt_to_file(path, password, output)
    except ConfigError as e:
        error_exit(str(e))
    click.echo(f"✅ Decrypted configuration: {target}")
    click.echo("💡 Re-encrypt after editing: eth-node-setup config encrypt")


@cli.command(name='backup')
@click.option('--dest', required=True, type=click.Path(file_okay=False), help='Backup directory')
@click.option('--retention-days', type=click.IntRange(min=1), default=14, show_default=True,
              help='Delete archives older than this')
@click.option('--include', 'includes', multiple=True, required=True, type=click.Path(),
              help='Path to archive (repeatable)')
def backup_cmd(dest, retention_days, includes):
    """💾 Archive node configuration and prune old backups (run from cron)."""
    try:
        archive = create_backup(dest, includes)
        removed = prune_backups(dest, retention_days)
    except OSError as e:
        error_exit(f"Backup failed: {e}")
    click.echo(f"✅ Backup written: {archive}")
    if removed:
        click.echo(f"🗑️  Pruned {len(removed)} old backups")
