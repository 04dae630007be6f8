"""
CLI interface for chainorch.

Commands:
    chainorch init                 create ~/.config/chainorch/config.yaml
    chainorch deploy               full reconciliation of an environment
    chainorch registry             registry import and cache rebuild only
    chainorch pending list         show queued owner actions
    chainorch plan                 print the planned deployment order

Exit code is 1 on any fatal error and 0 otherwise, including runs that only
queued owner actions.
"""

import asyncio

import click

from chainorch import __version__
from chainorch.errors import ChainorchError, ConfigError


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'chainorch init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _setup_logging(config) -> None:
    from chainorch.utils import setup_logging

    setup_logging(
        log_file=config.get_log_file_path(),
        log_level=config.get_log_level(),
        log_format=config.get_log_format(),
        console_output=config.should_log_to_console(),
    )


def _print_report(report) -> None:
    prefix = "[DRY-RUN] " if report.dry_run else ""
    if report.newly_deployed:
        click.echo(f"{prefix}Newly deployed ({len(report.newly_deployed)}):")
        for name in report.newly_deployed:
            click.echo(f"  {name}")
    counts = ", ".join(f"{k}={v}" for k, v in sorted(report.outcomes.items())) or "none"
    click.echo(f"{prefix}Step outcomes: {counts}")
    if report.registry is not None and report.registry.rebuild_batches:
        click.echo(f"{prefix}Cache rebuild batches: {report.registry.rebuild_batches}")
    if report.registry is not None and report.registry.skipped:
        click.echo(f"⚠ Skipped rebuild (unresolved requirements): {', '.join(report.registry.skipped)}")
    if report.snapshot is not None and report.snapshot.refreshed:
        triggers = ", ".join(sorted(t.value for t in report.snapshot.triggers))
        click.echo(f"{prefix}Debt snapshot refreshed ({triggers})")
    if report.pending:
        click.echo(f"Pending owner actions ({len(report.pending)}):")
        for key in report.pending:
            click.echo(f"  {key}")
    if report.halted:
        click.echo(
            "⚠ Addresses have not been imported into the resolver; owner actions "
            "must be performed before re-running."
        )
    else:
        click.echo(f"✓ {report.network} reconciled")


def _run(config, network, options, only=None):
    from chainorch.pipeline import build_context, run_pipeline

    context = build_context(config, network=network, options=options)
    return asyncio.run(run_pipeline(context, only=only))


@click.group()
@click.version_option(version=__version__, prog_name="chainorch")
@click.pass_context
def main(ctx):
    """
    chainorch - Contract deployment and reconciliation.

    Deploys a graph of interdependent contracts and keeps registry bindings,
    resolver caches and the debt snapshot consistent.
    """
    from chainorch.config import load_config

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config()
    except ConfigError as e:
        # init works without a config; other commands check ctx.obj
        ctx.obj["config_error"] = str(e)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize chainorch configuration."""
    from chainorch.config import get_chainorch_home
    import yaml

    home = get_chainorch_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = {
        "deployments_root": str(home / "deployments"),
        "build_path": "build",
        "network": "local",
        "account": None,
        "backend_factory": "chainorch.backends.memory:create_backend",
        "concurrency": 10,
        "cost_profile": "standard",
        "manage_nonces": False,
        "non_upgradeable": [],
        "env_file": str(home / ".env"),
        "logging": {"level": "INFO", "format": "pretty", "console": True},
    }
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# CHAINORCH_ACCOUNT=0x...\n# CHAINORCH_PROVIDER_URL=...\n")

    click.echo(f"Initialized chainorch config at {cfg_path}")


@main.command("deploy")
@click.option("--network", "-n", help="Target environment (defaults to config network)")
@click.option("--dry-run", is_flag=True, help="Simulate: no submissions, nothing persisted")
@click.option("--concurrency", type=click.IntRange(min=1), help="Read fan-out cap")
@click.option("--manage-nonces/--no-manage-nonces", default=None, help="Assign nonces locally")
@click.option("--fresh-deploy", is_flag=True, help="Start from an empty deployment record")
@click.option("--force-redeploy", multiple=True, metavar="NAME", help="Redeploy NAME even if recorded")
@click.option("--ignore-safety-checks", is_flag=True, help="Allow redeploying non-upgradeable resources")
@click.option("--interactive", is_flag=True, help="Ask the operator instead of queuing owner actions")
@click.pass_context
def deploy(ctx, network, dry_run, concurrency, manage_nonces, fresh_deploy,
           force_redeploy, ignore_safety_checks, interactive):
    """
    Deploy and reconcile an environment.

    Examples:

        chainorch deploy --network kovan

        chainorch deploy --network mainnet --dry-run

        chainorch deploy --force-redeploy Issuer --force-redeploy Exchanger
    """
    from chainorch.pipeline import RunOptions

    config = _require_config(ctx)
    _setup_logging(config)

    if dry_run:
        click.echo("=" * 50)
        click.echo("=== DRY RUN MODE === (no submissions)")
        click.echo("=" * 50)

    options = RunOptions(
        dry_run=dry_run,
        concurrency=concurrency,
        manage_nonces=manage_nonces,
        fresh_deploy=fresh_deploy,
        force_redeploy=tuple(force_redeploy),
        ignore_safety_checks=ignore_safety_checks,
        interactive=interactive,
    )
    try:
        report = _run(config, network, options)
    except ChainorchError as e:
        click.echo(f"✗ Deploy failed: {e}", err=True)
        raise SystemExit(1)

    _print_report(report)


@main.command("registry")
@click.option("--network", "-n", help="Target environment (defaults to config network)")
@click.option("--dry-run", is_flag=True, help="Simulate: no submissions, nothing persisted")
@click.option("--concurrency", type=click.IntRange(min=1), help="Read fan-out cap")
@click.pass_context
def registry(ctx, network, dry_run, concurrency):
    """Import registry bindings and rebuild caches for recorded targets."""
    from chainorch.pipeline import RunOptions

    config = _require_config(ctx)
    _setup_logging(config)

    options = RunOptions(dry_run=dry_run, concurrency=concurrency)
    try:
        report = _run(config, network, options, only="registry")
    except ChainorchError as e:
        click.echo(f"✗ Registry reconciliation failed: {e}", err=True)
        raise SystemExit(1)

    _print_report(report)


@main.command("plan")
@click.option("--network", "-n", help="Target environment (defaults to config network)")
@click.pass_context
def plan(ctx, network):
    """Print the planned deployment order."""
    from chainorch.coordinator import wants_deploy
    from chainorch.manifest import load_manifest
    from chainorch.pipeline import CONFIG_FILENAME, DEPLOYMENT_FILENAME
    from chainorch.planner import plan_deployment
    from chainorch.stores import FileDeploymentStore, FileResourceConfigStore

    config = _require_config(ctx)
    env_dir = config.environment_dir(network)
    try:
        manifest = load_manifest(env_dir, FileResourceConfigStore(env_dir / CONFIG_FILENAME))
        record = FileDeploymentStore(env_dir / DEPLOYMENT_FILENAME).load()
        planned = plan_deployment(manifest.resources, known=record.targets.keys())
    except ChainorchError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    for index, spec in enumerate(planned, start=1):
        action = "deploy" if wants_deploy(spec, record) else "reuse"
        deps = f"  <- {', '.join(sorted(spec.dependencies))}" if spec.dependencies else ""
        click.echo(f"{index:3d}. {spec.name} [{action}]{deps}")


@main.group("pending")
def pending_group():
    """Inspect queued owner actions."""
    pass


@pending_group.command("list")
@click.option("--network", "-n", help="Target environment (defaults to config network)")
@click.option("--all", "show_all", is_flag=True, help="Include actions marked complete")
@click.pass_context
def list_pending(ctx, network, show_all):
    """List owner actions awaiting a privileged executor."""
    from chainorch.pipeline import OWNER_ACTIONS_FILENAME
    from chainorch.stores import FilePendingActionLedger

    config = _require_config(ctx)
    ledger = FilePendingActionLedger(config.environment_dir(network) / OWNER_ACTIONS_FILENAME)
    try:
        actions = ledger.all() if show_all else ledger.pending()
    except ChainorchError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    if not actions:
        click.echo("No pending owner actions.")
        return

    for action in actions:
        status = "✓" if action.complete else "•"
        click.echo(f"{status} {action.key}")
        click.echo(f"    target: {action.target}")
        click.echo(f"    data:   {action.data}")
        if action.link:
            click.echo(f"    link:   {action.link}")


if __name__ == "__main__":
    main()
