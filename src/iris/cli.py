"""
IRIS CLI: iris route | status | doctor | assess
"""
import asyncio
import json
import sys

import click
from pydantic import ValidationError

from iris.cache.embeddings import create_embedder
from iris.config.settings import Settings, load_settings
from iris.core.exceptions import ConfigurationInvalidError
from iris.core.structured_logger import configure_logging, get_logger
from iris.core.types import RoutingConstraints, TaskType

logger = get_logger("CLI")


def _load(config_path: str | None) -> Settings:
    try:
        settings = load_settings(config_path)
    except ConfigurationInvalidError as e:
        click.echo(e.message, err=True)
        raise SystemExit(2) from e
    configure_logging(settings.logging)
    logger.debug("Configuration loaded", config_path=config_path, providers=list(settings.providers))
    return settings


@click.group()
@click.version_option(package_name="iris-router")
@click.option(
    "--config",
    "config_path",
    envvar="IRIS_CONFIG",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML configuration file (defaults to $IRIS_CONFIG, then IRIS_* variables)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """IRIS: multi-provider LLM routing with failover, caching and threat screening."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.argument("query")
@click.option(
    "--task",
    "task_type",
    type=click.Choice([t.value for t in TaskType]),
    default=TaskType.GENERAL.value,
    show_default=True,
    help="Task type used to pick the failover chain",
)
@click.option("--max-cost", type=float, default=None, help="Skip providers costing more than this")
@click.option("--prefer", "preferred", default=None, help="Provider id to try first if eligible")
@click.option("--identity", default=None, help="Caller identity for behavioral threat scoring")
@click.option("--json", "as_json", is_flag=True, help="Print the full routing decision as JSON")
@click.pass_context
def route(
    ctx: click.Context,
    query: str,
    task_type: str,
    max_cost: float | None,
    preferred: str | None,
    identity: str | None,
    as_json: bool,
) -> None:
    """Route QUERY to the best available provider."""
    from iris.core.factories import build_orchestrator

    settings = _load(ctx.obj["config_path"])
    constraints = RoutingConstraints(
        max_cost=max_cost, preferred_provider=preferred, identity=identity
    )

    async def _run():
        orchestrator = build_orchestrator(settings)
        try:
            return await orchestrator.route(query, TaskType(task_type), constraints)
        finally:
            await orchestrator.close()

    decision = asyncio.run(_run())
    if as_json:
        click.echo(json.dumps(decision.to_dict(), indent=2))
    elif decision.success:
        source = "cache" if decision.cache_hit else decision.selected_provider
        click.echo(decision.response)
        click.echo(f"\n[{source}; tried: {', '.join(decision.attempted_providers) or '-'}]", err=True)
    else:
        click.echo(decision.final_error.user_message(), err=True)
        click.echo(decision.final_error.message, err=True)
    if not decision.success:
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show providers, chains, circuit states and cache settings."""
    from iris.core.factories import build_orchestrator

    settings = _load(ctx.obj["config_path"])

    async def _run():
        orchestrator = build_orchestrator(settings)
        try:
            return orchestrator.status()
        finally:
            await orchestrator.close()

    click.echo(json.dumps(asyncio.run(_run()), indent=2, default=str))


@cli.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Probe every configured provider."""
    from iris.core.factories import build_orchestrator

    settings = _load(ctx.obj["config_path"])

    async def _run():
        orchestrator = build_orchestrator(settings)
        try:
            return await orchestrator.probe_providers()
        finally:
            await orchestrator.close()

    result = asyncio.run(_run())
    labels = {"healthy": "OK", "degraded": "DEGRADED", "unhealthy": "FAIL"}
    for name, check in result["checks"].items():
        click.echo(f"  [{labels.get(check['status'], check['status'])}] {name}: {check['message']}")
    click.echo(f"Overall: {result['status']}")
    if result["status"] == "unhealthy":
        sys.exit(1)


@cli.command()
@click.argument("query")
@click.option("--identity", default=None, help="Caller identity for behavioral scoring")
@click.pass_context
def assess(ctx: click.Context, query: str, identity: str | None) -> None:
    """Run the threat classifier on QUERY without routing it."""
    from iris.security.threat_classifier import ThreatClassifier

    config_path = ctx.obj["config_path"]
    if config_path:
        try:
            settings = Settings.from_yaml(config_path)
        except (FileNotFoundError, ValidationError) as e:
            click.echo(str(e), err=True)
            raise SystemExit(2) from e
    else:
        settings = Settings()
    embedder = create_embedder(
        settings.cache.embedder,
        dim=settings.cache.embedding_dim,
        model_name=settings.cache.embedding_model,
    )
    classifier = ThreatClassifier(settings.threat, embedder=embedder)
    click.echo(json.dumps(classifier.assess(query, identity).to_dict(), indent=2))


if __name__ == "__main__":
    cli()
