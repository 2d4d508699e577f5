"""
Command Line Interface for Servelane.

Deploy, refresh, delete and inspect realtime APIs against the configured
cluster. Autoscaler loops only live as long as the process that registered
them, so one-shot commands stop theirs on exit; ``run-autoscalers`` is the
long-running process that keeps one loop per deployed API and periodically
picks up deploys, updates and deletes made by other commands.
"""

import asyncio
import hashlib
import sys
from pathlib import Path
from typing import NoReturn, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from servelane import __version__
from servelane.config.settings import get_settings, validate_required_settings
from servelane.core.exceptions import APIUpdatingError, GatewayError, ServelaneError
from servelane.core.logging import get_logger, setup_logging
from servelane.deployment.models import DesiredConfig
from servelane.deployment.reconciler import APIReconciler
from servelane.deployment.status import get_all_statuses, get_status

app = typer.Typer(
    name="servelane",
    help="Reconcile realtime inference APIs on Kubernetes",
    add_completion=False,
)
console = Console()


def _init() -> APIReconciler:
    settings = get_settings()
    setup_logging(settings.log_level, settings.environment)
    return APIReconciler.from_settings(settings)


def _fail(message: str) -> NoReturn:
    console.print(f"❌ {message}", style="red")
    sys.exit(1)


def load_config(path: Path) -> DesiredConfig:
    """Read a desired API config from a YAML file."""
    with path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return DesiredConfig.model_validate(raw)


@app.command()
def version():
    """Show version information."""
    console.print(f"Servelane v{__version__}")


@app.command()
def validate_config():
    """Validate operator configuration."""
    try:
        settings = get_settings()
        validate_required_settings(settings)
    except (ServelaneError, ValidationError) as e:
        _fail(f"Configuration validation failed: {e}")

    console.print("✅ Configuration validation successful!", style="green")

    table = Table(title="Configuration Summary")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Environment", settings.environment)
    table.add_row("Log Level", settings.log_level)
    table.add_row("Cluster", settings.cluster.cluster_name)
    table.add_row("Namespace", settings.cluster.namespace)
    table.add_row("Bucket", settings.cluster.bucket or "❌ Missing")
    table.add_row("Object Storage", settings.storage.endpoint)
    table.add_row("Dashboard", settings.dashboard.url if settings.dashboard.enabled else "disabled")

    console.print(table)


@app.command()
def deploy(
    config_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="API config (YAML)"),
    project_id: Optional[str] = typer.Option(None, help="Project identifier (defaults to a hash of the config file)"),
    force: bool = typer.Option(False, "--force", help="Override an in-progress rollout"),
):
    """Create or update an API."""
    try:
        config = load_config(config_file)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        _fail(f"Invalid API config: {e}")

    project_id = project_id or hashlib.sha256(config_file.read_bytes()).hexdigest()

    async def _deploy() -> str:
        reconciler = _init()
        try:
            _, message = await reconciler.update_api(config, project_id, force=force)
            return message
        finally:
            await reconciler.close()

    try:
        message = asyncio.run(_deploy())
    except APIUpdatingError as e:
        _fail(f"{e}; retry later or pass --force")
    except ServelaneError as e:
        _fail(str(e))

    console.print(f"✅ {message}", style="green")


@app.command()
def refresh(
    api_name: str = typer.Argument(..., help="Name of the API"),
    force: bool = typer.Option(False, "--force", help="Override an in-progress rollout"),
):
    """Restart an API's replicas without changing its config."""
    async def _refresh() -> str:
        reconciler = _init()
        try:
            return await reconciler.refresh_api(api_name, force=force)
        finally:
            await reconciler.close()

    try:
        message = asyncio.run(_refresh())
    except ServelaneError as e:
        _fail(str(e))

    console.print(f"✅ {message}", style="green")


@app.command()
def delete(
    api_name: str = typer.Argument(..., help="Name of the API"),
    keep_cache: bool = typer.Option(False, "--keep-cache", help="Keep persisted specs in object storage"),
):
    """Delete an API."""
    async def _delete() -> None:
        reconciler = _init()
        try:
            await reconciler.delete_api(api_name, keep_cache=keep_cache)
        finally:
            await reconciler.close()

    try:
        asyncio.run(_delete())
    except ServelaneError as e:
        _fail(str(e))

    console.print(f"✅ deleted {api_name}", style="green")


@app.command()
def status(api_name: Optional[str] = typer.Argument(None, help="Name of the API (all APIs if omitted)")):
    """Show the status of deployed APIs."""
    async def _status():
        reconciler = _init()
        try:
            if api_name:
                single = await get_status(reconciler.gateway, api_name)
                return [single] if single else []
            return await get_all_statuses(reconciler.gateway)
        finally:
            await reconciler.close()

    try:
        statuses = asyncio.run(_status())
    except ServelaneError as e:
        _fail(str(e))

    if api_name and not statuses:
        _fail(f"{api_name} is not deployed")

    table = Table(title="APIs")
    table.add_column("API", style="cyan")
    table.add_column("Status", style="magenta")
    table.add_column("Up-to-date")
    table.add_column("Stale")
    table.add_column("Requested")
    table.add_column("Failed")

    for api_status in statuses:
        counts = api_status.replica_counts
        table.add_row(
            api_status.api_name,
            api_status.code.value,
            str(counts.updated.ready),
            str(counts.stale.ready),
            str(counts.requested),
            str(counts.updated.total_failed()),
        )

    console.print(table)


@app.command()
def run_autoscalers(
    resync_interval: float = typer.Option(30.0, min=0.1, help="Seconds between syncs with the cluster's Deployments"),
):
    """Keep an autoscaler loop running for every deployed API until interrupted."""
    logger = get_logger("autoscalers")

    async def _run() -> None:
        reconciler = _init()
        try:
            while True:
                try:
                    await reconciler.sync_autoscalers()
                except GatewayError as e:
                    reconciler.error_reporter.report(e, "sync autoscalers")
                logger.debug("Autoscalers running", apis=reconciler.autoscalers.api_names())
                await asyncio.sleep(resync_interval)
        finally:
            await reconciler.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("Autoscalers stopped", style="yellow")
    except ServelaneError as e:
        _fail(str(e))


if __name__ == "__main__":
    app()
