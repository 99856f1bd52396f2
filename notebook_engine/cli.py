"""
Command-line interface for the notebook engine.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
import pandas as pd

from notebook_engine.exceptions import EngineException
from notebook_engine.execution.models import DataContext, ExecutionRequest
from notebook_engine.integration import get_integration
from notebook_engine.logging_config import get_logger, setup_logging
from notebook_engine.ml.models import AUTO_TASK_TYPE, AutoMLRequest, OptimizeFor, TaskType, TrainingRequest

setup_logging()
logger = get_logger(__name__)


def load_rows(path: Optional[str]) -> List[Dict[str, Any]]:
    """Read a CSV or JSON records file into rows."""
    if not path:
        return []
    if path.lower().endswith(".json"):
        frame = pd.read_json(path, orient="records")
    else:
        frame = pd.read_csv(path)
    return frame.to_dict(orient="records")


def parse_params(values: Tuple[str, ...]) -> Dict[str, Any]:
    """Turn ``name=value`` pairs into hyperparameters; values are JSON when they parse."""
    params: Dict[str, Any] = {}
    for item in values:
        name, sep, raw = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"Expected name=value, got '{item}'", param_hint="--param")
        try:
            params[name.strip()] = json.loads(raw)
        except ValueError:
            params[name.strip()] = raw
    return params


def split_columns(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [name.strip() for name in value.split(",") if name.strip()]


def echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def export_to(path: Optional[str], model_id: str) -> None:
    if not path:
        return
    text = get_integration().model_registry.export_model(model_id)
    Path(path).write_text(text, encoding="utf-8")
    click.echo(f"✓ Model exported to {path}")


@click.group()
@click.option('--log-level', default=None, help='Override the configured log level')
def cli(log_level):
    """Notebook engine command line interface"""
    if log_level:
        setup_logging(level=log_level, force=True)


@cli.command()
def serve():
    """Run the HTTP API server"""
    from notebook_engine.main import run_api_server
    run_api_server()


@cli.command()
@click.argument('script', type=click.Path(exists=True, dir_okay=False))
@click.option('--data', 'data_path', type=click.Path(exists=True, dir_okay=False),
              help='CSV or JSON records exposed to the code as `data`')
@click.option('--timeout', 'timeout_ms', type=int, default=None, help='Timeout in milliseconds')
def run(script, data_path, timeout_ms):
    """Run a file of analysis code in the external interpreter"""
    code = Path(script).read_text(encoding="utf-8")
    rows = load_rows(data_path)
    request = ExecutionRequest(
        code=code,
        data_context=DataContext(rows=rows) if rows else None,
        timeout_ms=timeout_ms,
    )

    result = asyncio.run(get_integration().execution_service.execute(request))

    if result.output:
        click.echo(result.output, nl=False)
    if result.result is not None:
        echo_json(result.model_dump(by_alias=True)["result"])
    if not result.success:
        click.echo(f"✗ {result.error_type or 'Error'}: {result.error}", err=True)
        sys.exit(1)
    click.echo(f"✓ Completed in {result.execution_time_ms} ms", err=True)


@cli.command()
@click.option('--data', 'data_path', required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--features', required=True, help='Comma-separated feature columns')
@click.option('--target', default=None, help='Target column (omit for clustering)')
@click.option('--task-type', type=click.Choice([t.value for t in TaskType]), required=True)
@click.option('--algorithm', required=True, help='Algorithm name from the catalog')
@click.option('--param', 'params', multiple=True, help='Hyperparameter as name=value')
@click.option('--test-fraction', type=float, default=None)
@click.option('--cv/--no-cv', 'cross_validation', default=True, help='Run k-fold cross-validation')
@click.option('--export', 'export_path', default=None, help='Write the trained model to this file')
def train(data_path, features, target, task_type, algorithm, params, test_fraction,
          cross_validation, export_path):
    """Train a model"""
    request = TrainingRequest(
        rows=load_rows(data_path),
        feature_columns=split_columns(features),
        target_column=target,
        task_type=task_type,
        algorithm=algorithm,
        hyperparameters=parse_params(params),
        cross_validation=cross_validation,
        test_fraction=test_fraction,
    )

    try:
        outcome = asyncio.run(get_integration().training_orchestrator.train_model(request))
    except EngineException as e:
        click.echo(f"✗ {type(e).__name__}: {e.message}", err=True)
        raise click.Abort()

    if not outcome.success:
        click.echo(f"✗ Training failed ({outcome.error_type}): {outcome.error}", err=True)
        sys.exit(1)

    click.echo(f"✓ Model {outcome.model_id} trained in {outcome.execution_time_ms} ms")
    echo_json(outcome.model_dump(by_alias=True, include={"performance", "feature_importance"}))
    export_to(export_path, outcome.model_id)


@cli.command()
@click.option('--model', 'model_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Exported model file')
@click.option('--data', 'data_path', required=True, type=click.Path(exists=True, dir_okay=False))
def predict(model_path, data_path):
    """Predict with an exported model"""
    integration = get_integration()
    try:
        model_id = integration.model_registry.import_model(
            Path(model_path).read_text(encoding="utf-8")
        )
        result = asyncio.run(
            integration.training_orchestrator.predict(model_id, load_rows(data_path))
        )
    except EngineException as e:
        click.echo(f"✗ {type(e).__name__}: {e.message}", err=True)
        raise click.Abort()

    echo_json(result.predictions)


@cli.command()
@click.option('--data', 'data_path', required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--target', default=None, help='Target column (ignored for clustering)')
@click.option('--task-type', type=click.Choice([t.value for t in TaskType] + [AUTO_TASK_TYPE]), default=AUTO_TASK_TYPE,
              show_default=True)
@click.option('--features', default=None, help='Comma-separated feature columns (default: all but target)')
@click.option('--max-models', type=int, default=None)
@click.option('--max-time', 'max_time', type=float, default=None, help='Time budget in seconds')
@click.option('--optimize-for', type=click.Choice([o.value for o in OptimizeFor]), default='accuracy')
@click.option('--metric', default=None, help='Scoring metric (task default if omitted)')
@click.option('--export', 'export_path', default=None, help='Write the winning model to this file')
def automl(data_path, target, task_type, features, max_models, max_time, optimize_for, metric,
           export_path):
    """Search the catalog for the best model"""
    request = AutoMLRequest(
        rows=load_rows(data_path),
        target_column=target,
        task_type=task_type,
        feature_columns=split_columns(features),
        max_models=max_models,
        max_time_seconds=max_time,
        optimize_for=optimize_for,
        metric=metric,
    )

    try:
        result = asyncio.run(get_integration().automl_orchestrator.run_automl(request))
    except EngineException as e:
        click.echo(f"✗ {type(e).__name__}: {e.message}", err=True)
        raise click.Abort()

    click.echo(f"\nBest: {result.best_algorithm} ({result.metric} = {result.best_score:.4f})\n")
    for rank, entry in enumerate(result.leaderboard, start=1):
        click.echo(f"  {rank}. {entry.algorithm:<22} {entry.score:.4f}  ({entry.training_time_ms} ms)")
    for failed in result.failed_candidates:
        click.echo(f"  ✗ {failed.algorithm}: {failed.error}")
    if result.stopped_early:
        click.echo("\nTime budget reached before every candidate ran")
    click.echo(f"\n✓ Model {result.model_id} registered")
    export_to(export_path, result.model_id)


@cli.group()
def packages():
    """Interpreter package commands"""
    pass


@packages.command('install')
@click.argument('requirement')
def install_package(requirement):
    """Install a package into the interpreter environment"""
    click.echo(f"Installing {requirement}...")
    try:
        success = asyncio.run(get_integration().package_manager.install_package(requirement))
    except EngineException as e:
        click.echo(f"✗ {e.message}", err=True)
        raise click.Abort()

    if not success:
        click.echo(f"✗ Failed to install {requirement}", err=True)
        sys.exit(1)
    click.echo(f"✓ Package {requirement} installed successfully")


@packages.command('list')
def list_packages():
    """List installed interpreter packages"""
    installed = asyncio.run(get_integration().package_manager.list_packages())
    for item in installed:
        click.echo(f"{item['name']}=={item['version']}")


@cli.group()
def models():
    """Model registry commands"""
    pass


@models.command('list')
@click.option('--task-type', type=click.Choice([t.value for t in TaskType]), default=None)
def list_models(task_type):
    """List registered models"""
    records = get_integration().model_registry.list_models(task_type=task_type)
    click.echo(f"\nTotal models: {len(records)}\n")
    for record in records:
        click.echo(f"{record.id} ({record.algorithm}, {record.task_type.value})")
        click.echo(f"    Version: {record.version}")
        click.echo(f"    Created: {record.created_at.isoformat()}")
        click.echo(f"    Performance: {json.dumps(record.performance)}\n")


@models.command('delete')
@click.argument('model_id')
def delete_model(model_id):
    """Delete a registered model"""
    if get_integration().model_registry.delete(model_id):
        click.echo(f"✓ Model {model_id} deleted")
    else:
        click.echo(f"✗ Model {model_id} not found", err=True)
        sys.exit(1)


if __name__ == '__main__':
    cli()
