"""Command line interface for Conduit."""

import sys
import json
import logging
from typing import Any, Dict, Optional

import click
from pydantic import ValidationError

from .config import setup_logging, load_environment, get_optional_env
from ..api.app import create_action, create_store
from ..engine.mapping import MappingEngine
from ..engine.validation import SchemaValidator
from ..exceptions import ConduitException, MappingError
from ..models.job_log import LogLevel, RunTrace
from ..models.mapping import Mapping, ObjectSchema
from ..services.secrets import SecretManagerService


@click.group()
@click.option('--log-level', default='INFO', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Set the logging level')
@click.option('--env-file', type=click.Path(exists=True), help='Path to .env file')
def cli(log_level: str, env_file: Optional[str]) -> None:
    """Conduit synchronization tool."""
    setup_logging(log_level)
    load_environment(env_file)


def _secret_service() -> Optional[SecretManagerService]:
    try:
        return SecretManagerService()
    except Exception as e:
        logging.debug(f"Secret Manager unavailable: {e}")
        return None


def _load_json_file(path: str) -> Any:
    with open(path, encoding="utf-8") as handle:
        return json.load(handle)


@cli.command()
@click.argument('synchronization_id')
@click.option('--contract', 'contract_id', help='Only synchronize the object of this contract')
@click.option('--dry-run', is_flag=True, help='Fetch and map without writing anything')
@click.option('--output', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
def run(synchronization_id: str, contract_id: Optional[str], dry_run: bool, output: str) -> None:
    """Run a synchronization and print its trace."""
    try:
        store = create_store()
        action = create_action(store, _secret_service())
    except (ValueError, ConduitException) as e:
        click.echo(f"Configuration Error: {e}", err=True)
        sys.exit(1)

    arguments: Dict[str, Any] = {"synchronizationId": synchronization_id}
    if contract_id:
        arguments["synchronizationContractId"] = contract_id

    if dry_run:
        arguments["dryRun"] = True
        trace = action.run(arguments)
    else:
        try:
            trace, _ = action.run_and_record(arguments)
        except ConduitException as e:
            click.echo(f"Failed to store job log: {e}", err=True)
            sys.exit(1)

    if output == 'json':
        click.echo(json.dumps(trace.to_response(), indent=2))
    else:
        _display_trace(trace)

    if trace.level == LogLevel.ERROR:
        sys.exit(1)


def _display_trace(trace: RunTrace) -> None:
    """Display a run trace step by step."""
    for step in trace.stack_trace:
        click.echo(f"  - {step}")
    click.echo("-" * 80)
    click.echo(f"{trace.level.value}: {trace.message}")
    click.echo(f"Objects synchronized: {trace.objects_synchronized}")
    click.echo(f"Targets deleted: {trace.targets_deleted}")
    click.echo(f"Failures: {len(trace.failures)}")
    click.echo(f"Execution time: {trace.execution_time}s")


@cli.command(name='map')
@click.option('--input', 'input_file', required=True, type=click.Path(exists=True),
              help='JSON file holding the input object')
@click.option('--mapping', 'mapping_file', required=True, type=click.Path(exists=True),
              help='JSON file holding a mapping, or bare outputKey -> expression rules')
@click.option('--schema', 'schema_file', type=click.Path(exists=True),
              help='JSON file holding a schema to validate the result against')
def map_object(input_file: str, mapping_file: str, schema_file: Optional[str]) -> None:
    """Apply a mapping to an input object and print the result."""
    try:
        input_object = _load_json_file(input_file)
        mapping_data = _load_json_file(mapping_file)
    except (OSError, json.JSONDecodeError) as e:
        click.echo(f"Invalid JSON: {e}", err=True)
        sys.exit(1)

    try:
        if isinstance(mapping_data, dict) and isinstance(mapping_data.get("mapping"), dict):
            mapping = Mapping.model_validate(mapping_data)
        else:
            mapping = mapping_data
        result = MappingEngine().map(mapping, input_object)
    except (MappingError, ValidationError) as e:
        click.echo(f"Mapping Error: {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(result, indent=2, ensure_ascii=False))

    if schema_file:
        try:
            schema = ObjectSchema.model_validate(_load_json_file(schema_file))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            click.echo(f"Schema Error: {e}", err=True)
            sys.exit(1)
        errors = SchemaValidator.validate_against(result, schema)
        for error in errors:
            click.echo(f"Validation Error: {error}", err=True)
        if errors:
            sys.exit(1)


@cli.command()
@click.argument('synchronization_id', type=int)
def contracts(synchronization_id: int) -> None:
    """List the contracts of a synchronization."""
    try:
        store = create_store()
        items = store.list_contracts(synchronization_id)
    except (ValueError, ConduitException) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not items:
        click.echo(f"No contracts found for synchronization {synchronization_id}.")
        return

    click.echo(f"{'Origin ID':<24} {'Target ID':<38} {'Status':<8} {'Updated':<20}")
    click.echo("-" * 92)
    for contract in items:
        target_id = contract.target_id or "N/A"
        click.echo(f"{contract.origin_id:<24} {target_id:<38} {contract.status.value:<8} "
                   f"{contract.updated:%Y-%m-%d %H:%M:%S}")
    click.echo(f"\nTotal contracts: {len(items)}")


@cli.command()
@click.argument('synchronization_id', type=int)
@click.option('--limit', type=int, default=20, help='Number of logs to show')
def logs(synchronization_id: int, limit: int) -> None:
    """List the most recent job logs of a synchronization."""
    try:
        store = create_store()
        items = store.list_job_logs({"synchronizationId": synchronization_id}, limit=limit)
    except (ValueError, ConduitException) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not items:
        click.echo(f"No job logs found for synchronization {synchronization_id}.")
        return

    for job_log in items:
        click.echo(f"{job_log.created:%Y-%m-%d %H:%M:%S} {job_log.level.value:<8} {job_log.message}")


@cli.command()
@click.option('--host', default='0.0.0.0', help='Interface to bind')
@click.option('--port', type=int, default=None, help='Port to listen on (defaults to PORT or 8000)')
def serve(host: str, port: Optional[int]) -> None:
    """Start the HTTP API."""
    import uvicorn

    port = port or int(get_optional_env("PORT", "8000"))
    uvicorn.run("conduit.api.app:app", host=host, port=port)


def main() -> None:
    """Main entry point for the CLI."""
    cli()
