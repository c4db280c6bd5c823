"""CLI interface for scim-engine using Click.

Runs the engine over JSON files: filter a set of resources, apply a PatchOp
body, run a list query or execute a bulk request against in-memory storage.
Results are written to stdout as JSON; status messages go to stderr.
"""

import json
import logging
import sys
from typing import Any, Dict, List, Optional

import click

from . import __version__
from .adapters.memory import InMemoryAdapter
from .bulk import BulkCoordinator
from .errors import SCIMError
from .filters import evaluate, parse_filter
from .patch import apply_patch, parse_patch_request
from .query import QuerySpec
from .schemas import GROUP, RESOURCE_SCHEMAS, USER, schema_for_resource
from .service import ResourceService, ServiceOptions


def _colorize(text: str, color: str) -> str:
    """Colorize text using ANSI codes when writing to a terminal."""
    colors = {
        "red": "\033[91m",
        "green": "\033[92m",
        "yellow": "\033[93m",
        "reset": "\033[0m",
        "bold": "\033[1m",
    }
    if not sys.stderr.isatty():
        return text  # No colors if not a TTY
    return f"{colors.get(color, '')}{text}{colors['reset']}"


def _print_error(message: str):
    click.echo(_colorize(f"❌ {message}", "red"), err=True)


def _print_success(message: str):
    click.echo(_colorize(f"✅ {message}", "green"), err=True)


def _print_json(data: Any):
    click.echo(json.dumps(data, indent=2))


def _load_json(stream) -> Any:
    try:
        return json.load(stream)
    except json.JSONDecodeError as e:
        _print_error(f"Invalid JSON in {stream.name}: {e}")
        sys.exit(1)


def _resources_from(data: Any) -> List[Dict[str, Any]]:
    """Accept a single resource, a JSON array of resources or a ListResponse."""
    if isinstance(data, dict) and "Resources" in data:
        data = data["Resources"]
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list) and all(isinstance(r, dict) for r in data):
        return data
    _print_error("Expected a resource, an array of resources or a ListResponse")
    sys.exit(1)


def _fail(exc: SCIMError):
    kind = f" ({exc.scim_type})" if exc.scim_type else ""
    _print_error(f"{exc.status}{kind}: {exc.detail}")
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__)
def main(verbose: bool):
    """Run SCIM 2.0 filter, PATCH, list query and bulk semantics (RFC 7644) over JSON files.

    Examples:

    \b
      scim-engine filter 'emails[type eq "work"]' users.json
      scim-engine patch patch.json user.json
      scim-engine query users.json --sort-by userName --count 10
      scim-engine bulk bulk.json --users users.json
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


@main.command("filter")
@click.argument("expression")
@click.argument("file", type=click.File("r"))
def filter_command(expression: str, file):
    """Print the resources in FILE matching the filter EXPRESSION."""
    resources = _resources_from(_load_json(file))
    try:
        expr = parse_filter(expression)
    except SCIMError as e:
        _fail(e)
    matched = [r for r in resources if evaluate(r, expr, schema_for_resource(r))]
    _print_json(matched)
    _print_success(f"{len(matched)} of {len(resources)} resource(s) match")


@main.command("patch")
@click.argument("patch_file", type=click.File("r"))
@click.argument("resource_file", type=click.File("r"))
def patch_command(patch_file, resource_file):
    """Apply the PatchOp body in PATCH_FILE to the resource in RESOURCE_FILE."""
    body = _load_json(patch_file)
    resource = _load_json(resource_file)
    if not isinstance(resource, dict):
        _print_error("Resource file must contain a JSON object")
        sys.exit(1)
    try:
        operations = parse_patch_request(body)
        patched = apply_patch(resource, operations)
    except SCIMError as e:
        _fail(e)
    _print_json(patched)
    _print_success(f"Applied {len(operations)} operation(s)")


@main.command("query")
@click.argument("file", type=click.File("r"))
@click.option("--filter", "filter_", help="Filter expression")
@click.option("--sort-by", help="Attribute path to sort on")
@click.option("--sort-order", type=click.Choice(["ascending", "descending"]), default=None)
@click.option("--start-index", type=int, default=None, help="1-based index of the first result")
@click.option("--count", type=int, default=None, help="Maximum results to return")
@click.option("--attributes", help="Comma-separated attributes to return")
@click.option("--excluded-attributes", help="Comma-separated attributes to leave out")
@click.option("--resource-type", type=click.Choice(sorted(RESOURCE_SCHEMAS)), default=None,
              help="Schema to query with (default: detect from the first resource)")
def query_command(file, filter_: Optional[str], sort_by: Optional[str], sort_order: Optional[str],
                  start_index: Optional[int], count: Optional[int], attributes: Optional[str],
                  excluded_attributes: Optional[str], resource_type: Optional[str]):
    """Run a list query over the resources in FILE and print the ListResponse."""
    resources = _resources_from(_load_json(file))
    if resource_type:
        schema = RESOURCE_SCHEMAS[resource_type]
    else:
        schema = schema_for_resource(resources[0]) if resources else None
    params = {
        "filter": filter_,
        "sortBy": sort_by,
        "sortOrder": sort_order,
        "startIndex": start_index,
        "count": count,
        "attributes": attributes,
        "excludedAttributes": excluded_attributes,
    }
    try:
        spec = QuerySpec.from_params({k: v for k, v in params.items() if v is not None})
        adapter = InMemoryAdapter(schema.name if schema else "Resource", resources=resources)
        result = ResourceService(adapter, schema).list(spec)
    except SCIMError as e:
        _fail(e)
    _print_json(result.to_dict())
    _print_success(f"{result.total_results} total, {result.items_per_page} returned")


@main.command("bulk")
@click.argument("bulk_file", type=click.File("r"))
@click.option("--users", "users_file", type=click.File("r"), help="Seed Users from this file")
@click.option("--groups", "groups_file", type=click.File("r"), help="Seed Groups from this file")
@click.option("--base-url", default="", help="Base URL used for result locations")
@click.option("--max-operations", type=int, default=1000, show_default=True)
def bulk_command(bulk_file, users_file, groups_file, base_url: str, max_operations: int):
    """Execute the BulkRequest in BULK_FILE against in-memory Users and Groups."""
    body = _load_json(bulk_file)
    users = _resources_from(_load_json(users_file)) if users_file else []
    groups = _resources_from(_load_json(groups_file)) if groups_file else []
    options = ServiceOptions(base_url=base_url, max_bulk_operations=max_operations)
    services = {
        "Users": ResourceService(InMemoryAdapter("User", base_url=base_url, resources=users),
                                 USER, options=options),
        "Groups": ResourceService(InMemoryAdapter("Group", base_url=base_url, resources=groups),
                                  GROUP, options=options),
    }
    try:
        response = BulkCoordinator(services, options).execute(body)
    except SCIMError as e:
        _fail(e)
    _print_json(response.to_dict())
    if response.errors:
        _print_error(f"{response.errors} operation(s) failed")
        sys.exit(1)
    _print_success(f"{len(response.results)} operation(s) succeeded")


if __name__ == "__main__":
    main()
