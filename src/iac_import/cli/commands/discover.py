"""
Discovery command.

Lists the resources a provider query would import, optionally saving them as
an inventory export that ``run --export`` can consume later.
"""

import asyncio
import json
from pathlib import Path

import click

from iac_import.cli.context import ImportContext
from iac_import.cli.decorators import handle_errors, pass_context, requires_config
from iac_import.cli.utils import echo_info, echo_success, echo_warning, print_resources
from iac_import.client.exceptions import InvalidInputError
from iac_import.config import ImportConfig
from iac_import.discovery.engine import DiscoveryEngine
from iac_import.discovery.inputs import SUPPORTED_EXPORT_VERSIONS
from iac_import.models import DiscoveredResource, DiscoveryFilter, DiscoveryScope, Provider
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)

CLOUD_PROVIDERS = [p.value for p in Provider if p is not Provider.MANUAL]


def scope_for(config: ImportConfig, provider: Provider, regions: tuple[str, ...]) -> DiscoveryScope:
    """Build a discovery scope from command-line regions and provider settings."""
    if provider is Provider.AWS:
        return DiscoveryScope(regions=list(regions) or list(config.providers.aws.regions))
    if provider is Provider.AZURE:
        return DiscoveryScope(
            regions=list(regions) or list(config.providers.azure.regions),
            subscription_id=config.providers.azure.subscription_id,
        )
    if provider is Provider.GCP:
        return DiscoveryScope(
            regions=list(regions) or list(config.providers.gcp.regions),
            project_id=config.providers.gcp.project_id,
        )
    return DiscoveryScope(regions=list(regions))


def parse_tags(values: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated ``KEY=VALUE`` options."""
    tags: dict[str, str] = {}
    for value in values:
        key, sep, tag_value = value.partition("=")
        if not sep or not key:
            raise InvalidInputError(f"Tag filter '{value}' must look like KEY=VALUE")
        tags[key] = tag_value
    return tags


def write_export(path: Path, provider: Provider, resources: list[DiscoveredResource]) -> None:
    document = {
        "schema_version": SUPPORTED_EXPORT_VERSIONS[0],
        "provider": provider.value,
        "resources": [
            {
                "type": f"{r.provider.value}:{r.resource_type}",
                "id": r.resource_id,
                "name": r.name,
                "region": r.region,
                "tags": r.tags,
                "properties": r.attributes,
            }
            for r in resources
        ],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, indent=2, sort_keys=True, default=str) + "\n")


@click.command(name="discover")
@click.option(
    "--provider",
    "-p",
    type=click.Choice(CLOUD_PROVIDERS, case_sensitive=False),
    required=True,
    help="Cloud provider to query",
)
@click.option("--region", "-r", "regions", multiple=True, help="Region to query (repeatable)")
@click.option("--type", "-t", "resource_types", multiple=True, help="Resource type (repeatable)")
@click.option("--tag", "tags", multiple=True, help="Required tag KEY=VALUE (repeatable)")
@click.option("--name-pattern", help="Glob the resource name or id must match")
@click.option("--limit", type=int, help="Keep at most this many resources")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the result as an inventory export",
)
@pass_context
@requires_config
@handle_errors
def discover(
    ctx: ImportContext,
    provider: str,
    regions: tuple[str, ...],
    resource_types: tuple[str, ...],
    tags: tuple[str, ...],
    name_pattern: str | None,
    limit: int | None,
    output: Path | None,
) -> None:
    """Discover resources without importing them.

    Examples:

        iac-import discover -p aws -r us-east-1 -t ec2:vpc -t ec2:subnet

        iac-import discover -p gcp --tag env=prod -o inventory.json
    """
    selected = Provider.from_str(provider)
    engine = DiscoveryEngine(ctx.registry, ctx.config.discovery)
    resource_filter = DiscoveryFilter(name_pattern=name_pattern, limit=limit)

    echo_info(f"Discovering {selected.value} resources...")
    result = asyncio.run(
        engine.discover(
            selected,
            scope=scope_for(ctx.config, selected, regions),
            resource_type_filter=list(resource_types) or None,
            tag_filter=parse_tags(tags),
            resource_filter=resource_filter,
        )
    )

    for failure in result.failures:
        echo_warning(str(failure))

    if not result.resources:
        echo_info("No resources found")
        return

    print_resources(result.resources)

    if output:
        write_export(output, selected, result.resources)
        echo_success(f"Wrote {len(result.resources)} resources to {output}")
