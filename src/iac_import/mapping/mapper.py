"""Resource mapping and dependency ordering.

The mapper turns discovered resources into import plan entries: it resolves
each resource's destination type and address from the static type table,
then orders entries so every resource is imported after the resources its
attributes reference.

Dependency inference works on an index-based graph (nodes in a list, edges
as sets of node indices). Ordering is Kahn's algorithm with a heap keyed on
(resource_type, resource_id), so identical input always produces identical
ordinals. When no node is ready the remaining nodes contain a cycle; the
lowest-priority edge of one cycle is dropped, a warning is recorded, and the
sort continues.
"""

import heapq
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from iac_import import resources
from iac_import.client.exceptions import (
    DependencyResolutionError,
    IacImportError,
    InvalidInputError,
    UnsupportedResourceTypeError,
)
from iac_import.models import (
    DiscoveredResource,
    EntryStatus,
    ImportDestination,
    ImportPlanEntry,
    Provider,
    ProviderRequirement,
    sanitize_name,
)
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)

ResourceKey = tuple[str, str, str]

# Destination type prefixes for types the table does not list
_PREFIX_PROVIDERS = {
    "aws_": Provider.AWS,
    "azurerm_": Provider.AZURE,
    "google_": Provider.GCP,
}


def scalar_values(value: Any) -> Iterator[str]:
    """Yield every string leaf of an attribute value."""
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from scalar_values(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            yield from scalar_values(item)


def _label(resource: DiscoveredResource) -> str:
    return f"{resource.resource_type}:{resource.resource_id}"


def _precedence(resource: DiscoveredResource) -> int:
    info = resources.lookup(resource.provider, resource.resource_type)
    return info.precedence if info else resources.DEFAULT_PRECEDENCE


class DependencyGraph:
    """Directed graph over an arena of resources.

    ``dependencies[i]`` holds the indices node ``i`` depends on;
    ``dependents[j]`` is the reverse adjacency.
    """

    def __init__(self, nodes: list[DiscoveredResource]):
        self.nodes = nodes
        self.dependencies: list[set[int]] = [set() for _ in nodes]
        self.dependents: list[set[int]] = [set() for _ in nodes]

    def add_edge(self, dependent: int, dependency: int) -> None:
        self.dependencies[dependent].add(dependency)
        self.dependents[dependency].add(dependent)

    def remove_edge(self, dependent: int, dependency: int) -> None:
        self.dependencies[dependent].discard(dependency)
        self.dependents[dependency].discard(dependent)

    def edges(self) -> list[tuple[int, int]]:
        return [(i, j) for i, deps in enumerate(self.dependencies) for j in sorted(deps)]

    @classmethod
    def from_resources(cls, items: list[DiscoveredResource]) -> "DependencyGraph":
        """Build the graph: an edge for each attribute value equal to another resource's id."""
        nodes = sorted(items, key=lambda r: (r.resource_type, r.resource_id, r.provider.value))
        graph = cls(nodes)

        by_id: dict[str, list[int]] = {}
        for index, resource in enumerate(nodes):
            by_id.setdefault(resource.resource_id, []).append(index)

        for index, resource in enumerate(nodes):
            for value in scalar_values(resource.attributes):
                for target in by_id.get(value, ()):
                    if target != index:
                        graph.add_edge(index, target)
        return graph


@dataclass
class DependencyOrder:
    """Result of dependency inference."""

    ordinals: dict[ResourceKey, int]
    edges: list[tuple[ResourceKey, ResourceKey]]
    warnings: list[DependencyResolutionError] = field(default_factory=list)


@dataclass
class MappingResult:
    """Entries produced by the mapper plus per-resource failures and warnings."""

    entries: list[ImportPlanEntry]
    failures: list[IacImportError] = field(default_factory=list)
    warnings: list[DependencyResolutionError] = field(default_factory=list)

    @property
    def mapped(self) -> list[ImportPlanEntry]:
        return [e for e in self.entries if e.status is EntryStatus.MAPPED]


class ResourceMapper:
    """Maps discovered resources onto destination addresses and import order."""

    def __init__(self, module_path: str = ""):
        self.module_path = module_path

    def map(
        self,
        resource: DiscoveredResource,
        address: str | None = None,
        module_path: str | None = None,
    ) -> ImportDestination:
        """Resolve the destination of one resource.

        Args:
            resource: Discovered resource
            address: Explicit destination address (batch input); used verbatim
            module_path: Module path override for derived addresses

        Raises:
            UnsupportedResourceTypeError: No destination type is known
            InvalidInputError: The explicit address is malformed or names another type
        """
        info = resources.lookup(resource.provider, resource.resource_type)

        if address is not None:
            return self._explicit_destination(resource, address, info)

        if info is None:
            raise UnsupportedResourceTypeError(
                resource.provider.value, resource.resource_type, resource.resource_id
            )

        return ImportDestination.build(
            resource_type=info.destination_type,
            name=resource.suggested_name,
            requirement=resources.requirement_for(info),
            schema_version=info.schema_version,
            module_path=self.module_path if module_path is None else module_path,
        )

    def _explicit_destination(
        self,
        resource: DiscoveredResource,
        address: str,
        info: resources.ResourceTypeInfo | None,
    ) -> ImportDestination:
        parts = address.strip().split(".")
        module_parts = parts[:-2]
        if (
            len(parts) < 2
            or len(module_parts) % 2 != 0
            or any(p != "module" for p in module_parts[::2])
            or any(sanitize_name(p) != p for p in parts[-2:])
        ):
            raise InvalidInputError(
                f"Malformed destination address '{address}'",
                phase="mapping",
                resource_id=resource.resource_id,
            )
        destination_type, name = parts[-2], parts[-1]
        module_path = ".".join(module_parts)

        if info is not None:
            if info.destination_type != destination_type:
                raise InvalidInputError(
                    f"Destination address '{address}' does not match mapped type "
                    f"'{info.destination_type}'",
                    phase="mapping",
                    resource_id=resource.resource_id,
                )
            requirement = resources.requirement_for(info)
            schema_version = info.schema_version
        else:
            requirement = self._requirement_by_prefix(resource, destination_type)
            schema_version = "0"

        return ImportDestination.build(
            resource_type=destination_type,
            name=name,
            requirement=requirement,
            schema_version=schema_version,
            module_path=module_path,
        )

    @staticmethod
    def _requirement_by_prefix(
        resource: DiscoveredResource, destination_type: str
    ) -> ProviderRequirement:
        for prefix, provider in _PREFIX_PROVIDERS.items():
            if destination_type.startswith(prefix):
                return resources.PROVIDER_REQUIREMENTS[provider]
        raise UnsupportedResourceTypeError(
            resource.provider.value, destination_type, resource.resource_id
        )

    def infer_dependencies(self, items: list[DiscoveredResource]) -> DependencyOrder:
        """Order resources so dependencies come first.

        Always returns a total order; cycles are broken deterministically.
        """
        graph = DependencyGraph.from_resources(items)
        nodes = graph.nodes
        keys = [(r.resource_type, r.resource_id, r.provider.value) for r in nodes]

        pending = [len(deps) for deps in graph.dependencies]
        ready = [(keys[i], i) for i in range(len(nodes)) if pending[i] == 0]
        heapq.heapify(ready)

        order: list[int] = []
        placed = [False] * len(nodes)
        warnings: list[DependencyResolutionError] = []

        while len(order) < len(nodes):
            if not ready:
                dependent, dependency, cycle = self._break_cycle(graph, placed, keys)
                graph.remove_edge(dependent, dependency)
                pending[dependent] -= 1
                warning = DependencyResolutionError(
                    f"Dependency cycle {' -> '.join(_label(nodes[i]) for i in cycle)}; "
                    f"dropped {_label(nodes[dependent])} -> {_label(nodes[dependency])}",
                    dropped_edge=(_label(nodes[dependent]), _label(nodes[dependency])),
                    cycle=[_label(nodes[i]) for i in cycle],
                )
                warnings.append(warning)
                logger.warning("dependency_cycle_broken", message=warning.message)
                if pending[dependent] == 0:
                    heapq.heappush(ready, (keys[dependent], dependent))
                continue

            _, index = heapq.heappop(ready)
            placed[index] = True
            order.append(index)
            for dependent in graph.dependents[index]:
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    heapq.heappush(ready, (keys[dependent], dependent))

        ordinals = {nodes[index].key: position for position, index in enumerate(order, start=1)}
        edges = [(nodes[i].key, nodes[j].key) for i, j in graph.edges()]
        return DependencyOrder(ordinals=ordinals, edges=edges, warnings=warnings)

    @staticmethod
    def _break_cycle(
        graph: DependencyGraph, placed: list[bool], keys: list[tuple[str, str, str]]
    ) -> tuple[int, int, list[int]]:
        """Find one cycle among unplaced nodes and pick the edge to drop.

        Every unplaced node still has an unplaced dependency, so walking
        smallest-key dependencies from the smallest-key node must revisit a
        node; the revisited suffix of the walk is a cycle.
        """
        start = min((i for i, done in enumerate(placed) if not done), key=lambda i: keys[i])
        path: list[int] = []
        position: dict[int, int] = {}
        current = start
        while current not in position:
            position[current] = len(path)
            path.append(current)
            current = min(
                (j for j in graph.dependencies[current] if not placed[j]), key=lambda j: keys[j]
            )
        cycle = path[position[current] :]

        cycle_edges = [(cycle[i], cycle[(i + 1) % len(cycle)]) for i in range(len(cycle))]

        def priority(edge: tuple[int, int]) -> tuple[int, tuple[str, ...], tuple[str, ...]]:
            dependent, dependency = edge
            # Depending on something more foundational is the expected direction
            natural = _precedence(graph.nodes[dependent]) - _precedence(graph.nodes[dependency])
            return (natural, keys[dependent], keys[dependency])

        dependent, dependency = min(cycle_edges, key=priority)
        return dependent, dependency, cycle

    def plan(
        self,
        items: list[DiscoveredResource],
        addresses: dict[ResourceKey, str] | None = None,
    ) -> MappingResult:
        """Map every resource and assign ordinals.

        Unmappable resources become Skipped entries carrying their error; the
        rest become Mapped. Derived names that collide are disambiguated with
        the resource id; explicit addresses are never rewritten.
        """
        addresses = addresses or {}
        order = self.infer_dependencies(items)

        entries: list[ImportPlanEntry] = []
        failures: list[IacImportError] = []
        for resource in items:
            entry = ImportPlanEntry(
                resource=resource,
                ordinal=order.ordinals[resource.key],
                requested_address=addresses.get(resource.key),
            )
            try:
                entry.destination = self.map(resource, address=entry.requested_address)
                entry.status = EntryStatus.MAPPED
            except (UnsupportedResourceTypeError, InvalidInputError) as e:
                entry.status = EntryStatus.SKIPPED
                entry.error = str(e)
                failures.append(e)
                logger.info(
                    "resource_unmapped",
                    resource_type=resource.resource_type,
                    resource_id=resource.resource_id,
                    error=str(e),
                )
            entries.append(entry)

        self._disambiguate(entries, explicit=set(addresses))
        entries.sort(key=lambda e: e.sort_key)

        logger.info(
            "mapping_completed",
            resources=len(items),
            mapped=sum(1 for e in entries if e.status is EntryStatus.MAPPED),
            skipped=len(failures),
            cycles_broken=len(order.warnings),
        )
        return MappingResult(entries=entries, failures=failures, warnings=order.warnings)

    @staticmethod
    def _disambiguate(entries: list[ImportPlanEntry], explicit: set[ResourceKey]) -> None:
        groups: dict[str, list[ImportPlanEntry]] = {}
        for entry in entries:
            if entry.destination is not None and entry.resource.key not in explicit:
                groups.setdefault(entry.address, []).append(entry)

        for group in groups.values():
            if len(group) < 2:
                continue
            for entry in group:
                dest = entry.destination
                suffix = sanitize_name(entry.resource.resource_id)
                if dest.name == suffix:
                    continue
                entry.destination = ImportDestination.build(
                    resource_type=dest.resource_type,
                    name=f"{dest.name}_{suffix}",
                    requirement=dest.requirement,
                    schema_version=dest.schema_version,
                    module_path=dest.target_module_path,
                )
