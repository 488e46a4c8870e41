"""Source discovery providers.

Public API:
    DiscoveredRecord       - One recording listed by a source.
    DiscoveryProvider      - Abstract base class for providers.
    DISCOVERY_PROVIDERS    - Static (region, branch) -> provider registry.
    get_discovery_provider - Factory resolving a provider for a run.
    generate_slug          - Human-readable unique item name.
"""

from hearing_ingest.discovery.interface import (
    DiscoveredRecord,
    DiscoveryProvider,
    generate_slug,
)
from hearing_ingest.discovery.registry import (
    DISCOVERY_PROVIDERS,
    get_discovery_provider,
)

__all__ = [
    "DiscoveredRecord",
    "DiscoveryProvider",
    "DISCOVERY_PROVIDERS",
    "get_discovery_provider",
    "generate_slug",
]
