"""Static discovery provider registry keyed by (region, branch).

Use get_discovery_provider() to instantiate the provider for a run.
"""

from collections.abc import Mapping

from hearing_ingest.discovery.interface import DiscoveryProvider
from hearing_ingest.discovery.michigan import MichiganHouseProvider, MichiganSenateProvider
from hearing_ingest.utils.errors import ConfigurationError

DISCOVERY_PROVIDERS: dict[tuple[str, str], type[DiscoveryProvider]] = {
    ("MI", "house"): MichiganHouseProvider,
    ("MI", "senate"): MichiganSenateProvider,
}


def get_discovery_provider(
    region: str,
    branch: str,
    registry: Mapping[tuple[str, str], type] | None = None,
    **kwargs: object,
) -> DiscoveryProvider:
    """Create the discovery provider registered for (region, branch).

    Args:
        region: Region code (e.g., "MI").
        branch: Source branch (e.g., "senate").
        registry: Alternate registry (defaults to DISCOVERY_PROVIDERS).
        **kwargs: Passed to the provider constructor.

    Returns:
        An initialized provider.

    Raises:
        ConfigurationError: If nothing is registered for the pair, or the
            registered object has no callable fetch_recent.
    """
    providers = DISCOVERY_PROVIDERS if registry is None else registry
    provider_cls = providers.get((region, branch))
    if provider_cls is None:
        available = ", ".join(f"{r}/{b}" for r, b in sorted(providers))
        raise ConfigurationError(
            f"No discovery provider for region '{region}' and source '{branch}'. "
            f"Available: {available}"
        )
    provider = provider_cls(**kwargs)
    if not callable(getattr(provider, "fetch_recent", None)):
        raise ConfigurationError(
            f"Discovery provider for {region}/{branch} "
            f"({type(provider).__name__}) has no callable fetch_recent"
        )
    return provider
