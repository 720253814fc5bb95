"""Country → layer provider routing.

Global providers run for every request; country providers only when the
request resolves to that country. Providers for other countries are left
out of the response entirely and reported as skipped.
"""

from plotlayers.providers.administrative import (
    AdministrativeBoundaryProvider,
    DistrictProvider,
    municipality_provider,
    nuts3_provider,
    parish_provider,
)
from plotlayers.providers.amenities import AmenitiesProvider
from plotlayers.providers.base import LayerProvider
from plotlayers.providers.cadastre import PortugalCadastreProvider, SpainCadastreProvider
from plotlayers.providers.elevation import ElevationProvider
from plotlayers.providers.land_use import BuiltUpAreaProvider, CLCProvider, COSProvider
from plotlayers.providers.restrictions import (
    MunicipalityLookup,
    MunicipalityRecordProvider,
    ran_provider,
    ren_provider,
)
from plotlayers.providers.zoning import CRUSZoningProvider

SUPPORTED_COUNTRIES = ("PT", "ES")

LAYER_CATEGORIES = {
    "admin-boundary": "administrative",
    "pt-distrito": "administrative",
    "pt-municipio": "administrative",
    "pt-freguesia": "administrative",
    "pt-nuts3": "administrative",
    "pt-municipality-db": "administrative",
    "pt-cadastro": "cadastre",
    "es-cadastro": "cadastre",
    "pt-crus": "zoning",
    "pt-ren": "zoning",
    "pt-ran": "zoning",
    "pt-cos": "landuse",
    "pt-clc": "landuse",
    "pt-built-up": "landuse",
    "elevation": "elevation",
    "amenities": "amenities",
}


def categorize_layer(layer_id: str) -> str:
    """Storage category for a layer id; unknown ids fall under "other"."""
    if layer_id in LAYER_CATEGORIES:
        return LAYER_CATEGORIES[layer_id]
    if layer_id.endswith("-cadastro"):
        return "cadastre"
    return "other"


class ProviderRouter:
    """Stateless mapping from a country code to the ordered providers that apply."""

    def __init__(
        self,
        global_providers: list[LayerProvider],
        country_providers: dict[str, list[LayerProvider]],
    ):
        self.global_providers = global_providers
        self.country_providers = country_providers

    def select(self, country: str | None) -> list[LayerProvider]:
        selected = list(self.global_providers)
        if country:
            selected.extend(self.country_providers.get(country.upper(), []))
        return selected

    def all_layer_ids(self) -> list[str]:
        seen: list[str] = []
        for provider in self.global_providers:
            if provider.layer_id not in seen:
                seen.append(provider.layer_id)
        for providers in self.country_providers.values():
            for provider in providers:
                if provider.layer_id not in seen:
                    seen.append(provider.layer_id)
        return seen

    def skipped(self, country: str | None) -> list[str]:
        """Layer ids that exist but do not apply to `country`."""
        selected = {p.layer_id for p in self.select(country)}
        return [lid for lid in self.all_layer_ids() if lid not in selected]


def default_router(municipality_lookup: MunicipalityLookup | None = None) -> ProviderRouter:
    """Router with every built-in provider. Shared providers are single instances.

    `municipality_lookup` replaces the database lookup behind the REN and RAN layers.
    """
    elevation = ElevationProvider()
    return ProviderRouter(
        global_providers=[AdministrativeBoundaryProvider(), AmenitiesProvider()],
        country_providers={
            "PT": [
                DistrictProvider(),
                municipality_provider(),
                parish_provider(),
                nuts3_provider(),
                PortugalCadastreProvider(),
                MunicipalityRecordProvider(municipality_lookup),
                ren_provider(municipality_lookup),
                ran_provider(municipality_lookup),
                CRUSZoningProvider(),
                COSProvider(),
                CLCProvider(),
                BuiltUpAreaProvider(),
                elevation,
            ],
            "ES": [
                SpainCadastreProvider(),
                elevation,
            ],
        },
    )


_router: ProviderRouter | None = None


def get_router() -> ProviderRouter:
    global _router
    if _router is None:
        _router = default_router()
    return _router
