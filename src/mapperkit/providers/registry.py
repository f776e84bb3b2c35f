from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Iterator

from mapperkit.exceptions import MapperConfigurationError
from mapperkit.providers.base import MapperProvider
from mapperkit.providers.bowtie import bowtie2_provider, bowtie_provider
from mapperkit.providers.bwa import BWAProvider
from mapperkit.providers.gsnap import GSNAPProvider
from mapperkit.providers.minimap2 import Minimap2Provider
from mapperkit.providers.star import STARProvider


class ProviderRegistry:
    """Mapper providers by case-insensitive name, fixed at construction."""

    def __init__(self, providers: Iterable[MapperProvider]) -> None:
        table: dict[str, MapperProvider] = {}
        for provider in providers:
            key = provider.name.strip().lower()
            if key in table:
                raise MapperConfigurationError(f"Duplicate mapper provider: {provider.name}")
            table[key] = provider
        self._providers = MappingProxyType(table)

    def get(self, name: str) -> MapperProvider:
        try:
            return self._providers[name.strip().lower()]
        except KeyError:
            known = ", ".join(self.names())
            raise MapperConfigurationError(f"Unknown mapper: {name} (available: {known})") from None

    def names(self) -> list[str]:
        return [provider.name for provider in self._providers.values()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._providers

    def __iter__(self) -> Iterator[MapperProvider]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)


def default_registry() -> ProviderRegistry:
    return ProviderRegistry(
        [
            bowtie_provider(),
            bowtie2_provider(),
            BWAProvider(),
            GSNAPProvider(),
            Minimap2Provider(),
            STARProvider(),
        ]
    )
