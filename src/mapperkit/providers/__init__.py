from mapperkit.providers.base import MapperProvider
from mapperkit.providers.bowtie import BowtieFamilyProvider, bowtie2_provider, bowtie_provider
from mapperkit.providers.bwa import BWAProvider
from mapperkit.providers.gsnap import GSNAPProvider
from mapperkit.providers.minimap2 import Minimap2Provider
from mapperkit.providers.registry import ProviderRegistry, default_registry
from mapperkit.providers.star import STARProvider

__all__ = [
    "BWAProvider",
    "BowtieFamilyProvider",
    "GSNAPProvider",
    "MapperProvider",
    "Minimap2Provider",
    "ProviderRegistry",
    "STARProvider",
    "bowtie2_provider",
    "bowtie_provider",
    "default_registry",
]
