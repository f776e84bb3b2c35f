from mapperkit.mapping.entry import BaseMapping, EntryMapping, FileMapping
from mapperkit.mapping.index import MapperIndex
from mapperkit.mapping.mapper import Mapper, MapperInstance

__all__ = [
    "BaseMapping",
    "EntryMapping",
    "FileMapping",
    "Mapper",
    "MapperIndex",
    "MapperInstance",
]
