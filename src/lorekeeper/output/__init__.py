from lorekeeper.output.manager import OutputManager
from lorekeeper.output.serialization import (
    FORMAT_VERSION,
    SerializationError,
    deserialize_store,
    dumps_store,
    loads_store,
    serialize_store,
)

__all__ = [
    "FORMAT_VERSION",
    "OutputManager",
    "SerializationError",
    "deserialize_store",
    "dumps_store",
    "loads_store",
    "serialize_store",
]
