from .classification import is_transient_error
from .gateway import PersistenceGateway

__all__ = [
    "PersistenceGateway",
    "is_transient_error"
]
