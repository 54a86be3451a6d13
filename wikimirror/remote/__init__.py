"""Remote source access"""

from .backoff import BackoffController
from .client import RemoteClient

__all__ = ["BackoffController", "RemoteClient"]
