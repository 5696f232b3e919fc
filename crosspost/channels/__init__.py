"""Platform dispatchers and the registry that resolves them by name."""

from crosspost.channels.base import Dispatcher, DispatchResult, PlatformCredentials
from crosspost.channels.registry import DispatcherRegistry, get_registry, register_dispatcher

__all__ = [
    "Dispatcher",
    "DispatchResult",
    "DispatcherRegistry",
    "PlatformCredentials",
    "get_registry",
    "register_dispatcher",
]
