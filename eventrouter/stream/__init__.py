"""Change streams that feed Event notifications to the router.

Submodules
----------
base      -- EventHandler protocol and ChangeStream ABC.
memory    -- InMemoryChangeStream: synchronous in-process stream.
informer  -- KubernetesEventInformer: list/watch/resync over core/v1 Events.
"""

from eventrouter.stream.base import ChangeStream, EventHandler
from eventrouter.stream.informer import KubernetesEventInformer, KubernetesEventSource
from eventrouter.stream.memory import InMemoryChangeStream

__all__ = [
    "ChangeStream",
    "EventHandler",
    "InMemoryChangeStream",
    "KubernetesEventInformer",
    "KubernetesEventSource",
]
