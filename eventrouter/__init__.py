"""eventrouter: routes Kubernetes core/v1 Events to counters and sinks."""

__version__ = "0.1.0"
