"""Event routing: classification and the EventRouter controller."""

from eventrouter.router.classifier import classify
from eventrouter.router.controller import ControllerState, EventRouter

__all__ = ["ControllerState", "EventRouter", "classify"]
