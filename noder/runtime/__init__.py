"""Runtime support for workflow runs."""

from noder.runtime.event_bus import EventBus, EventType, Subscription, WorkflowEvent

__all__ = ["EventBus", "EventType", "Subscription", "WorkflowEvent"]
