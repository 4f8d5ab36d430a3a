from .hub import RECEIVE_REPLY, EventPublisher, LiveEvent, TicketHub, topic_for

__all__ = ["RECEIVE_REPLY", "EventPublisher", "LiveEvent", "TicketHub", "topic_for"]
