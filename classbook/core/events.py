"""
Domain events system

Domain events represent important scheduling events that callers (for
example a notification service) can subscribe to. The engine itself never
sends notifications.
"""

from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional
import uuid
import structlog

logger = structlog.get_logger(__name__)


class DomainEvent:
    """Base class for domain events"""

    def __init__(self, event_id: uuid.UUID = None):
        self.event_id = event_id or uuid.uuid4()
        self.occurred_at = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary"""
        return {
            "event_id": str(self.event_id),
            "occurred_at": self.occurred_at.isoformat(),
            "event_type": self.__class__.__name__
        }


class SlotsGenerated(DomainEvent):
    """Event fired when slots are generated for a date range"""

    def __init__(
        self,
        tenant_id: uuid.UUID,
        start_date: date,
        end_date: date,
        created_slots: int,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.tenant_id = tenant_id
        self.start_date = start_date
        self.end_date = end_date
        self.created_slots = created_slots

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "tenant_id": str(self.tenant_id),
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "created_slots": self.created_slots
        })
        return data


class ScheduleExceptionApplied(DomainEvent):
    """Event fired when an exception has reshaped a date's slots"""

    def __init__(
        self,
        tenant_id: uuid.UUID,
        exception_id: uuid.UUID,
        exception_date: date,
        deleted_slots: int,
        skipped_slots: int,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.tenant_id = tenant_id
        self.exception_id = exception_id
        self.exception_date = exception_date
        self.deleted_slots = deleted_slots
        self.skipped_slots = skipped_slots

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "tenant_id": str(self.tenant_id),
            "exception_id": str(self.exception_id),
            "exception_date": self.exception_date.isoformat(),
            "deleted_slots": self.deleted_slots,
            "skipped_slots": self.skipped_slots
        })
        return data


class ReservationCreated(DomainEvent):
    """Event fired when a user books a slot"""

    def __init__(
        self,
        reservation_id: uuid.UUID,
        slot_id: uuid.UUID,
        user_id: uuid.UUID,
        tenant_id: uuid.UUID,
        recurring_rule_id: Optional[uuid.UUID] = None,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.reservation_id = reservation_id
        self.slot_id = slot_id
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.recurring_rule_id = recurring_rule_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "reservation_id": str(self.reservation_id),
            "slot_id": str(self.slot_id),
            "user_id": str(self.user_id),
            "tenant_id": str(self.tenant_id),
            "recurring_rule_id": str(self.recurring_rule_id) if self.recurring_rule_id else None
        })
        return data


class ReservationCancelled(DomainEvent):
    """Event fired when a reservation is cancelled by its owner"""

    def __init__(
        self,
        reservation_id: uuid.UUID,
        slot_id: uuid.UUID,
        user_id: uuid.UUID,
        tenant_id: uuid.UUID,
        credited: bool,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.reservation_id = reservation_id
        self.slot_id = slot_id
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.credited = credited

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "reservation_id": str(self.reservation_id),
            "slot_id": str(self.slot_id),
            "user_id": str(self.user_id),
            "tenant_id": str(self.tenant_id),
            "credited": self.credited
        })
        return data


class RecurringRuleExpanded(DomainEvent):
    """Event fired after a recurring rule produced reservations"""

    def __init__(
        self,
        rule_id: uuid.UUID,
        user_id: uuid.UUID,
        tenant_id: uuid.UUID,
        summary: Dict[str, Any],
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.rule_id = rule_id
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.summary = summary

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "rule_id": str(self.rule_id),
            "user_id": str(self.user_id),
            "tenant_id": str(self.tenant_id),
            "summary": self.summary
        })
        return data


class RecurringRuleCancelled(DomainEvent):
    """Event fired when a recurring rule is cancelled"""

    def __init__(
        self,
        rule_id: uuid.UUID,
        user_id: uuid.UUID,
        tenant_id: uuid.UUID,
        deleted_reservations: int,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.rule_id = rule_id
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.deleted_reservations = deleted_reservations

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "rule_id": str(self.rule_id),
            "user_id": str(self.user_id),
            "tenant_id": str(self.tenant_id),
            "deleted_reservations": self.deleted_reservations
        })
        return data


class SubscriptionRenewed(DomainEvent):
    """Event fired when a completed payment opens a new period"""

    def __init__(
        self,
        subscription_id: uuid.UUID,
        payment_id: uuid.UUID,
        user_id: uuid.UUID,
        tenant_id: uuid.UUID,
        period_start_date: date,
        period_end_date: date,
        created: bool,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.subscription_id = subscription_id
        self.payment_id = payment_id
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.period_start_date = period_start_date
        self.period_end_date = period_end_date
        self.created = created

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "subscription_id": str(self.subscription_id),
            "payment_id": str(self.payment_id),
            "user_id": str(self.user_id),
            "tenant_id": str(self.tenant_id),
            "period_start_date": self.period_start_date.isoformat(),
            "period_end_date": self.period_end_date.isoformat(),
            "created": self.created
        })
        return data


class EventBus:
    """Simple in-memory event bus for publishing domain events"""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, handler: Callable):
        """Subscribe to a specific event type"""
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(handler)
        logger.debug(f"Subscribed handler to event type: {event_type}")

    def unsubscribe(self, event_type: str, handler: Callable):
        """Unsubscribe from an event type"""
        if event_type in self._subscribers:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed handler from event type: {event_type}")

    def publish(self, event: DomainEvent):
        """Publish an event to all subscribers

        Called after the triggering transaction has committed. A failing
        handler is logged and never reaches the caller.
        """
        event_type = event.__class__.__name__
        handlers = self._subscribers.get(event_type, [])

        if not handlers:
            logger.debug(f"No subscribers for event type: {event_type}")
            return

        logger.info(f"Publishing event {event_type}: {event.event_id}")

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler for {event_type}: {e}", exc_info=True)

    def clear_subscribers(self):
        """Clear all subscribers (useful for testing)"""
        self._subscribers.clear()
        logger.debug("Cleared all event subscribers")


# Global event bus instance
event_bus = EventBus()
