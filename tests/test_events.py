"""
Tests for the Event System (Observer Pattern)
"""

from datetime import datetime
from unittest.mock import Mock

from core_vault.events import (
    DomainEvent, EventPayload, EventDispatcher, create_transfer_event
)
from core_vault.ledger import AssetKind


class TestEventPayload:
    """Test EventPayload creation and serialization"""

    def test_event_payload_creation(self):
        event = EventPayload(
            event_type=DomainEvent.DEPOSIT_COMPLETED,
            entity_type="account",
            entity_id="alice",
            data={"unit_value": "39561400"}
        )

        assert event.event_type == DomainEvent.DEPOSIT_COMPLETED
        assert event.entity_id == "alice"
        assert isinstance(event.timestamp, datetime)
        assert len(event.event_id) > 0

    def test_event_payload_serialization(self):
        """Test event payload to/from dict"""
        original = create_transfer_event(
            DomainEvent.WITHDRAWAL_COMPLETED, "bob", AssetKind.TOKEN, 250, 250
        )

        event_dict = original.to_dict()
        assert event_dict['event_type'] == "withdrawal.completed"
        assert event_dict['entity_type'] == "account"

        restored = EventPayload.from_dict(event_dict)
        assert restored.event_type == original.event_type
        assert restored.entity_id == original.entity_id
        assert restored.data == original.data
        assert restored.timestamp == original.timestamp
        assert restored.event_id == original.event_id

    def test_transfer_event_amounts_are_strings(self):
        event = create_transfer_event(
            DomainEvent.DEPOSIT_COMPLETED, "alice", AssetKind.NATIVE, 10 ** 16, 39_561_400
        )
        assert event.data == {
            "account": "alice",
            "asset": "native",
            "native_amount": "10000000000000000",
            "unit_value": "39561400"
        }


class TestEventDispatcher:
    """Test the event dispatcher"""

    def _event(self, event_type=DomainEvent.DEPOSIT_COMPLETED):
        return create_transfer_event(event_type, "alice", AssetKind.TOKEN, 1, 1)

    def test_subscribe_and_publish_single_event(self):
        dispatcher = EventDispatcher()
        handler = Mock()
        dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, handler)

        event = self._event()
        dispatcher.publish(event)

        handler.assert_called_once_with(event)

    def test_handler_only_receives_its_type(self):
        dispatcher = EventDispatcher()
        handler = Mock()
        dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, handler)

        dispatcher.publish(self._event(DomainEvent.WITHDRAWAL_COMPLETED))

        handler.assert_not_called()

    def test_global_handler_receives_everything(self):
        dispatcher = EventDispatcher()
        handler = Mock()
        dispatcher.subscribe_all(handler)

        dispatcher.publish(self._event(DomainEvent.DEPOSIT_COMPLETED))
        dispatcher.publish(self._event(DomainEvent.WITHDRAWAL_COMPLETED))

        assert handler.call_count == 2

    def test_unsubscribe(self):
        dispatcher = EventDispatcher()
        handler = Mock()
        dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, handler)
        dispatcher.unsubscribe(DomainEvent.DEPOSIT_COMPLETED, handler)

        dispatcher.publish(self._event())
        handler.assert_not_called()

        # Unsubscribing twice is harmless
        dispatcher.unsubscribe(DomainEvent.DEPOSIT_COMPLETED, handler)

    def test_failing_handler_does_not_stop_others(self):
        dispatcher = EventDispatcher()
        failing = Mock(side_effect=RuntimeError("handler blew up"))
        working = Mock()
        dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, failing)
        dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, working)

        dispatcher.publish(self._event())

        failing.assert_called_once()
        working.assert_called_once()

    def test_handler_counts_and_clear(self):
        dispatcher = EventDispatcher()
        dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, Mock())
        dispatcher.subscribe(DomainEvent.WITHDRAWAL_COMPLETED, Mock())
        dispatcher.subscribe_all(Mock())

        assert dispatcher.get_handler_count(DomainEvent.DEPOSIT_COMPLETED) == 1
        assert dispatcher.get_handler_count() == 3

        dispatcher.clear()
        assert dispatcher.get_handler_count() == 0
