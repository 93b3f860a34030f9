"""
Tests for the domain event dispatcher
"""

from general_ledger.events import EventDispatcher, EventPayload, LedgerEvent


def make_event(event_type=LedgerEvent.JOURNAL_POSTED, entity_id="J1"):
    return EventPayload(
        event_type=event_type,
        entity_type="journal",
        entity_id=entity_id,
        book_id="BOOK1",
        data={"doc_no": "JE-000001"}
    )


class TestEventDispatcher:
    """Test publish/subscribe"""

    def setup_method(self):
        self.dispatcher = EventDispatcher()
        self.received = []

    def test_subscribe_and_publish(self):
        self.dispatcher.subscribe(LedgerEvent.JOURNAL_POSTED, self.received.append)

        self.dispatcher.publish(make_event())
        self.dispatcher.publish(make_event(LedgerEvent.JOURNAL_CREATED))

        assert len(self.received) == 1
        assert self.received[0].data["doc_no"] == "JE-000001"

    def test_global_handler_receives_everything(self):
        self.dispatcher.subscribe_all(self.received.append)

        self.dispatcher.publish(make_event(LedgerEvent.JOURNAL_CREATED))
        self.dispatcher.publish(make_event(LedgerEvent.ACCOUNT_REGISTERED))

        assert [e.event_type for e in self.received] == [
            LedgerEvent.JOURNAL_CREATED, LedgerEvent.ACCOUNT_REGISTERED
        ]

    def test_unsubscribe(self):
        self.dispatcher.subscribe(LedgerEvent.JOURNAL_POSTED, self.received.append)
        self.dispatcher.unsubscribe(LedgerEvent.JOURNAL_POSTED, self.received.append)
        self.dispatcher.publish(make_event())

        assert self.received == []
        assert self.dispatcher.get_handler_count(LedgerEvent.JOURNAL_POSTED) == 0

    def test_unsubscribe_unknown_handler_is_harmless(self):
        self.dispatcher.unsubscribe(LedgerEvent.JOURNAL_POSTED, self.received.append)

    def test_failing_handler_does_not_stop_others(self):
        def broken(event):
            raise RuntimeError("subscriber bug")

        self.dispatcher.subscribe(LedgerEvent.JOURNAL_POSTED, broken)
        self.dispatcher.subscribe(LedgerEvent.JOURNAL_POSTED, self.received.append)

        self.dispatcher.publish(make_event())
        assert len(self.received) == 1

    def test_handler_count(self):
        self.dispatcher.subscribe(LedgerEvent.JOURNAL_POSTED, self.received.append)
        self.dispatcher.subscribe(LedgerEvent.JOURNAL_REVERSED, self.received.append)
        self.dispatcher.subscribe_all(self.received.append)

        assert self.dispatcher.get_handler_count(LedgerEvent.JOURNAL_POSTED) == 1
        assert self.dispatcher.get_handler_count() == 3

    def test_payload_to_dict(self):
        data = make_event().to_dict()
        assert data["event_type"] == "journal.posted"
        assert data["entity_id"] == "J1"
        assert isinstance(data["timestamp"], str)
        assert data["event_id"]
