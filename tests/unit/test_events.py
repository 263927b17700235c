"""
tests/unit/test_events.py - Unit event records.
"""

import pytest

from execution.events import (
    ArbitrageExecuted,
    ArbitrageFailed,
    EventLog,
    VenueAdded,
)


class TestEvents:
    def test_venue_added_carries_venue_name(self):
        event = VenueAdded(index=0, name="dex_a", address="0x" + "da" * 20)

        assert event.name == "dex_a"
        assert event.event_name == "VenueAdded"
        assert event.to_dict() == {
            "event": "VenueAdded",
            "index": 0,
            "name": "dex_a",
            "address": "0x" + "da" * 20,
        }

    def test_events_are_frozen(self):
        event = ArbitrageFailed(token_a="0xa", token_b="0xb", reason="Route expired", timestamp=1)
        with pytest.raises(AttributeError):
            event.reason = "other"


class TestEventLog:
    def test_of_type_and_since(self):
        log = EventLog()
        log.emit(VenueAdded(index=0, name="dex_a", address="0x1"))
        mark = len(log)
        log.emit(ArbitrageExecuted("0xa", "0xb", 10, 12, 1, 100))

        assert log.of_type(VenueAdded)[0].index == 0
        assert [e.event_name for e in log.since(mark)] == ["ArbitrageExecuted"]
        assert log.last.profit == 1
