"""Builders for test data."""
from processor.models import RawEvent


def make_raw_event(event_id='e1', **overrides):
    """Build a RawEvent with sensible defaults."""
    fields = {
        'id': event_id,
        'name': f'Event {event_id}',
        'start_time': '2024-06-01T18:00:00+0000',
    }
    fields.update(overrides)
    return RawEvent(**fields)
