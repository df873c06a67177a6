import os
import tempfile
import pytest
from eventstore.config import StoreConfig
from eventstore.engine.event import Event, EventPayload
from eventstore.engine.event_service import ErrorKind, EventError, EventService
from eventstore.engine.storage.stable_storage import StableStorage
from eventstore.errors import CorruptRecordError, RecordTooLargeError

class FakeClock:
    def __init__(self, start=1_000):
        self.now = start
    def __call__(self):
        self.now += 1
        return self.now

def make_payload(title='Launch', description='D', location='HQ', image_url='u'):
    return EventPayload(
        event_description=description,
        event_title=title,
        event_location=location,
        event_card_image_url=image_url,
    )

@pytest.fixture
def config():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield StoreConfig(data_dir=tmpdir)

@pytest.fixture
def service(config):
    storage = StableStorage(config)
    yield EventService(storage, clock=FakeClock())
    storage.close()

def test_full_lifecycle(service):
    created = service.create_event('A', make_payload())
    assert isinstance(created, Event)
    assert created.id == 1
    assert created.owner == 'A'
    assert created.attendees == []
    assert created.event_title == 'Launch'
    assert created.updated_at is None

    attended = service.attend_event('B', 1)
    assert attended.attendees == ['B']

    denied = service.update_event('B', 1, make_payload(title='Hijack'))
    assert denied == EventError(ErrorKind.NOT_AUTHORIZED, "only the owner can update event with id=1")

    deleted = service.delete_event('A', 1)
    assert isinstance(deleted, Event)
    assert deleted.attendees == ['B']
    assert deleted.event_title == 'Launch'

    missing = service.get_event(1)
    assert isinstance(missing, EventError)
    assert missing.kind == ErrorKind.NOT_FOUND
    assert missing.msg == "Event with id=1 not found"

def test_ids_are_sequential(service):
    ids = [service.create_event('A', make_payload(title=f't{i}')).id for i in range(5)]
    assert ids == [1, 2, 3, 4, 5]
    assert service.get_event(3).event_title == 't2'

def test_ids_monotonic_across_restart(config):
    storage = StableStorage(config)
    svc = EventService(storage, clock=FakeClock())
    assert svc.create_event('A', make_payload()).id == 1
    assert svc.create_event('A', make_payload()).id == 2
    storage.close()

    storage = StableStorage(config)
    svc = EventService(storage, clock=FakeClock())
    event = svc.get_event(2)
    assert event.owner == 'A'
    assert svc.create_event('A', make_payload()).id == 3
    storage.close()

def test_deleted_id_not_reused(service):
    service.create_event('A', make_payload())
    service.create_event('A', make_payload())
    assert isinstance(service.delete_event('A', 2), Event)
    assert service.create_event('A', make_payload()).id == 3
    assert service.get_event(2).kind == ErrorKind.NOT_FOUND

def test_update_by_owner(service):
    service.create_event('A', make_payload())
    service.attend_event('B', 1)
    updated = service.update_event('A', 1, make_payload(title='New', description='ND', location='L2', image_url='u2'))
    assert updated.event_title == 'New'
    assert updated.event_description == 'ND'
    assert updated.event_location == 'L2'
    assert updated.event_card_image_url == 'u2'
    # 创建者、参与者、创建时间不变
    assert updated.owner == 'A'
    assert updated.attendees == ['B']
    assert updated.updated_at is not None
    assert updated.updated_at > updated.created_at
    assert service.get_event(1) == updated

def test_update_non_owner_leaves_bytes_unchanged(service):
    service.create_event('A', make_payload())
    before = service.storage.records.get(1)
    result = service.update_event('B', 1, make_payload(title='Hijack'))
    assert result.kind == ErrorKind.NOT_AUTHORIZED
    assert service.storage.records.get(1) == before

def test_update_missing(service):
    result = service.update_event('A', 9, make_payload())
    assert result == EventError(ErrorKind.NOT_FOUND, "couldn't update an event with id=9. event not found")

def test_attend_twice(service):
    service.create_event('A', make_payload())
    service.attend_event('B', 1)
    before = service.storage.records.get(1)
    again = service.attend_event('B', 1)
    assert again == EventError(ErrorKind.ALREADY_ATTENDING, "B is already attending event with id=1")
    assert service.storage.records.get(1) == before
    # 创建者本人也可以参加
    assert service.attend_event('A', 1).attendees == ['B', 'A']

def test_attend_missing(service):
    result = service.attend_event('B', 42)
    assert result == EventError(ErrorKind.NOT_FOUND, "couldn't attend an event with id=42. event not found")

def test_delete_missing_and_non_owner(service):
    assert service.delete_event('A', 1) == EventError(
        ErrorKind.NOT_FOUND, "couldn't delete event with id=1. event not found.")
    service.create_event('A', make_payload())
    denied = service.delete_event('B', 1)
    assert denied == EventError(ErrorKind.NOT_AUTHORIZED, "only the owner can delete event with id=1")
    assert service.get_event(1).owner == 'A'

def test_oversized_create_does_not_consume_id(service):
    with pytest.raises(RecordTooLargeError):
        service.create_event('A', make_payload(description='x' * 2000))
    assert service.storage.id_counter.get() == 1
    assert len(service.storage.records) == 0
    assert service.create_event('A', make_payload()).id == 1

def test_oversized_update_leaves_record_unchanged(service):
    service.create_event('A', make_payload())
    before = service.storage.records.get(1)
    with pytest.raises(RecordTooLargeError):
        service.update_event('A', 1, make_payload(description='x' * 2000))
    assert service.storage.records.get(1) == before

def test_attend_until_record_full(service):
    service.create_event('A', make_payload())
    before = None
    with pytest.raises(RecordTooLargeError):
        for i in range(200):
            before = service.storage.records.get(1)
            service.attend_event(f'attendee-{i:04d}', 1)
    # 失败的那次参加没有写入
    assert service.storage.records.get(1) == before
    event = service.get_event(1)
    assert f'attendee-{len(event.attendees):04d}' not in event.attendees

def test_corrupt_record_is_fatal(service):
    service.create_event('A', make_payload())
    service.storage.records.insert(1, b'\x01garbage')
    with pytest.raises(CorruptRecordError):
        service.get_event(1)
    with pytest.raises(CorruptRecordError):
        service.attend_event('B', 1)

def test_timestamps_from_clock(config):
    storage = StableStorage(config)
    svc = EventService(storage, clock=lambda: 123456789)
    event = svc.create_event('A', make_payload())
    assert event.created_at == 123456789
    assert svc.get_event(event.id).created_at == 123456789
    storage.close()
