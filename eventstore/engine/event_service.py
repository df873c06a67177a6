"""
Event 服务：五个对外请求操作（get/create/update/attend/delete）。

业务错误（NotFound、NotAuthorized、AlreadyAttending）以 EventError 值返回，不抛异常；
存储层的不变量破坏（StorageError 及其子类）原样向上抛出，使整个请求失败。
所有修改都是 读取-校验-重新编码-写回，校验失败时已存储的记录保持不变。
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from loguru import logger

from eventstore.engine.event import Event, EventPayload
from eventstore.engine.storage.stable_storage import StableStorage


class ErrorKind(Enum):
    NOT_FOUND = 'NotFound'
    NOT_AUTHORIZED = 'NotAuthorized'
    ALREADY_ATTENDING = 'AlreadyAttending'


@dataclass(frozen=True)
class EventError:
    kind: ErrorKind
    msg: str


EventResult = Union[Event, EventError]


class EventService:
    def __init__(self, storage: StableStorage, clock: Callable[[], int] = time.time_ns):
        """
        :param storage: 已打开的存储上下文。
        :param clock: 返回 u64 纳秒时间戳的时钟，用于 created_at/updated_at。
        """
        self.storage = storage
        self.clock = clock

    def _load(self, event_id: int) -> Optional[Event]:
        data = self.storage.records.get(event_id)
        if data is None:
            return None
        return self.storage.codec.decode(data)

    def _store(self, event: Event) -> None:
        self.storage.records.insert(event.id, self.storage.codec.encode(event))

    def get_event(self, event_id: int) -> EventResult:
        event = self._load(event_id)
        if event is None:
            return EventError(ErrorKind.NOT_FOUND, f"Event with id={event_id} not found")
        return event

    def create_event(self, caller: str, payload: EventPayload) -> Event:
        counter = self.storage.id_counter
        event_id = counter.get()
        event = Event(
            id=event_id,
            event_description=payload.event_description,
            owner=caller,
            event_title=payload.event_title,
            event_location=payload.event_location,
            event_card_image_url=payload.event_card_image_url,
            attendees=[],
            created_at=self.clock(),
            updated_at=None,
        )
        # 先编码：记录超长时在推进计数器之前失败
        data = self.storage.codec.encode(event)
        counter.set(event_id + 1)
        self.storage.records.insert(event_id, data)
        logger.info(f"{caller} 创建事件 {event_id}")
        return event

    def update_event(self, caller: str, event_id: int, payload: EventPayload) -> EventResult:
        event = self._load(event_id)
        if event is None:
            return EventError(ErrorKind.NOT_FOUND,
                              f"couldn't update an event with id={event_id}. event not found")
        if event.owner != caller:
            return EventError(ErrorKind.NOT_AUTHORIZED,
                              f"only the owner can update event with id={event_id}")
        event.event_description = payload.event_description
        event.event_title = payload.event_title
        event.event_location = payload.event_location
        event.event_card_image_url = payload.event_card_image_url
        event.updated_at = self.clock()
        self._store(event)
        logger.info(f"{caller} 更新事件 {event_id}")
        return event

    def attend_event(self, caller: str, event_id: int) -> EventResult:
        event = self._load(event_id)
        if event is None:
            return EventError(ErrorKind.NOT_FOUND,
                              f"couldn't attend an event with id={event_id}. event not found")
        if caller in event.attendees:
            return EventError(ErrorKind.ALREADY_ATTENDING,
                              f"{caller} is already attending event with id={event_id}")
        event.attendees.append(caller)
        self._store(event)
        logger.info(f"{caller} 参加事件 {event_id}")
        return event

    def delete_event(self, caller: str, event_id: int) -> EventResult:
        event = self._load(event_id)
        if event is None:
            return EventError(ErrorKind.NOT_FOUND,
                              f"couldn't delete event with id={event_id}. event not found.")
        if event.owner != caller:
            return EventError(ErrorKind.NOT_AUTHORIZED,
                              f"only the owner can delete event with id={event_id}")
        self.storage.records.remove(event_id)
        logger.info(f"{caller} 删除事件 {event_id}")
        return event
