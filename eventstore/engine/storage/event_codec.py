"""
Event 记录的二进制编解码。

格式（小端）：
    version(B) id(Q)
    event_description owner event_title event_location event_card_image_url
    attendee_count(I) attendee*
    created_at(Q) has_updated_at(B) [updated_at(Q)]
其中每个字符串为 length(I) + UTF-8 字节。编码结果是确定的，decode 是 encode 的严格逆运算。
"""

import struct
from typing import List, Optional

from eventstore.engine.event import Event
from eventstore.errors import CorruptRecordError, RecordTooLargeError

MAX_RECORD_SIZE = 1024
FORMAT_VERSION = 1

_U8 = struct.Struct('<B')
_U32 = struct.Struct('<I')
_U64 = struct.Struct('<Q')


class EventCodec:
    def __init__(self, max_size: int = MAX_RECORD_SIZE):
        self.max_size = max_size

    def encode(self, event: Event) -> bytes:
        """编码一条记录；超过 max_size 时抛出 RecordTooLargeError。"""
        parts: List[bytes] = []
        try:
            parts.append(_U8.pack(FORMAT_VERSION))
            parts.append(_U64.pack(event.id))
            for text in (event.event_description, event.owner, event.event_title,
                         event.event_location, event.event_card_image_url):
                parts.append(_pack_str(text))
            parts.append(_U32.pack(len(event.attendees)))
            for attendee in event.attendees:
                parts.append(_pack_str(attendee))
            parts.append(_U64.pack(event.created_at))
            if event.updated_at is None:
                parts.append(_U8.pack(0))
            else:
                parts.append(_U8.pack(1) + _U64.pack(event.updated_at))
        except struct.error as e:
            raise ValueError(f"Event {event.id!r} has a field out of range: {e}") from e
        data = b''.join(parts)
        if len(data) > self.max_size:
            raise RecordTooLargeError(len(data), self.max_size)
        return data

    def decode(self, data: bytes) -> Event:
        """解码 encode 产生的字节；任何格式偏差都抛出 CorruptRecordError。"""
        reader = _Reader(bytes(data))
        version = reader.u8()
        if version != FORMAT_VERSION:
            raise CorruptRecordError(f"Unsupported record format version {version}")
        event_id = reader.u64()
        description, owner, title, location, image_url = (reader.text() for _ in range(5))
        attendees = [reader.text() for _ in range(reader.u32())]
        created_at = reader.u64()
        flag = reader.u8()
        if flag == 0:
            updated_at: Optional[int] = None
        elif flag == 1:
            updated_at = reader.u64()
        else:
            raise CorruptRecordError(f"Invalid updated_at flag {flag}")
        reader.finish()
        return Event(
            id=event_id,
            event_description=description,
            owner=owner,
            event_title=title,
            event_location=location,
            event_card_image_url=image_url,
            attendees=attendees,
            created_at=created_at,
            updated_at=updated_at,
        )


def _pack_str(text: str) -> bytes:
    raw = text.encode('utf-8')
    return _U32.pack(len(raw)) + raw


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def _take(self, n: int) -> bytes:
        if self.offset + n > len(self.data):
            raise CorruptRecordError(
                f"Record truncated: need {n} bytes at offset {self.offset}, have {len(self.data) - self.offset}")
        chunk = self.data[self.offset:self.offset + n]
        self.offset += n
        return chunk

    def u8(self) -> int:
        return _U8.unpack(self._take(_U8.size))[0]

    def u32(self) -> int:
        return _U32.unpack(self._take(_U32.size))[0]

    def u64(self) -> int:
        return _U64.unpack(self._take(_U64.size))[0]

    def text(self) -> str:
        raw = self._take(self.u32())
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise CorruptRecordError(f"Invalid UTF-8 in record at offset {self.offset - len(raw)}") from e

    def finish(self) -> None:
        if self.offset != len(self.data):
            raise CorruptRecordError(f"{len(self.data) - self.offset} trailing bytes after record")
