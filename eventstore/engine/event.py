"""
Event 实体与请求载荷。
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Event:
    id: int
    event_description: str
    owner: str
    event_title: str
    event_location: str
    event_card_image_url: str
    attendees: List[str] = field(default_factory=list)
    created_at: int = 0
    updated_at: Optional[int] = None

    def to_dict(self):
        return {
            'id': self.id,
            'event_description': self.event_description,
            'owner': self.owner,
            'event_title': self.event_title,
            'event_location': self.event_location,
            'event_card_image_url': self.event_card_image_url,
            'attendees': list(self.attendees),
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @staticmethod
    def from_dict(d):
        return Event(
            id=d['id'],
            event_description=d['event_description'],
            owner=d['owner'],
            event_title=d['event_title'],
            event_location=d['event_location'],
            event_card_image_url=d['event_card_image_url'],
            attendees=list(d.get('attendees', [])),
            created_at=d.get('created_at', 0),
            updated_at=d.get('updated_at'),
        )


@dataclass
class EventPayload:
    """create_event / update_event 的请求载荷"""
    event_description: str
    event_title: str
    event_location: str
    event_card_image_url: str
