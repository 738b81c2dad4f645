from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reminder:
    title: str
    body: str
    fire_at: Optional[datetime]  # None = deliver immediately
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class ReminderScheduler(ABC):
    """Local notification delivery."""

    @abstractmethod
    def schedule_one_shot(self, title: str, body: str, fire_at: datetime) -> Reminder:
        raise NotImplementedError

    @abstractmethod
    def cancel_all(self) -> None:
        raise NotImplementedError

    def notify_now(self, title: str, body: str) -> None:
        log.info("Notice: %s: %s", title, body)


class InMemoryReminderScheduler(ReminderScheduler):
    """Keeps pending reminders in a list; the host polls ``due()``."""

    def __init__(self) -> None:
        self.pending: List[Reminder] = []
        self.sent: List[Reminder] = []

    def schedule_one_shot(self, title: str, body: str, fire_at: datetime) -> Reminder:
        rem = Reminder(title=title, body=body, fire_at=fire_at)
        self.pending.append(rem)
        log.info("Reminder %r scheduled for %s", title, fire_at.isoformat())
        return rem

    def cancel_all(self) -> None:
        if self.pending:
            log.info("Cancelled %d pending reminder(s)", len(self.pending))
        self.pending.clear()

    def notify_now(self, title: str, body: str) -> None:
        super().notify_now(title, body)
        self.sent.append(Reminder(title=title, body=body, fire_at=None))

    def due(self, now: datetime) -> List[Reminder]:
        """Pop reminders whose time has come."""
        ready = [r for r in self.pending if r.fire_at is not None and r.fire_at <= now]
        self.pending = [r for r in self.pending if r not in ready]
        self.sent.extend(ready)
        return ready
