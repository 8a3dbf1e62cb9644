from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable


class StateValidation(str, Enum):
    valid = "valid"
    invalid = "invalid"
    expired = "expired"


@dataclass
class CsrfStateStore:
    """Single-use, time-limited state tokens binding an authorize redirect to its callback."""

    ttl_seconds: int = 600
    clock: Callable[[], float] = time.time
    _issued_at: dict[str, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def issue(self) -> str:
        # 32 字节随机数 = 256 bit
        state = secrets.token_urlsafe(32)
        with self._lock:
            self._purge_expired()
            self._issued_at[state] = self.clock()
        return state

    def verify(self, state: str) -> StateValidation:
        with self._lock:
            issued_at = self._issued_at.pop(state, None)
            if issued_at is None:
                result = StateValidation.invalid
            elif self.clock() - issued_at > self.ttl_seconds:
                result = StateValidation.expired
            else:
                result = StateValidation.valid
            self._purge_expired()
        return result

    def __len__(self) -> int:
        return len(self._issued_at)

    def _purge_expired(self) -> None:
        now = self.clock()
        expired = [
            key for key, issued_at in self._issued_at.items()
            if now - issued_at > self.ttl_seconds
        ]
        for key in expired:
            self._issued_at.pop(key, None)
