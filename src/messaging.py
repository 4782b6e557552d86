"""Queue client contract and local queue implementations.

A queue hands out at most one message per receive. A received message
stays invisible to other receivers until it is deleted with its pop
receipt or its lease runs out, after which it is delivered again. There
is no dead-letter handling: a message that keeps failing is redelivered
for as long as it exists.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from src.errors import NotFoundError, TransientIOError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueMessage:
    """A leased queue message."""

    message_id: str
    pop_receipt: str
    body: bytes
    dequeue_count: int = 1


class QueueClient(Protocol):
    """Contract the listener relies on."""

    async def receive_message(self) -> QueueMessage | None: ...

    async def delete_message(self, message_id: str, pop_receipt: str) -> None: ...


def _encode_body(body: str | bytes | dict[str, Any]) -> bytes:
    if isinstance(body, dict):
        return json.dumps(body).encode("utf-8")
    if isinstance(body, str):
        return body.encode("utf-8")
    return body


@dataclass
class _Entry:
    message_id: str
    body: bytes
    dequeue_count: int = 0
    pop_receipt: str | None = None
    leased: bool = False


class InMemoryQueue:
    """FIFO queue held in memory.

    Leases never expire on their own; :meth:`release_unacknowledged`
    plays the role of the visibility timeout.
    """

    def __init__(self) -> None:
        self._entries: list[_Entry] = []

    def send(self, body: str | bytes | dict[str, Any]) -> str:
        """Enqueue a message and return its id."""
        entry = _Entry(message_id=uuid.uuid4().hex, body=_encode_body(body))
        self._entries.append(entry)
        return entry.message_id

    @property
    def approximate_count(self) -> int:
        """Number of messages not yet deleted, leased or not."""
        return len(self._entries)

    def release_unacknowledged(self) -> int:
        """Make every leased message visible again; returns how many."""
        released = 0
        for entry in self._entries:
            if entry.leased:
                entry.leased = False
                entry.pop_receipt = None
                released += 1
        return released

    async def receive_message(self) -> QueueMessage | None:
        for entry in self._entries:
            if not entry.leased:
                entry.leased = True
                entry.dequeue_count += 1
                entry.pop_receipt = uuid.uuid4().hex
                return QueueMessage(
                    message_id=entry.message_id,
                    pop_receipt=entry.pop_receipt,
                    body=entry.body,
                    dequeue_count=entry.dequeue_count,
                )
        return None

    async def delete_message(self, message_id: str, pop_receipt: str) -> None:
        for index, entry in enumerate(self._entries):
            if entry.message_id == message_id:
                if entry.pop_receipt != pop_receipt:
                    msg = f"Pop receipt for message {message_id} is no longer valid"
                    raise TransientIOError(msg)
                del self._entries[index]
                return
        msg = f"Message {message_id} not found"
        raise NotFoundError(msg)


class DirectoryQueue:
    """Queue backed by a directory of ``*.json`` files, one per message.

    Messages are delivered oldest first (by file name, which starts with
    the enqueue time). Leases are tracked in memory and expire after
    ``visibility_timeout`` seconds.
    """

    def __init__(self, queue_dir: Path, visibility_timeout: float = 30.0) -> None:
        self.queue_dir = queue_dir
        self.queue_dir.mkdir(parents=True, exist_ok=True)
        self.visibility_timeout = visibility_timeout
        # message_id -> (pop_receipt, lease expiry)
        self._leases: dict[str, tuple[str, float]] = {}
        self._dequeue_counts: dict[str, int] = {}

    def send(self, body: str | bytes | dict[str, Any]) -> str:
        """Write a message file and return its id."""
        message_id = f"{time.time_ns():020d}_{uuid.uuid4().hex[:8]}"
        (self.queue_dir / f"{message_id}.json").write_bytes(_encode_body(body))
        return message_id

    def _is_leased(self, message_id: str, now: float) -> bool:
        lease = self._leases.get(message_id)
        if lease is None:
            return False
        if lease[1] <= now:
            del self._leases[message_id]
            return False
        return True

    def _forget_missing(self, present: set[str], now: float) -> None:
        """Drop bookkeeping for messages whose files were removed elsewhere."""
        for message_id in set(self._dequeue_counts) | set(self._leases):
            # a live lease is kept so its holder can still delete
            if message_id not in present and not self._is_leased(message_id, now):
                self._dequeue_counts.pop(message_id, None)

    def _receive(self) -> QueueMessage | None:
        now = time.monotonic()
        paths = sorted(self.queue_dir.glob("*.json"))
        self._forget_missing({path.stem for path in paths}, now)
        for path in paths:
            message_id = path.stem
            if self._is_leased(message_id, now):
                continue
            try:
                body = path.read_bytes()
            except FileNotFoundError:
                continue
            except OSError as e:
                msg = f"Could not read queue message {path}: {e}"
                raise TransientIOError(msg) from e

            pop_receipt = uuid.uuid4().hex
            self._leases[message_id] = (pop_receipt, now + self.visibility_timeout)
            count = self._dequeue_counts.get(message_id, 0) + 1
            self._dequeue_counts[message_id] = count
            return QueueMessage(
                message_id=message_id, pop_receipt=pop_receipt, body=body, dequeue_count=count
            )
        return None

    async def receive_message(self) -> QueueMessage | None:
        return await asyncio.to_thread(self._receive)

    async def delete_message(self, message_id: str, pop_receipt: str) -> None:
        lease = self._leases.get(message_id)
        if lease is None or lease[0] != pop_receipt:
            msg = f"Pop receipt for message {message_id} is no longer valid"
            raise TransientIOError(msg)

        path = self.queue_dir / f"{message_id}.json"
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            msg = f"Could not delete queue message {path}: {e}"
            raise TransientIOError(msg) from e
        del self._leases[message_id]
        self._dequeue_counts.pop(message_id, None)
        logger.debug("Deleted queue message %s", message_id)
