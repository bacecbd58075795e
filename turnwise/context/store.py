from __future__ import annotations

import asyncio
import logging
import os
import secrets
import threading
from datetime import UTC
from pathlib import Path
from typing import Protocol

from turnwise.clock import SystemTimeProvider, TimeProvider
from turnwise.context.envelope import derive_key, open_envelope, seal
from turnwise.exceptions import EnvelopeError, StoreReadError, StoreWriteError
from turnwise.models import ChatMessage, ChatRole

logger = logging.getLogger(__name__)

_RECORD_SUFFIX = ".json"

# Process-wide ordering state shared by every store instance, so interleaved writers
# in one process still produce names that sort in append order.
_order_lock = threading.Lock()
_last_stamp = ""
_sequence = 0


def _next_ordering_key(stamp: str) -> str:
    global _last_stamp, _sequence
    with _order_lock:
        # Never go backwards, even if the wall clock does
        if stamp < _last_stamp:
            stamp = _last_stamp
        _last_stamp = stamp
        _sequence += 1
        return f"{stamp}_{_sequence:08d}"


class ConversationStore(Protocol):
    async def append_message(self, message: ChatMessage) -> None: ...

    async def read_tail(self, n: int) -> list[ChatMessage]: ...


class FileConversationStore:
    """Append-only store holding one envelope file per message.

    With an encryption key every new record is sealed with AES-256-GCM; without one,
    records are written as PLAINTEXT envelopes. Reads return whatever the configured
    key can open, so a directory may mix plaintext records and records written under
    several keys over time.
    """

    def __init__(
        self,
        root: str | Path,
        encryption_key: str | None = None,
        clock: TimeProvider | None = None,
    ):
        self._root = Path(root)
        self._key = derive_key(encryption_key)
        self._clock = clock or SystemTimeProvider()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreWriteError("Cannot create conversation directory", str(self._root)) from exc
        logger.info(
            "Conversation store at %s (encryption %s)",
            self._root,
            "enabled" if self._key else "disabled",
        )

    @property
    def root(self) -> Path:
        return self._root

    @property
    def encrypted(self) -> bool:
        return self._key is not None

    async def append_message(self, message: ChatMessage) -> None:
        """Persist one message as a new record. Raises StoreWriteError if it was not stored."""
        payload = seal(message, self._key)
        path = self._root / self._record_name(message.role)
        await asyncio.to_thread(self._write_atomic, path, payload)
        logger.debug("Appended %s message: %s", message.role, path.name)

    async def read_tail(self, n: int) -> list[ChatMessage]:
        """Return the newest n decodable messages, oldest first."""
        if n <= 0:
            return []
        return await asyncio.to_thread(self._read_tail_sync, n)

    def _record_name(self, role: ChatRole) -> str:
        stamp = self._clock.now().astimezone(UTC).strftime("%Y%m%dT%H%M%S%fZ")
        return f"{_next_ordering_key(stamp)}_{role}{_RECORD_SUFFIX}"

    def _write_atomic(self, path: Path, payload: str) -> None:
        # Readers only look at *.json, so the temp file is never visible as a record
        tmp = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StoreWriteError("Failed to write conversation record", str(path)) from exc

    def _read_tail_sync(self, n: int) -> list[ChatMessage]:
        try:
            names = sorted(
                (
                    entry.name
                    for entry in os.scandir(self._root)
                    if entry.name.endswith(_RECORD_SUFFIX) and not entry.name.startswith(".")
                ),
                reverse=True,
            )
        except OSError as exc:
            raise StoreReadError("Cannot list conversation directory", str(self._root)) from exc

        messages: list[ChatMessage] = []
        for name in names:
            path = self._root / name
            try:
                raw = path.read_bytes()
            except FileNotFoundError:
                logger.debug("Record disappeared before it could be read: %s", name)
                continue
            except OSError as exc:
                raise StoreReadError("Cannot read conversation record", str(path)) from exc

            try:
                messages.append(open_envelope(raw, self._key))
            except EnvelopeError as exc:
                logger.debug("Skipping undecodable record %s: %s", name, exc)
                continue

            if len(messages) >= n:
                break

        messages.reverse()
        return messages
