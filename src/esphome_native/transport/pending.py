"""Pending request table keyed by expected response type.

The native API has no request id field: a reply is matched to a request only
by its message type. The table therefore holds at most one waiting caller per
response type, and a second request for the same type is refused rather than
guessed at.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from esphome_native.protocol.message_types import describe_type
from esphome_native.transport.exceptions import RequestPendingError
from esphome_native.transport.types import PendingRequest

logger = logging.getLogger(__name__)


class PendingRequestTable:
    def __init__(self) -> None:
        self._entries: dict[int, PendingRequest] = {}

    def register(self, expected_tag: int, correlation_id: str) -> PendingRequest:
        """Create the entry for a request about to be sent.

        Raises:
            RequestPendingError: Another request already awaits this type
        """
        if expected_tag in self._entries:
            raise RequestPendingError(expected_tag)

        entry = PendingRequest(
            expected_tag=expected_tag,
            correlation_id=correlation_id,
            sent_at=time.perf_counter(),
            future=asyncio.get_running_loop().create_future(),
        )
        self._entries[expected_tag] = entry
        return entry

    def resolve(self, type_tag: int, message: Any) -> PendingRequest | None:
        """Hand ``message`` to the request awaiting ``type_tag``.

        Returns:
            The completed entry, or None when nobody was waiting
        """
        entry = self._entries.pop(type_tag, None)
        if entry is None:
            return None
        if entry.future.done():
            # Caller gave up between the reply arriving and its own cleanup
            logger.debug(
                "Reply %s arrived for abandoned request",
                describe_type(type_tag),
                extra={"type": describe_type(type_tag), "correlation_id": entry.correlation_id},
            )
            return None
        entry.future.set_result(message)
        return entry

    def discard(self, entry: PendingRequest) -> None:
        """Remove ``entry`` if it is still the one registered for its type."""
        if self._entries.get(entry.expected_tag) is entry:
            del self._entries[entry.expected_tag]

    def fail_all(self, error: BaseException) -> int:
        """Fail every waiting request with ``error`` and empty the table."""
        failed = 0
        for entry in self._entries.values():
            if not entry.future.done():
                entry.future.set_exception(error)
                failed += 1
        self._entries.clear()
        return failed

    @property
    def tags(self) -> frozenset[int]:
        return frozenset(self._entries)

    def __contains__(self, expected_tag: object) -> bool:
        return expected_tag in self._entries

    def __len__(self) -> int:
        return len(self._entries)
