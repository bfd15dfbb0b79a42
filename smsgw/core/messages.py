"""Stored SMS history: stats, conversations and deletion."""

from __future__ import annotations

import asyncio
from typing import Any
from urllib.parse import quote

from smsgw.core.dispatcher import CommandOutcome, failed_outcome
from smsgw.core.errors import SmsgwError, TransportError
from smsgw.core.model import Conversation, MessageStats, TextMessage
from smsgw.core.notify import LogNotifier, Notifier
from smsgw.core.store import QueryStore
from smsgw.transports.base import Transport

CONVERSATIONS_KEY = "conversations"
STATS_KEY = "message-stats"


class MessageHistoryClient:
    """Reads and prunes the message history kept by the service.

    Conversations and stats are cached in the shared store; every successful
    delete invalidates both. Messages of a single conversation are always
    fetched fresh, oldest first as the service returns them.
    """

    def __init__(
        self,
        transport: Transport,
        store: QueryStore | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._transport = transport
        self.store = store or QueryStore()
        self.notifier = notifier or LogNotifier()
        self.store.register(CONVERSATIONS_KEY, self._fetch_conversations)
        self.store.register(STATS_KEY, self._fetch_stats)

    async def _fetch_conversations(self) -> list[Conversation]:
        payload = await self._transport.request("GET", "/messages/conversations")
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise TransportError("Unexpected conversation list payload")
        return [Conversation.from_json(doc) for doc in payload if isinstance(doc, dict)]

    async def _fetch_stats(self) -> MessageStats:
        payload = await self._transport.request("GET", "/messages/stats")
        if not isinstance(payload, dict):
            return MessageStats()
        return MessageStats.from_json(payload)

    async def stats(self) -> MessageStats:
        return await self.store.fetch(STATS_KEY)

    async def conversations(self) -> list[Conversation]:
        return list(await self.store.fetch(CONVERSATIONS_KEY))

    async def messages(self, peer: str) -> list[TextMessage]:
        peer = peer.strip()
        if not peer:
            return []
        payload = await self._transport.request("GET", f"/messages/conversations/{quote(peer, safe='')}/messages")
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise TransportError(f"Unexpected message list payload for '{peer}'")
        return [TextMessage.from_json(doc) for doc in payload if isinstance(doc, dict)]

    def invalidate(self) -> list[asyncio.Task[Any]]:
        tasks = [self.store.invalidate(CONVERSATIONS_KEY), self.store.invalidate(STATS_KEY)]
        return [t for t in tasks if t is not None]

    async def delete_message(self, message_id: str) -> CommandOutcome:
        if not message_id.strip():
            return self._reject("Select a message")
        return await self._delete(
            f"/messages/{quote(message_id.strip(), safe='')}",
            success="Message deleted",
            failure="Failed to delete message",
        )

    async def delete_conversation(self, peer: str) -> CommandOutcome:
        if not peer.strip():
            return self._reject("Select a conversation")
        return await self._delete(
            f"/messages/conversations/{quote(peer.strip(), safe='')}",
            success="Conversation deleted",
            failure="Failed to delete conversation",
        )

    async def clear(self) -> CommandOutcome:
        return await self._delete("/messages", success="All messages cleared", failure="Failed to clear messages")

    async def _delete(self, path: str, *, success: str, failure: str) -> CommandOutcome:
        try:
            await self._transport.request("DELETE", path)
        except SmsgwError as exc:
            return failed_outcome(self.notifier, exc, failure, f"DELETE {path}")
        self.notifier.success(success)
        self.invalidate()
        return CommandOutcome(ok=True, message=success)

    def _reject(self, message: str) -> CommandOutcome:
        self.notifier.warning(message)
        return CommandOutcome(ok=False, message=message)
