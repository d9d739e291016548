"""Conversation list aggregation.

Every message involving a user is folded, in a single pass, into one summary
per conversation partner. Summaries are then ordered newest first, with the
message id as tie-break, so the output is deterministic for equal timestamps.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from chirp.repositories.user_repository import UNKNOWN_USER


def order_key(message: Mapping[str, Any]) -> Tuple[datetime, str]:
    return message["created_at"], str(message["_id"])


@dataclass
class ConversationSummary:
    partner_id: str
    last_message: Mapping[str, Any]
    unread_count: int = 0

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return order_key(self.last_message)


class ConversationAggregator:

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self._by_partner: Dict[str, ConversationSummary] = {}

    def partner_of(self, message: Mapping[str, Any]) -> str:
        if message["sender_id"] == self.user_id:
            return message["recipient_id"]
        return message["sender_id"]

    def add(self, message: Mapping[str, Any]) -> None:
        partner_id = self.partner_of(message)
        summary = self._by_partner.get(partner_id)
        if summary is None:
            summary = ConversationSummary(partner_id=partner_id, last_message=message)
            self._by_partner[partner_id] = summary
        elif order_key(message) > summary.sort_key:
            summary.last_message = message
        if message["recipient_id"] == self.user_id and not message.get("read", False):
            summary.unread_count += 1

    def extend(self, messages: Iterable[Mapping[str, Any]]) -> "ConversationAggregator":
        for message in messages:
            self.add(message)
        return self

    @property
    def partner_ids(self) -> List[str]:
        return list(self._by_partner)

    def summaries(self) -> List[ConversationSummary]:
        return sorted(self._by_partner.values(), key=lambda s: s.sort_key, reverse=True)

    def rows(self, names: Mapping[str, str]) -> List[Dict[str, Any]]:
        return [
            {
                "id": summary.partner_id,
                "participantName": names.get(summary.partner_id, UNKNOWN_USER),
                "lastMessage": summary.last_message["content"],
                "lastMessageTime": summary.last_message["created_at"],
                "unreadCount": summary.unread_count,
            }
            for summary in self.summaries()
        ]
