import logging
from typing import Any, Dict, List, Mapping, Optional

from chirp.core.config import settings
from chirp.repositories.message_repository import MessageRepository
from chirp.repositories.user_repository import UserRepository
from chirp.schemas.message import ConversationOut, MessageOut
from chirp.services.conversation_aggregator import ConversationAggregator
from chirp.services.read_state import ReadStateReconciler
from chirp.utils.errors import NotFoundError, ValidationError
from chirp.utils.notifications import NEW_MESSAGE, NoopNotifier, Notifier, envelope

logger = logging.getLogger(__name__)


def to_message_out(doc: Mapping[str, Any], names: Mapping[str, str]) -> MessageOut:
    return MessageOut(
        id=str(doc["_id"]),
        senderId=doc["sender_id"],
        senderName=names[doc["sender_id"]],
        recipientId=doc["recipient_id"],
        recipientName=names[doc["recipient_id"]],
        content=doc["content"],
        timestamp=doc["created_at"],
        read=bool(doc.get("read", False)),
    )


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        user_repo: UserRepository,
        notifier: Optional[Notifier] = None,
        reconciler: Optional[ReadStateReconciler] = None,
        max_length: Optional[int] = None,
    ) -> None:
        self._message_repo = message_repo
        self._user_repo = user_repo
        self._notifier = notifier or NoopNotifier()
        self._reconciler = reconciler or ReadStateReconciler(
            message_repo, use_transaction=settings.MONGODB_TRANSACTIONS
        )
        self._max_length = max_length or settings.MESSAGE_MAX_LENGTH

    async def send_message(self, sender_id: str, recipient_id: Optional[str], content: Optional[str]) -> MessageOut:
        if not recipient_id or content is None:
            raise ValidationError("Recipient and content are required")
        if recipient_id == sender_id:
            raise ValidationError("Cannot send a message to yourself")
        text = content.strip()
        if not text:
            raise ValidationError("Message content cannot be empty")
        if len(text) > self._max_length:
            raise ValidationError(f"Message content exceeds {self._max_length} characters")

        recipient = await self._user_repo.get_user_by_id(recipient_id)
        if not recipient:
            raise NotFoundError("Recipient not found")

        saved = await self._message_repo.save_message(sender_id, recipient_id, text)
        names = await self._user_repo.get_display_names([sender_id, recipient_id])
        message = to_message_out(saved, names)
        logger.info("message %s stored from %s to %s", message.id, sender_id, recipient_id)

        # the message is durable at this point; delivery is best effort
        delivered = await self._notifier.push(recipient_id, envelope(NEW_MESSAGE, message.model_dump(mode="json")))
        if not delivered:
            logger.debug("message %s left for %s to fetch", message.id, recipient_id)
        return message

    async def get_history(self, user_id: str, partner_id: str) -> List[MessageOut]:
        """Both directions, oldest first, as stored before the read flip this call performs."""
        docs = await self._message_repo.get_between(user_id, partner_id)
        if not docs:
            await self._ensure_partner(partner_id)
            return []
        names = await self._user_repo.get_display_names([user_id, partner_id])
        history = [to_message_out(doc, names) for doc in docs]
        await self._reconciler.reconcile(user_id, partner_id)
        return history

    async def mark_read(self, user_id: str, partner_id: str) -> int:
        updated = await self._reconciler.reconcile(user_id, partner_id)
        if not updated and not await self._message_repo.has_history(user_id, partner_id):
            await self._ensure_partner(partner_id)
        return updated

    async def list_conversations(self, user_id: str) -> List[ConversationOut]:
        aggregator = ConversationAggregator(user_id)
        async for message in self._message_repo.iter_involving(user_id):
            aggregator.add(message)
        names = await self._user_repo.get_display_names(aggregator.partner_ids)
        return [ConversationOut(**row) for row in aggregator.rows(names)]

    async def unread_total(self, user_id: str) -> int:
        return await self._message_repo.count_unread(user_id)

    async def _ensure_partner(self, partner_id: str) -> Dict[str, Any]:
        partner = await self._user_repo.get_user_by_id(partner_id)
        if not partner:
            raise NotFoundError("User not found")
        return partner
