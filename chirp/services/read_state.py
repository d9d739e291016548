import logging

from chirp.repositories.message_repository import MessageRepository

logger = logging.getLogger(__name__)


class ReadStateReconciler:
    """Flips every unread message from a partner to the current user in one update.

    A message stored while the update runs may land on either side of it and
    then stays unread until the next reconcile for the pair.
    """

    def __init__(self, message_repo: MessageRepository, use_transaction: bool = False) -> None:
        self._message_repo = message_repo
        self._use_transaction = use_transaction

    async def reconcile(self, current_user: str, partner_id: str) -> int:
        if not self._use_transaction:
            updated = await self._message_repo.mark_read(current_user, partner_id)
        else:
            async with await self._message_repo.start_session() as session:
                async with session.start_transaction():
                    updated = await self._message_repo.mark_read(current_user, partner_id, session=session)
        if updated:
            logger.debug("marked %d message(s) from %s to %s as read", updated, partner_id, current_user)
        return updated
