import threading
from typing import Any, Dict, List, Optional


class PresenceRegistry:
    """user id -> live connection handle, one handle per user (last connect wins).

    Lookups come from every send request while registration and removal come
    from connection lifecycles, so the map is guarded by a single lock.
    """

    def __init__(self) -> None:
        self._handles: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def register(self, user_id: str, handle: Any) -> Optional[Any]:
        """Store ``handle`` for ``user_id`` and return the handle it displaced, if any."""
        with self._lock:
            previous = self._handles.get(user_id)
            self._handles[user_id] = handle
        return previous if previous is not handle else None

    def unregister(self, user_id: str, handle: Any = None) -> bool:
        """Remove the entry; with ``handle`` given, only while it is still the registered one."""
        with self._lock:
            current = self._handles.get(user_id)
            if current is None:
                return False
            if handle is not None and current is not handle:
                return False
            del self._handles[user_id]
            return True

    def unregister_by_handle(self, handle: Any) -> Optional[str]:
        with self._lock:
            for user_id, current in self._handles.items():
                if current is handle:
                    del self._handles[user_id]
                    return user_id
        return None

    def lookup(self, user_id: str) -> Optional[Any]:
        with self._lock:
            return self._handles.get(user_id)

    def is_online(self, user_id: str) -> bool:
        return self.lookup(user_id) is not None

    def online_users(self) -> List[str]:
        with self._lock:
            return list(self._handles)

    def clear(self) -> None:
        with self._lock:
            self._handles.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
