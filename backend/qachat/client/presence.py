# backend/qachat/client/presence.py
"""
Client presence view.

Deltas and snapshots may arrive duplicated or out of order; each carries a
version and the view keeps, per identity, only the highest version seen.
"""

from typing import Dict, Iterable, List, Mapping


class PresenceView:
    def __init__(self) -> None:
        self._online: Dict[str, bool] = {}
        self._versions: Dict[str, int] = {}

    def apply_delta(self, user_id: str, online: bool, version: int) -> bool:
        """Returns True when the delta changed what the view holds."""
        if version <= self._versions.get(user_id, -1):
            return False
        self._versions[user_id] = version
        self._online[user_id] = online
        return True

    def apply_snapshot(
        self, online: Iterable[str], versions: Mapping[str, int], version: int = 0
    ) -> None:
        """
        Merge a scoped snapshot.

        Identities listed without a version have never transitioned on the
        server; a newer local delta still wins over them.
        """
        online_ids = set(online)
        for user_id in online_ids | set(versions):
            user_version = int(versions.get(user_id, 0))
            if user_version < self._versions.get(user_id, -1):
                continue
            self._versions[user_id] = user_version
            self._online[user_id] = user_id in online_ids

    def is_online(self, user_id: str) -> bool:
        return self._online.get(user_id, False)

    def online_ids(self) -> List[str]:
        return sorted(uid for uid, online in self._online.items() if online)

    def version_of(self, user_id: str) -> int:
        return self._versions.get(user_id, 0)

    def clear(self) -> None:
        self._online.clear()
        self._versions.clear()
