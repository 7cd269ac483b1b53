"""
Transposition index for one repertoire tree.

Maps a short FEN to the first ("canonical") node that reached it, and keeps the
ids of every live node standing on that position. Only RepertoireTree touches
it: callers never mutate an index directly.
"""


class TranspositionIndex:
    def __init__(self):
        self._canonical: dict[str, str] = {}
        self._holders: dict[str, list[str]] = {}

    def __len__(self) -> int:
        return len(self._canonical)

    def __contains__(self, fen: str) -> bool:
        return fen in self._canonical

    def canonical(self, fen: str) -> str | None:
        return self._canonical.get(fen)

    def holders(self, fen: str) -> list[str]:
        """All live node ids at `fen`, in insertion order."""
        return list(self._holders.get(fen, ()))

    def register(self, fen: str, node_id: str) -> str | None:
        """
        Record `node_id` at `fen`.

        Returns the canonical id the node transposes into, or None when the
        slot was empty and `node_id` became canonical.
        """
        self._holders.setdefault(fen, []).append(node_id)
        canonical = self._canonical.get(fen)
        if canonical is None:
            self._canonical[fen] = node_id
            return None
        return canonical

    def add_holder(self, fen: str, node_id: str) -> None:
        """Record `node_id` at `fen` without claiming an empty canonical slot."""
        self._holders.setdefault(fen, []).append(node_id)

    def unregister(self, fen: str, node_id: str) -> bool:
        """
        Forget `node_id`. Returns True when it was canonical.

        A cleared slot is not handed to another holder: the next registration
        at that position becomes canonical.
        """
        holders = self._holders.get(fen)
        if holders and node_id in holders:
            holders.remove(node_id)
            if not holders:
                del self._holders[fen]
        if self._canonical.get(fen) == node_id:
            del self._canonical[fen]
            return True
        return False

    def clear(self) -> None:
        self._canonical.clear()
        self._holders.clear()
