"""
Repertoire tree: a flat arena of nodes keyed by id.

Parent/children are stored as ids and `transposition_of` is a lookup-only link
to the canonical node of the same position. Every walk uses an explicit stack
so very deep opening lines cannot exhaust the interpreter stack.

Invariants kept after every mutation:
  - one root (move None, parent None)
  - sibling moves are distinct
  - color_to_move alternates along every root-to-node path
  - total_nodes == total_moves + 1
  - nodes sharing a position are linked to its canonical node, when the
    position has one (a deleted canonical node leaves its slot empty)
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterator

from errors import DuplicateMove, InvalidMove, NotFound, RootDeletion
from models import Color, Metadata, Repertoire, RepertoireNode
from rules import STARTING_SHORT_FEN, apply_move, same_position, short_fen, side_to_move
from transpositions import TranspositionIndex

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepertoireTree:
    def __init__(self, root_fen: str = STARTING_SHORT_FEN, root_id: str | None = None):
        root = RepertoireNode(
            id=root_id or new_id(),
            fen=short_fen(root_fen),
            color_to_move=side_to_move(root_fen),
        )
        self.root_id = root.id
        self._nodes: dict[str, RepertoireNode] = {root.id: root}
        self._index = TranspositionIndex()
        self._index.register(root.fen, root.id)
        self.metadata = Metadata()

    # ---- lookup ----

    @property
    def root(self) -> RepertoireNode:
        return self._nodes[self.root_id]

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[RepertoireNode]:
        return self.walk()

    def lookup(self, node_id: str) -> RepertoireNode:
        """O(1) id lookup. Raises NotFound."""
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFound(f"node {node_id} not found")
        return node

    def children(self, node_id: str) -> list[RepertoireNode]:
        return [self._nodes[cid] for cid in self.lookup(node_id).children]

    def child_by_move(self, node_id: str, san: str) -> RepertoireNode | None:
        for cid in self.lookup(node_id).children:
            child = self._nodes[cid]
            if child.move == san:
                return child
        return None

    def primary_child(self, node_id: str) -> RepertoireNode | None:
        """The main line continues through the first inserted child."""
        children = self.lookup(node_id).children
        return self._nodes[children[0]] if children else None

    def canonical_for(self, fen: str) -> str | None:
        return self._index.canonical(short_fen(fen))

    def nodes_at(self, fen: str) -> list[RepertoireNode]:
        return [self._nodes[nid] for nid in self._index.holders(short_fen(fen))]

    def walk(self, start_id: str | None = None) -> Iterator[RepertoireNode]:
        """Pre-order traversal, children visited in insertion order."""
        stack = [start_id or self.root_id]
        while stack:
            node = self._nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    def subtree_ids(self, node_id: str) -> list[str]:
        self.lookup(node_id)
        return [n.id for n in self.walk(node_id)]

    def path_to(self, node_id: str) -> list[RepertoireNode]:
        """Nodes from the root down to `node_id`, both included."""
        node = self.lookup(node_id)
        path = [node]
        while node.parent_id is not None:
            node = self._nodes[node.parent_id]
            path.append(node)
        path.reverse()
        return path

    # ---- mutation ----

    def add_node(
        self,
        parent_id: str,
        move: str,
        result_fen: str | None = None,
        move_number: int | None = None,
        color_to_move: str | None = None,
    ) -> RepertoireNode:
        """
        Add `move` under `parent_id` and return the new node.

        `result_fen`, `move_number` and `color_to_move` are optional; when given
        they must agree with what the rules engine derives from the parent.
        Raises NotFound, DuplicateMove or InvalidMove without touching the tree.
        """
        node = self._add_node(parent_id, move, result_fen, move_number, color_to_move)
        self._recompute_metadata()
        return node

    def _add_node(self, parent_id, move, result_fen=None, move_number=None, color_to_move=None):
        parent = self.lookup(parent_id)
        san, fen = apply_move(parent.fen, move)
        if self.child_by_move(parent_id, san) is not None:
            raise DuplicateMove(f"{san} already exists under node {parent_id}")

        if result_fen is not None and not same_position(result_fen, fen):
            raise InvalidMove(f"{move} from {parent.fen} does not lead to {result_fen}")

        expected_color = side_to_move(fen)
        if color_to_move is not None and color_to_move != expected_color:
            raise InvalidMove(f"{move} leaves {expected_color} to move, not {color_to_move}")

        expected_number = parent.move_number + 1 if parent.color_to_move == "w" else parent.move_number
        if move_number is not None and move_number != expected_number:
            raise InvalidMove(f"{move} is move {expected_number}, not {move_number}")

        node = RepertoireNode(
            id=new_id(),
            fen=fen,
            move=san,
            move_number=expected_number,
            color_to_move=expected_color,
            parent_id=parent.id,
        )
        self._nodes[node.id] = node
        parent.children.append(node.id)

        node.transposition_of = self._index.register(fen, node.id)
        if node.transposition_of is None:
            # Position is canonical again after its previous canonical node was deleted
            for holder in self.nodes_at(fen):
                if holder.id != node.id and holder.transposition_of is None:
                    holder.transposition_of = node.id
        else:
            logger.debug("node %s (%s) transposes into %s", node.id, san, node.transposition_of)
        return node

    def add_line(self, moves: list[str], parent_id: str | None = None) -> RepertoireNode:
        """Walk `moves` from `parent_id` (root by default), adding what is missing."""
        node = self.lookup(parent_id or self.root_id)
        for move in moves:
            san, _ = apply_move(node.fen, move)
            node = self.child_by_move(node.id, san) or self._add_node(node.id, san)
        self._recompute_metadata()
        return node

    def delete_node(self, node_id: str) -> list[str]:
        """
        Remove `node_id` and its whole subtree. Returns the removed ids.

        Canonical slots held by removed nodes are cleared, never handed to a
        survivor. Every surviving node of such a position is left unlinked
        (serialized with `canonical: false`) until a node is inserted at that
        position again; that node becomes canonical and the survivors link to it.
        """
        if node_id == self.root_id:
            raise RootDeletion("cannot delete root node")
        node = self.lookup(node_id)

        removed = self.subtree_ids(node_id)
        removed_set = set(removed)
        self._nodes[node.parent_id].children.remove(node_id)

        touched_fens = set()
        for rid in removed:
            gone = self._nodes.pop(rid)
            self._index.unregister(gone.fen, rid)
            touched_fens.add(gone.fen)

        for fen in touched_fens:
            canonical = self.canonical_for(fen)
            for holder in self.nodes_at(fen):
                if holder.transposition_of in removed_set:
                    holder.transposition_of = canonical

        self._recompute_metadata()
        logger.debug("deleted %d nodes under %s", len(removed), node_id)
        return removed

    def set_comment(self, node_id: str, comment: str | None) -> RepertoireNode:
        node = self.lookup(node_id)
        comment = (comment or "").strip()
        node.comment = comment or None
        return node

    def merge(self, source: "RepertoireTree") -> None:
        """Unify `source` into this tree: equal moves merge, new moves are appended."""
        self._copy_children(source, source.root_id, self.root_id)
        self._recompute_metadata()

    def extract_subtree(self, node_id: str) -> "RepertoireTree":
        """
        Move the subtree at `node_id` into a new tree.

        The new tree holds the root-to-node spine plus the full subtree, all with
        fresh ids. The subtree is deleted from this tree.
        """
        if node_id == self.root_id:
            raise RootDeletion("cannot extract root node")
        path = self.path_to(node_id)

        extracted = RepertoireTree(root_fen=self.root.fen)
        extracted.root.comment = self.root.comment
        cursor = extracted.root
        for node in path[1:]:
            cursor = extracted._add_node(cursor.id, node.move)
            cursor.comment = node.comment
        extracted._copy_children(self, node_id, cursor.id)
        extracted._recompute_metadata()

        self.delete_node(node_id)
        return extracted

    def _copy_children(self, source: "RepertoireTree", source_id: str, target_id: str) -> None:
        stack = [(source_id, target_id)]
        while stack:
            src_id, dst_id = stack.pop()
            for src_child in source.children(src_id):
                existing = self.child_by_move(dst_id, src_child.move)
                if existing is not None:
                    if existing.comment is None:
                        existing.comment = src_child.comment
                    stack.append((src_child.id, existing.id))
                else:
                    added = self._add_node(dst_id, src_child.move)
                    added.comment = src_child.comment
                    stack.append((src_child.id, added.id))

    def _recompute_metadata(self) -> None:
        total_nodes = total_moves = deepest = 0
        stack = [(self.root_id, 0)]
        while stack:
            nid, depth = stack.pop()
            node = self._nodes[nid]
            total_nodes += 1
            if node.move is not None:
                total_moves += 1
            deepest = max(deepest, depth)
            stack.extend((cid, depth + 1) for cid in node.children)
        self.metadata = Metadata(total_nodes=total_nodes, total_moves=total_moves, deepest_depth=deepest)

    def _rebuild_index(self, unlinked: set[str] = frozenset()) -> None:
        """
        Rebuild the index from loaded nodes.

        The first unmarked node of a position (pre-order) is canonical. Ids in
        `unlinked` were stored with `canonical: false`: they never claim a slot,
        so a position cleared by a deletion stays cleared across a reload.
        """
        self._index.clear()
        ordered = list(self.walk())
        canonical: dict[str, str] = {}
        for node in ordered:
            if node.transposition_of is None and node.id not in unlinked:
                canonical.setdefault(node.fen, node.id)
        cleared = {self._nodes[nid].fen for nid in unlinked if nid in self._nodes}
        for node in ordered:
            if node.fen not in cleared:
                canonical.setdefault(node.fen, node.id)
        for fen, nid in canonical.items():
            self._index.register(fen, nid)
        for node in ordered:
            owner = canonical.get(node.fen)
            if owner == node.id:
                node.transposition_of = None
                continue
            self._index.add_holder(node.fen, node.id)
            node.transposition_of = owner

    # ---- serialization ----

    def to_dict(self) -> dict:
        """Nested JSON shape: each node embeds its children objects in order."""
        out: dict[str, dict] = {}
        for node in self.walk():
            data = {
                "id": node.id,
                "fen": node.fen,
                "move": node.move,
                "moveNumber": node.move_number,
                "colorToMove": node.color_to_move,
                "parentId": node.parent_id,
                "children": [],
            }
            if node.transposition_of:
                data["transpositionOf"] = node.transposition_of
            elif self.canonical_for(node.fen) != node.id:
                data["canonical"] = False
            if node.comment:
                data["comment"] = node.comment
            out[node.id] = data
            if node.parent_id is not None:
                out[node.parent_id]["children"].append(data)
        return out[self.root_id]

    @classmethod
    def from_dict(cls, data: dict) -> "RepertoireTree":
        tree = cls.__new__(cls)
        tree.root_id = data["id"]
        tree._nodes = {}
        tree._index = TranspositionIndex()
        unlinked = set()
        stack = [(data, None)]
        while stack:
            raw, parent_id = stack.pop()
            node = RepertoireNode(
                id=raw["id"],
                fen=short_fen(raw["fen"]),
                move=raw.get("move") if parent_id is not None else None,
                move_number=raw.get("moveNumber", 0),
                color_to_move=raw.get("colorToMove") or side_to_move(raw["fen"]),
                parent_id=parent_id,
                transposition_of=raw.get("transpositionOf"),
                comment=raw.get("comment"),
            )
            if node.id in tree._nodes:
                raise ValueError(f"duplicate node id {node.id} in tree data")
            tree._nodes[node.id] = node
            if raw.get("canonical") is False:
                unlinked.add(node.id)
            children = raw.get("children") or []
            node.children = [child["id"] for child in children]
            stack.extend((child, node.id) for child in reversed(children))
        tree._rebuild_index(unlinked)
        tree._recompute_metadata()
        return tree


# ---- operations on a repertoire ----


def new_repertoire(name: str, color: Color, repertoire_id: str | None = None) -> Repertoire:
    now = utcnow()
    return Repertoire(
        id=repertoire_id or new_id(),
        name=name,
        color=color,
        tree=RepertoireTree(),
        created_at=now,
        updated_at=now,
    )


def add_node(
    repertoire: Repertoire,
    parent_id: str,
    move: str,
    result_fen: str | None = None,
    move_number: int | None = None,
    color_to_move: str | None = None,
) -> Repertoire:
    repertoire.tree.add_node(parent_id, move, result_fen, move_number, color_to_move)
    repertoire.updated_at = utcnow()
    return repertoire


def delete_node(repertoire: Repertoire, node_id: str) -> Repertoire:
    repertoire.tree.delete_node(node_id)
    repertoire.updated_at = utcnow()
    return repertoire


def repertoire_from_dict(data: dict) -> Repertoire:
    def parse_ts(value):
        if value is None or isinstance(value, datetime):
            return value
        return datetime.fromisoformat(value)

    return Repertoire(
        id=data["id"],
        name=data["name"],
        color=data["color"],
        tree=RepertoireTree.from_dict(data["treeData"]),
        created_at=parse_ts(data.get("createdAt")),
        updated_at=parse_ts(data.get("updatedAt")),
        version=data.get("version", 0),
        category_id=data.get("categoryId"),
    )
