"""Starter repertoires: one main line each, replayed through the tree."""

from dataclasses import dataclass, field

from models import BLACK, WHITE, Color
from tree import RepertoireTree


@dataclass
class RepertoireTemplate:
    id: str
    name: str
    color: Color
    description: str
    moves: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "color": self.color, "description": self.description}


STARTER_TEMPLATES: list[RepertoireTemplate] = [
    # White
    RepertoireTemplate("italian", "Italian Game", WHITE, "1.e4 e5 2.Nf3 Nc6 3.Bc4 Bc5 4.c3 Nf6 5.d4",
                       ["e4", "e5", "Nf3", "Nc6", "Bc4", "Bc5", "c3", "Nf6", "d4"]),
    RepertoireTemplate("london", "London System", WHITE, "1.d4 d5 2.Bf4 Nf6 3.e3 e6 4.Nd2 c5 5.c3",
                       ["d4", "d5", "Bf4", "Nf6", "e3", "e6", "Nd2", "c5", "c3"]),
    RepertoireTemplate("scotch", "Scotch Game", WHITE, "1.e4 e5 2.Nf3 Nc6 3.d4 exd4 4.Nxd4 Nf6 5.Nc3",
                       ["e4", "e5", "Nf3", "Nc6", "d4", "exd4", "Nxd4", "Nf6", "Nc3"]),
    RepertoireTemplate("ruy-lopez", "Ruy López", WHITE, "1.e4 e5 2.Nf3 Nc6 3.Bb5 a6 4.Ba4 Nf6 5.O-O",
                       ["e4", "e5", "Nf3", "Nc6", "Bb5", "a6", "Ba4", "Nf6", "O-O"]),
    RepertoireTemplate("queens-gambit", "Queen's Gambit", WHITE, "1.d4 d5 2.c4 e6 3.Nc3 Nf6 4.Bg5 Be7 5.e3",
                       ["d4", "d5", "c4", "e6", "Nc3", "Nf6", "Bg5", "Be7", "e3"]),
    RepertoireTemplate("vienna", "Vienna Game", WHITE, "1.e4 e5 2.Nc3 Nf6 3.f4 d5 4.fxe5 Nxe4 5.Nf3",
                       ["e4", "e5", "Nc3", "Nf6", "f4", "d5", "fxe5", "Nxe4", "Nf3"]),
    # Black
    RepertoireTemplate("sicilian", "Sicilian Najdorf", BLACK, "1.e4 c5 2.Nf3 d6 3.d4 cxd4 4.Nxd4 Nf6 5.Nc3 a6",
                       ["e4", "c5", "Nf3", "d6", "d4", "cxd4", "Nxd4", "Nf6", "Nc3", "a6"]),
    RepertoireTemplate("french", "French Defense", BLACK, "1.e4 e6 2.d4 d5 3.Nc3 Nf6 4.e5 Nfd7 5.f4",
                       ["e4", "e6", "d4", "d5", "Nc3", "Nf6", "e5", "Nfd7", "f4"]),
    RepertoireTemplate("scandinavian", "Scandinavian Defense", BLACK, "1.e4 d5 2.exd5 Qxd5 3.Nc3 Qa5 4.d4 Nf6 5.Nf3",
                       ["e4", "d5", "exd5", "Qxd5", "Nc3", "Qa5", "d4", "Nf6", "Nf3"]),
    RepertoireTemplate("caro-kann", "Caro-Kann Defense", BLACK, "1.e4 c6 2.d4 d5 3.Nc3 dxe4 4.Nxe4 Bf5 5.Ng3",
                       ["e4", "c6", "d4", "d5", "Nc3", "dxe4", "Nxe4", "Bf5", "Ng3"]),
    RepertoireTemplate("kings-indian", "King's Indian Defense", BLACK, "1.d4 Nf6 2.c4 g6 3.Nc3 Bg7 4.e4 d6 5.Nf3",
                       ["d4", "Nf6", "c4", "g6", "Nc3", "Bg7", "e4", "d6", "Nf3"]),
    RepertoireTemplate("slav", "Slav Defense", BLACK, "1.d4 d5 2.c4 c6 3.Nf3 Nf6 4.Nc3 dxc4 5.a4",
                       ["d4", "d5", "c4", "c6", "Nf3", "Nf6", "Nc3", "dxc4", "a4"]),
]


def get_template(template_id: str) -> RepertoireTemplate | None:
    for template in STARTER_TEMPLATES:
        if template.id == template_id:
            return template
    return None


def build_template_tree(template: RepertoireTemplate) -> RepertoireTree:
    tree = RepertoireTree()
    tree.add_line(template.moves)
    return tree
