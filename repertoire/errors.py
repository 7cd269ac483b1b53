"""Error taxonomy for repertoire editing and game analysis."""


class RepertoireError(Exception):
    """Base class for every failure raised by this package."""


class NotFound(RepertoireError):
    """Node, repertoire, analysis or game is absent."""


class DuplicateMove(RepertoireError):
    """The parent already has a child for this move."""


class InvalidMove(RepertoireError):
    """The rules engine rejects the move / FEN pair."""


class RootDeletion(RepertoireError):
    """The root node can be neither deleted nor extracted."""


class VersionConflict(RepertoireError):
    """A concurrent write won; the caller saved a stale snapshot."""


class ColorMismatch(RepertoireError):
    """Repertoire color does not match the color the user played."""


class ValidationError(RepertoireError):
    """Request-level input is malformed (names, colors, merge sets, templates)."""


class LimitReached(RepertoireError):
    """Maximum number of repertoires reached."""


class LichessError(RepertoireError):
    """Lichess API failure."""


class LichessUserNotFound(LichessError):
    pass


class LichessRateLimited(LichessError):
    pass


class PayloadTooLarge(RepertoireError):
    """PGN text exceeds MAX_PGN_FILE_SIZE."""
