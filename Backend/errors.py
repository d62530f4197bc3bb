"""
Error taxonomy for the ranking engine.

Every error carries a developer-facing message, a user-facing message and a
context dict (player_id, game_type, field, ...) for operator diagnosis.
"""


class RankingError(Exception):
    """Base exception for ranking and leaderboard errors."""

    retryable = False

    def __init__(self, message: str, user_message: str = None, **context):
        super().__init__(message)
        self.user_message = user_message or message
        self.context = {key: value for key, value in context.items() if value is not None}


class ValidationError(RankingError):
    """Raised when a submission or query parameter is malformed or out of range."""

    def __init__(self, field: str, value, reason: str, player_id=None, game_type=None):
        super().__init__(
            f"Invalid {field}={value!r}: {reason}",
            f"Invalid {field}: {reason}",
            field=field,
            value=value,
            player_id=player_id,
            game_type=game_type,
        )
        self.field = field
        self.reason = reason


class UnknownGameTypeError(RankingError):
    """Raised when a game type is outside the fixed catalogue."""

    def __init__(self, game_type):
        super().__init__(
            f"Unknown game type '{game_type}'",
            "Game not found",
            game_type=game_type,
        )
        self.game_type = game_type


class PlayerNotFoundError(RankingError):
    """Raised when a player has no identity or aggregate row."""

    def __init__(self, player_id):
        super().__init__(
            f"Player {player_id} not found",
            f"Player {player_id} not found",
            player_id=player_id,
        )
        self.player_id = player_id


class StorageTimeoutError(RankingError):
    """Raised when a store operation exceeds its bound; callers may retry with backoff."""

    retryable = True

    def __init__(self, operation: str, player_id=None, attempts: int = None, details: str = None):
        message = f"Storage timeout during {operation}"
        if player_id is not None:
            message += f" for player {player_id}"
        if attempts is not None:
            message += f" after {attempts} attempts"
        if details:
            message += f": {details}"
        super().__init__(
            message,
            "The service is busy. Please try again shortly.",
            operation=operation,
            player_id=player_id,
            attempts=attempts,
        )
        self.operation = operation
        self.player_id = player_id
        self.attempts = attempts


class RecomputationPlayerError(RankingError):
    """Raised (and collected, never propagated) when one player fails during recomputation."""

    def __init__(self, player_id, cause: Exception):
        super().__init__(
            f"Recomputation failed for player {player_id}: {cause}",
            player_id=player_id,
            cause=type(cause).__name__,
        )
        self.player_id = player_id
        self.cause = cause
