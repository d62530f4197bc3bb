"""
Closed catalogue of mini-game identifiers and their scoring direction.
"""

from enum import Enum

from errors import UnknownGameTypeError


class GameType(str, Enum):
    NUMBER_MEMORY = "numberMemory"
    TILE_MEMORY = "tileMemory"
    ALPHA_NUM_MEMORY = "alphaNumMemory"
    SCHULTE_TABLE = "schulteTable"
    DOUBLE_SCHULTE = "doubleSchulte"
    MATH_SYSTEMS = "mathSystems"
    GCD_LCM = "gcdLcm"
    FRACTIONS = "fractions"
    PERCENTAGES = "percentages"
    READING_SPEED = "readingSpeed"
    HIDE_AND_SEEK = "hideAndSeek"
    FLASH_ANZAN = "flashAnzan"
    FLASH_CARDS = "flashCards"


# Lower raw value is better for these (elapsed time).
TIME_SCORED_GAMES = frozenset({
    GameType.SCHULTE_TABLE,
    GameType.DOUBLE_SCHULTE,
    GameType.READING_SPEED,
})


def is_time_scored(game_type: GameType) -> bool:
    return game_type in TIME_SCORED_GAMES


def parse_game_type(value) -> GameType:
    """Resolve a game type identifier, raising UnknownGameTypeError for anything outside the catalogue."""
    if isinstance(value, GameType):
        return value
    try:
        return GameType(value)
    except ValueError:
        raise UnknownGameTypeError(value) from None
