"""
StakeGuard Constants

Protocol defaults shared by every engine instance, plus the logging settings
that may be overridden through a local ``.env`` file.
"""
from typing import Dict, Union

from dotenv import dotenv_values


# ----------------------------------------------------------------------------
# Scoring
# ----------------------------------------------------------------------------
# Every participant must run with identical values below, otherwise scores,
# penalties and reward splits diverge between them.

WEIGHT_TOTAL = 100
METRIC_MIN = 0
METRIC_MAX = 100

DEFAULT_PERFORMANCE_WEIGHT = 40
DEFAULT_REPUTATION_WEIGHT = 30
DEFAULT_UPTIME_WEIGHT = 20
DEFAULT_STAKE_WEIGHT = 10

# ----------------------------------------------------------------------------
# Slashing
# ----------------------------------------------------------------------------

DEFAULT_MIN_PENALTY = 100
DEFAULT_MAX_PENALTY = 5000
DEFAULT_GOVERNANCE_REVIEW_THRESHOLD = 2500
APPEAL_RESTORE_PERCENT = 30  # of the original penalty

# ----------------------------------------------------------------------------
# Epochs and rewards (network-time units)
# ----------------------------------------------------------------------------

MIN_EPOCH_INTERVAL = 50
DEFAULT_EPOCH_INTERVAL = 100
DEFAULT_EPOCH_DURATION = 100

# ----------------------------------------------------------------------------
# Voting
# ----------------------------------------------------------------------------

DEFAULT_VOTING_STAKE_WEIGHT = 60
DEFAULT_VOTING_REPUTATION_WEIGHT = 40
DEFAULT_REPUTATION_DECAY_RATE = 10  # percent per vote
DEFAULT_FRAUD_THRESHOLD = 3

# ----------------------------------------------------------------------------
# History buffers
# ----------------------------------------------------------------------------

DEFAULT_HISTORY_PAGE_SIZE = 50
MAX_HISTORY_PAGE_SIZE = 500
EVENT_HISTORY_LIMIT = 1024


# ----------------------------------------------------------------------------
# Logging (.env overridable)
# ----------------------------------------------------------------------------

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

LOGGER_DEFAULTS: Dict[str, str] = {
    "LOG_LEVEL": "INFO",
    "LOG_FORMAT": "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    "LOG_DATE_FORMAT": "%Y-%m-%dT%H:%M:%S",
    "LOG_CONSOLE_HIGHLIGHTING": "True",
    "LOG_FILE_OUTPUT": "False",
}

_BOOL_WORDS = {"true": True, "false": False}


class ConfigString(str):
    """A string setting that remembers its built-in default."""

    def __new__(cls, value, default):
        self = super().__new__(cls, value)
        self._fallback = default
        return self

    def default(self):
        return self._fallback


class ConfigBool(int):
    """A boolean setting that remembers its built-in default.

    Subclasses ``int`` because ``bool`` cannot be subclassed.
    """

    def __new__(cls, value, default):
        self = super().__new__(cls, 1 if value else 0)
        self._fallback = default
        return self

    def default(self):
        return self._fallback

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__

    def __str__(self):
        return "True" if self else "False"

    __repr__ = __str__


def parse_bool(value):
    """Map ``"true"``/``"false"`` in any casing to a bool; pass anything else through."""
    if isinstance(value, str):
        word = value.strip().casefold()
        if word in _BOOL_WORDS:
            return _BOOL_WORDS[word]
    return value


def _read_logger_settings(path: str = ".env") -> Dict[str, Union[ConfigBool, ConfigString]]:
    overrides = dotenv_values(path)
    settings: Dict[str, Union[ConfigBool, ConfigString]] = {}
    for key, fallback in LOGGER_DEFAULTS.items():
        raw = overrides.get(key)
        if raw is None:
            raw = fallback
        parsed = parse_bool(raw)
        if isinstance(parsed, bool):
            settings[key] = ConfigBool(parsed, parse_bool(fallback))
        else:
            settings[key] = ConfigString(raw, parse_bool(fallback))
    return settings


globals().update(_read_logger_settings())
