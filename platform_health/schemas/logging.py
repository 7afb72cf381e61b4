from enum import Enum


class LogLevel(Enum):
    """
    Loguru severities by number.

    ``LogLevel("debug")`` and ``LogLevel("30")`` also resolve, so levels can be
    read straight from the environment.
    """

    TRACE = 5
    DEBUG = 10
    INFO = 20
    SUCCESS = 25
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        value = value.strip()
        if value.isdigit():
            return cls._value2member_map_.get(int(value))
        return cls.__members__.get(value.upper())
