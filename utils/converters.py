"""
Type converters and parsers for Crenors
"""

import re
from typing import List, Optional


class TimeConverter:
    """Convert time strings to seconds"""

    TIME_REGEX = re.compile(r"(\d+)\s*([smhdw])")
    TIME_UNITS = {
        's': 1,
        'm': 60,
        'h': 3600,
        'd': 86400,
        'w': 604800
    }

    @classmethod
    def parse(cls, time_string: str) -> Optional[int]:
        """
        Parse time string to seconds

        Args:
            time_string: Time string (e.g., "1h", "30m", "2d"); a bare number is minutes

        Returns:
            Total seconds or None if invalid
        """
        time_string = (time_string or "").lower().strip()
        if time_string.isdigit():
            total = int(time_string) * 60
            return total or None

        matches = cls.TIME_REGEX.findall(time_string)
        if not matches:
            return None

        total_seconds = 0
        for amount, unit in matches:
            total_seconds += int(amount) * cls.TIME_UNITS.get(unit, 0)

        return total_seconds if total_seconds > 0 else None

    @classmethod
    def format_seconds(cls, seconds: int) -> str:
        """
        Format seconds to readable string

        Args:
            seconds: Number of seconds

        Returns:
            Formatted string (e.g., "1h 30m")
        """
        seconds = int(seconds)
        if seconds < 60:
            return f"{seconds}s"

        parts = []
        for unit, divisor in [('w', 604800), ('d', 86400), ('h', 3600), ('m', 60)]:
            if seconds >= divisor:
                value = seconds // divisor
                parts.append(f"{value}{unit}")
                seconds %= divisor

        if seconds > 0:
            parts.append(f"{seconds}s")

        return " ".join(parts)


class OptionsConverter:
    """Split the option string of /poll create"""

    SEPARATOR = "|"

    @classmethod
    def parse(cls, raw: str) -> List[str]:
        """
        Split "a | b | c" into options, dropping blank entries

        Repeated labels are kept; each one is a separate choice.

        Args:
            raw: Options separated by "|"

        Returns:
            Option labels in the order given
        """
        return [part.strip() for part in (raw or "").split(cls.SEPARATOR) if part.strip()]
