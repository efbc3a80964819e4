"""
Answer grading utilities for problems and duels.

Compares a submitted answer with the problem's answer key according to the
key's answer type.
"""

import math
import re
from fractions import Fraction
from typing import Optional

from arena_bot.database.models import AnswerType

NUMERIC_TOLERANCE = 0.001

_FRACTION_RE = re.compile(r'^(-?\d+)\s*/\s*(\d+)$')


def parse_number(text: str) -> Optional[float]:
    """
    Parse a plain number or an "a/b" fraction.

    Supported formats:
    - 42, -3.5, 1e3
    - 1/2, -7 / 4

    Returns:
        The value as float, or None if the text is not a number
    """
    text = text.strip()

    match = _FRACTION_RE.match(text)
    if match:
        denominator = int(match.group(2))
        if denominator == 0:
            return None
        return float(Fraction(int(match.group(1)), denominator))

    try:
        value = float(text)
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def check_answer(submitted: str, answer_key: str, answer_type: AnswerType = AnswerType.EXACT) -> bool:
    """
    Grade a submitted answer.

    Exact answers compare case-insensitively after trimming. Numeric and
    fraction answers compare by value within NUMERIC_TOLERANCE, so "0.5"
    matches "1/2"; if either side does not parse, they fall back to the
    exact comparison.
    """
    submitted_clean = submitted.strip().lower()
    key_clean = answer_key.strip().lower()

    if answer_type in (AnswerType.NUMERIC, AnswerType.FRACTION):
        submitted_value = parse_number(submitted_clean)
        key_value = parse_number(key_clean)
        if submitted_value is not None and key_value is not None:
            return abs(submitted_value - key_value) < NUMERIC_TOLERANCE

    return submitted_clean == key_clean
