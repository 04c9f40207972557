"""
clock.py

Time convention of the engine: every datetime it computes with, stores or
compares is a naive wall-clock value in the host's local time. Hour-of-day
pricing bands and usage profiles are read straight off that value.

Offset-carrying input (e.g. `2026-03-02T10:00:00Z` from an API client) is
converted to local wall-clock time and stripped at the boundary, so aware and
naive values never meet in an arithmetic or comparison.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator


def to_wall_clock(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.utcoffset() is None:
        return dt.replace(tzinfo=None)
    return dt.astimezone().replace(tzinfo=None)


def now() -> datetime:
    return datetime.now()


# Pydantic field type: accepts naive or aware input, always holds naive local time.
WallClock = Annotated[datetime, AfterValidator(to_wall_clock)]
