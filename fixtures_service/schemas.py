"""
Pydantic schemas for scraped records and API responses
"""
from typing import List

from pydantic import BaseModel


# ===== SCRAPED RECORDS =====

class ScheduleRecord(BaseModel):
    """One fixture row from the origin's results table"""
    number: str
    home: str
    away: str
    result: str = ""
    status: str = ""


class WeekOption(BaseModel):
    """A selectable week from the origin's week dropdown"""
    date: str
    label: str


# ===== RESPONSE SCHEMAS =====

class FixturesResponse(BaseModel):
    """Fixtures for one week, flagged with cache provenance"""
    week: str
    fixtures: List[ScheduleRecord]
    cached: bool


class ErrorResponse(BaseModel):
    error: str
