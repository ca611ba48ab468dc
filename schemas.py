"""
Schemas for the shared calendar state.

Wire names are camelCase (``selectedYear``, ``hrDays``...); Python code uses
the snake_case attribute names. Unknown fields are kept so that data owned by
other parts of the UI passes through untouched.
"""
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HolidaySummary(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    hr_days: List[Any] = Field(default_factory=list, alias="hrDays", description="Marked HR days")
    fd_days: List[Any] = Field(default_factory=list, alias="fdDays", description="Marked FD days")


class CalendarConfiguration(BaseModel):
    """One saved calendar view. Instances are immutable; use ``model_copy(update=...)``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    selected_year: int = Field(default_factory=lambda: date.today().year, alias="selectedYear")
    hide_weekend_colors: bool = Field(False, alias="hideWeekendColors")
    holiday_summary: HolidaySummary = Field(default_factory=HolidaySummary, alias="holidaySummary")
    day_states: Optional[Dict[str, str]] = Field(
        None, alias="dayStates", description="Date key -> status label, owned by the calendar UI"
    )
    password: Optional[str] = Field(None, description="Edit token; never returned to readers")


class SaveStateRequest(BaseModel):
    state: CalendarConfiguration
    id: Optional[str] = Field(None, description="Existing identifier; omitted to create")
    password: str = Field(..., description="Edit token issued by the creating client")


class SaveStateResponse(BaseModel):
    id: str


class StateResponse(BaseModel):
    state: Dict[str, Any]


class LegacySaveResponse(BaseModel):
    success: bool = True
    id: str
