from datetime import date, datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from app.scheduling.models.waves import WaveStatus


class ScheduleEntry(BaseModel):
    """One weekly (day, time slot) occurrence"""
    day_id: int = Field(..., gt=0)
    time_slot_id: int = Field(..., gt=0)

    model_config = ConfigDict(from_attributes=True)


def _unique_entries(entries: List[ScheduleEntry]) -> List[ScheduleEntry]:
    seen = set()
    for entry in entries:
        key = (entry.day_id, entry.time_slot_id)
        if key in seen:
            raise ValueError(
                f"Duplicate schedule entry: day {entry.day_id}, slot {entry.time_slot_id}"
            )
        seen.add(key)
    return entries


class WaveCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    level_id: int = Field(..., gt=0)
    teacher_id: Optional[int] = Field(None, gt=0)
    room_id: Optional[int] = Field(None, gt=0)
    start_date: date
    end_date: Optional[date] = None
    capacity_max: Optional[int] = Field(None, ge=1, le=500)
    schedules: List[ScheduleEntry] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("schedules")
    @classmethod
    def validate_schedules(cls, v: List[ScheduleEntry]) -> List[ScheduleEntry]:
        return _unique_entries(v)

    @model_validator(mode="after")
    def validate_dates(self):
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class WaveUpdate(BaseModel):
    """Only the fields explicitly sent are applied; schedules replaces the whole set"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    teacher_id: Optional[int] = Field(None, gt=0)
    room_id: Optional[int] = Field(None, gt=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    capacity_max: Optional[int] = Field(None, ge=1, le=500)
    status: Optional[WaveStatus] = None
    schedules: Optional[List[ScheduleEntry]] = Field(None, min_length=1)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("schedules")
    @classmethod
    def validate_schedules(
        cls, v: Optional[List[ScheduleEntry]]
    ) -> Optional[List[ScheduleEntry]]:
        return _unique_entries(v) if v is not None else v


class CapacityInfo(BaseModel):
    capacity_max: Optional[int] = None
    enrolled_count: int
    remaining_seats: Optional[int] = None
    has_capacity: bool


class WaveRead(BaseModel):
    id: int
    name: str
    level_id: int
    teacher_id: Optional[int] = None
    room_id: Optional[int] = None
    start_date: date
    end_date: Optional[date] = None
    capacity_max: Optional[int] = None
    status: WaveStatus
    notes: Optional[str] = None
    schedules: List[ScheduleEntry] = []
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WaveDetails(WaveRead):
    level_code: Optional[str] = None
    level_name: Optional[str] = None
    capacity: CapacityInfo


class PublicWaveRead(BaseModel):
    """Wave as offered on the public enrollment page"""
    id: int
    name: str
    level_id: int
    level_name: str
    start_date: date
    end_date: Optional[date] = None
    remaining_seats: Optional[int] = None
    schedules: List[ScheduleEntry] = []


class AvailabilityRead(BaseModel):
    resource_kind: Literal["room", "teacher"]
    resource_id: int
    day_id: int
    time_slot_id: int
    exclude_wave_id: Optional[int] = None
    available: bool
