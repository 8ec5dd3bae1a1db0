from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

AppointmentStatus = Literal["pending", "confirmed", "executing", "completed", "canceled", "no_show"]
TimeOfDay = Literal["morning", "afternoon", "evening"]


class Provider(BaseModel):
    id: str
    name: str
    description: str = ""
    city: str = ""
    timezone: str = "America/Sao_Paulo"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    rating: Optional[float] = None
    review_count: int = 0
    status: Literal["active", "inactive"] = "active"
    owner_user_id: Optional[str] = None


class ProviderServiceOffering(BaseModel):
    service_id: str
    name: str
    category_id: str
    duration: int
    price: Optional[float] = None
    is_active: bool = True


class ProviderDetails(BaseModel):
    provider: Provider
    services: list[ProviderServiceOffering]


class ServiceTemplate(BaseModel):
    id: str
    name: str
    category_id: str
    duration: int = 60


class AvailabilityRuleInput(BaseModel):
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    specific_date: Optional[str] = None
    start_time: str
    end_time: str
    is_available: bool = True
    interval_minutes: int = Field(default=30, ge=1)


class AvailabilityRule(AvailabilityRuleInput):
    id: str
    provider_id: str


class AvailabilityBatchRequest(BaseModel):
    actor_user_id: str
    provider_id: str
    rules: list[AvailabilityRuleInput]


class BlockedRangeCreateRequest(BaseModel):
    actor_user_id: str
    provider_id: str
    date: str
    start_time: str
    end_time: str
    reason: str = ""
    recurrent_id: Optional[str] = None


class BlockedRange(BaseModel):
    id: str
    provider_id: str
    date: str
    start_time: str
    end_time: str
    reason: str = ""
    block_type: Literal["manual", "system"] = "manual"
    recurrent_id: Optional[str] = None
    appointment_id: Optional[str] = None


class ProviderBreakCreateRequest(BaseModel):
    actor_user_id: str
    provider_id: str
    name: str = "Break"
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    date: Optional[str] = None
    start_time: str
    end_time: str


class ProviderBreak(BaseModel):
    id: str
    provider_id: str
    name: str = "Break"
    day_of_week: Optional[int] = None
    date: Optional[str] = None
    start_time: str
    end_time: str
    is_recurring: bool = True


class Appointment(BaseModel):
    id: str
    provider_id: str
    client_id: str
    service_id: str
    service_ids: list[str]
    date: str
    start_time: str
    end_time: str
    status: AppointmentStatus
    payment_status: Literal["pending", "paid", "refunded"] = "pending"
    notes: str = ""
    is_manually_created: bool = False
    created_at: str = ""


class AppointmentCreateRequest(BaseModel):
    actor_user_id: str
    provider_id: str
    client_id: str
    service_id: Optional[str] = None
    service_ids: list[str] = Field(default_factory=list)
    date: str
    start_time: str
    end_time: Optional[str] = None
    status: Optional[Literal["pending", "confirmed"]] = None
    slot_interval: Optional[int] = Field(default=None, ge=1)
    payment_status: Literal["pending", "paid"] = "pending"
    notes: str = ""

    def requested_service_ids(self) -> list[str]:
        ids = list(self.service_ids)
        if self.service_id and self.service_id not in ids:
            ids.insert(0, self.service_id)
        return ids


class AppointmentStatusUpdateRequest(BaseModel):
    actor_user_id: str
    status: AppointmentStatus
    note: str = ""


class AppointmentStatusChange(BaseModel):
    id: str
    appointment_id: str
    actor_user_id: str
    from_status: str
    to_status: str
    note: str = ""
    created_at: str


class CandidateSlot(BaseModel):
    start_time: str
    end_time: str
    is_available: bool = True
    service_duration: int


class ServiceDurationItem(BaseModel):
    service_id: str
    name: str
    duration: int
    formatted_duration: str


class AppointmentCreateResult(BaseModel):
    appointment: Appointment
    total_duration: int
    services: list[ServiceDurationItem]
    consumed_slots: list[CandidateSlot]


class TimeSlotsResponse(BaseModel):
    provider_id: str
    date: str
    day_of_week: int
    timezone: str
    service_duration: int
    services: list[ServiceDurationItem] = Field(default_factory=list)
    slots: list[CandidateSlot]
    available_count: int
    total_count: int


class FreeInterval(BaseModel):
    start_time: str
    end_time: str
    duration: int


class FreeIntervalsResponse(BaseModel):
    provider_id: str
    date: str
    day_of_week: int
    intervals: list[FreeInterval]


class SlotWindow(BaseModel):
    start_time: str
    end_time: Optional[str] = None


class SlotCheckRequest(BaseModel):
    date: str
    service_ids: list[str] = Field(default_factory=list)
    duration: Optional[int] = Field(default=None, ge=1)
    slot_interval: Optional[int] = Field(default=None, ge=1)
    slots: list[SlotWindow]


class SlotCheckResponse(BaseModel):
    provider_id: str
    date: str
    service_duration: int
    available_slots: list[CandidateSlot]
    requested_count: int
    available_count: int
    unavailable_count: int


class SmartSlot(BaseModel):
    start_time: str
    end_time: str
    score: int = Field(ge=0, le=100)
    reason: str


class SmartSlotsResponse(BaseModel):
    provider_id: str
    date: str
    source: Literal["ai", "heuristic"]
    slots: list[SmartSlot]


class BestDay(BaseModel):
    date: str
    day_of_week: int
    available_slot_count: int
    first_available: Optional[str] = None


class BestDaysResponse(BaseModel):
    provider_id: str
    service_duration: int
    days: list[BestDay]


class RankedProvider(BaseModel):
    provider: Provider
    total_service_duration: int
    services: list[ServiceDurationItem]
    distance_km: Optional[float] = None
    free_slot_count: int = 0
    next_available_slot: Optional[str] = None
    distance_score: float
    rating_score: float
    availability_score: float
    recommendation_score: float


class ProviderSearchResponse(BaseModel):
    items: list[RankedProvider]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool


class ProviderRecommendationResponse(BaseModel):
    date: Optional[str] = None
    service_ids: list[str]
    items: list[RankedProvider]


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    category: Literal["appointment", "availability", "system"] = "system"
    read: bool = False
    created_at: str
    deep_link: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class DeviceTokenRegisterRequest(BaseModel):
    user_id: str
    device_token: str
    platform: str = "unknown"


class AuthLoginRequest(BaseModel):
    user_id: str
    password: str
    role: Literal["client", "provider"] = "client"


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    role: str
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
    role: str
