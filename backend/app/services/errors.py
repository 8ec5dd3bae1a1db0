from typing import Any, Dict, Optional


class SchedulingError(ValueError):
    """Base class for user-visible scheduling errors."""

    code = "scheduling_error"

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value
        self.details = details or {}

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.field is not None:
            detail["field"] = self.field
        if self.value is not None:
            detail["value"] = self.value
        detail.update(self.details)
        return detail


class SchedulingValidationError(SchedulingError):
    code = "validation_error"


class SchedulingNotFoundError(SchedulingError):
    code = "not_found"


class SchedulingConflictError(SchedulingError):
    code = "conflict"


class SchedulingPermissionError(SchedulingError):
    code = "forbidden"


class SchedulingInternalError(SchedulingError):
    code = "internal_error"


class InvalidTimeFormat(SchedulingValidationError):
    code = "invalid_time_format"

    def __init__(self, value: Any, field: str = "time") -> None:
        super().__init__(f"Invalid {field}; expected HH:MM", field=field, value=value)


class InvalidDate(SchedulingValidationError):
    code = "invalid_date"

    def __init__(self, value: Any, field: str = "date") -> None:
        super().__init__(f"Invalid {field}; expected YYYY-MM-DD", field=field, value=value)


class InvalidTimezone(SchedulingValidationError):
    code = "invalid_timezone"

    def __init__(self, value: Any, field: str = "timezone") -> None:
        super().__init__(f"Unknown timezone: {value}", field=field, value=value)


class DurationExceedsDailyLimit(SchedulingValidationError):
    code = "duration_exceeds_daily_limit"

    def __init__(self, total_duration: int, max_duration: int, services: list[Dict[str, Any]]) -> None:
        super().__init__(
            f"Total service duration {total_duration} min exceeds the daily limit of {max_duration} min",
            field="service_ids",
            details={
                "total_duration": total_duration,
                "max_duration_per_day": max_duration,
                "services": services,
            },
        )
        self.total_duration = total_duration
        self.max_duration = max_duration
        self.services = services


class InvalidStatusTransition(SchedulingValidationError):
    code = "invalid_status_transition"

    def __init__(self, current_status: str, next_status: str) -> None:
        super().__init__(
            f"Invalid status transition: {current_status} -> {next_status}",
            field="status",
            value=next_status,
            details={"current_status": current_status},
        )


class SlotNotFound(SchedulingConflictError):
    code = "slot_not_found"

    def __init__(self, start_time: str) -> None:
        super().__init__(
            f"No bookable slot starts at {start_time}",
            field="start_time",
            value=start_time,
        )


class SlotNoLongerAvailable(SchedulingConflictError):
    code = "slot_no_longer_available"

    def __init__(self, start_time: str) -> None:
        super().__init__(
            f"Slot at {start_time} is no longer available",
            field="start_time",
            value=start_time,
        )


class EndTimeMismatch(SchedulingConflictError):
    code = "end_time_mismatch"

    def __init__(self, supplied_end_time: str, start_time: str, end_time: str, duration: int) -> None:
        super().__init__(
            f"End time {supplied_end_time} does not match the service duration; expected {start_time}-{end_time}",
            field="end_time",
            value=supplied_end_time,
            details={"expected_start_time": start_time, "expected_end_time": end_time, "duration": duration},
        )
