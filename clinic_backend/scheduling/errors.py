"""Errors raised by the availability resolver and booking ledger."""


class SchedulingError(Exception):
    """Base class for booking and schedule failures scoped to one request."""


class InvalidWindow(SchedulingError):
    def __init__(self, start_time, end_time):
        self.start_time = start_time
        self.end_time = end_time
        if start_time == end_time:
            message = "Start time and end time cannot be the same."
        else:
            message = "Start time cannot be later than end time."
        super().__init__(message)


class SlotConflict(SchedulingError):
    def __init__(self, doctor_id: int, conflicting_ids: list[int]):
        self.doctor_id = doctor_id
        self.conflicting_ids = conflicting_ids
        super().__init__("This time is already booked. Please choose another slot.")


class UnknownEntity(SchedulingError):
    def __init__(self, entity: str, entity_id: int):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found.")


class InvalidTransition(SchedulingError):
    def __init__(self, current, target, reason: str | None = None):
        self.current = current
        self.target = target
        super().__init__(reason or f"Cannot move appointment from {current} to {target}.")


class ActiveAppointmentsExist(SchedulingError):
    def __init__(self, entity: str, entity_id: int):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"Cannot delete {entity}. There are active (non-cancelled) appointments. "
            "Please cancel or delete them first."
        )
