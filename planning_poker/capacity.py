from __future__ import annotations

from planning_poker.api.models import CapacityInput, CapacityResult


def calculate_capacity(data: CapacityInput) -> CapacityResult:
    """Project sprint capacity from team availability.

    Public holidays apply to every engineer at a location; `leave_days` is
    already the location's total across engineers.
    """

    total_engineers = sum(loc.num_engineers for loc in data.locations)
    max_person_days = data.sprint_days * total_engineers
    unavailable_days = sum(loc.public_holidays * loc.num_engineers + loc.leave_days for loc in data.locations)

    available_person_days = max_person_days - unavailable_days
    availability = (available_person_days / max_person_days) * 100 if max_person_days > 0 else 0.0
    projected = data.average_velocity * (availability / 100)

    return CapacityResult(
        total_engineers=total_engineers,
        max_person_days=max_person_days,
        unavailable_days=unavailable_days,
        available_person_days=available_person_days,
        availability_percentage=round(availability, 2),
        projected_capacity=round(projected, 2),
    )
