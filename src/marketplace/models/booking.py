"""Booking model — the unit of work a client books from a provider.

Only the fields settlement depends on are modelled here. The booking
workflow itself (accept, start, complete, cancel) is owned elsewhere;
settlement starts once a booking reaches COMPLETED.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


class BookingStatus(str, enum.Enum):
    """Lifecycle state of a booking."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


@dataclass
class Booking:
    """A client's booking of a provider.

    total_amount is the gross amount that settlement splits.
    """
    booking_id: str
    client_id: str
    provider_id: str
    total_amount: Decimal
    job_title: str = ""
    hourly_rate: Optional[Decimal] = None
    estimated_hours: Optional[Decimal] = None
    status: BookingStatus = BookingStatus.PENDING
    completed_utc: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == BookingStatus.COMPLETED
