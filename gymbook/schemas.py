from typing import Optional

from pydantic import BaseModel, Field, field_validator

from gymbook.models.enums import BookingType, RefundPolicy


class ClassInstanceIn(BaseModel):
    id: str = Field(..., min_length=1)
    date_string: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    # Display hints only; the stored class definition wins
    name: Optional[str] = None
    time: Optional[str] = None
    instructor_name: Optional[str] = None


class MemberIn(BaseModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    photo_url: Optional[str] = None


class BookMemberRequest(BaseModel):
    class_info: ClassInstanceIn
    member: MemberIn
    force: bool = False
    waive_cost: bool = False
    booking_type: Optional[BookingType] = None
    credit_cost_override: Optional[int] = Field(default=None, ge=0)

    @field_validator("booking_type")
    @classmethod
    def _known_type(cls, v):
        if v is BookingType.UNKNOWN:
            raise ValueError("booking_type 'unknown' cannot be requested")
        return v

    @property
    def needs_staff(self) -> bool:
        return bool(
            self.force
            or self.waive_cost
            or self.booking_type is not None
            or self.credit_cost_override is not None
        )


class CancelBookingRequest(BaseModel):
    refund_policy: Optional[RefundPolicy] = None


class CheckInRequest(BaseModel):
    member_id: Optional[str] = None
    program_id: Optional[str] = None


class CreditAdjustmentRequest(BaseModel):
    amount: int
    reason: Optional[str] = Field(default=None, max_length=500)
    force: bool = False

    @field_validator("amount")
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("amount must be non-zero")
        return v
