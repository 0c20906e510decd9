from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from gradvillage.ledger import compute_progress_percentage
from gradvillage.schemas.common import CamelModel, Pagination
from gradvillage.schemas.student import StudentSummary

Priority = Literal["high", "medium", "low"]


class RegistryCreate(CamelModel):
    item_name: str = Field(min_length=1, max_length=200)
    item_description: Optional[str] = None
    category: str = Field(min_length=1)
    priority: Priority = "medium"
    price: float = Field(gt=0)
    image_url: Optional[str] = None


class RegistryUpdate(CamelModel):
    item_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    item_description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[Priority] = None
    price: Optional[float] = Field(default=None, gt=0)
    image_url: Optional[str] = None


class RegistryRead(CamelModel):
    id: int
    student_id: int
    item_name: str
    item_description: Optional[str] = None
    category: str
    priority: str
    price: float
    amount_funded: float
    funded_status: str
    image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AvailableItem(RegistryRead):
    funding_progress: int = 0
    student: StudentSummary

    @classmethod
    def from_registry(cls, registry, student) -> "AvailableItem":
        base = RegistryRead.model_validate(registry).model_dump()
        return cls(
            **base,
            funding_progress=compute_progress_percentage(
                registry.amount_funded, registry.price
            ),
            student=StudentSummary.model_validate(student),
        )


class AvailableItemsResult(CamelModel):
    items: List[AvailableItem]
    pagination: Pagination


class SponsoredContribution(CamelModel):
    donation_id: int
    amount: float
    date: datetime
    message: Optional[str] = None


class SponsoredItem(CamelModel):
    item: RegistryRead
    student: StudentSummary
    total_contributed: float
    contributions: List[SponsoredContribution]
