from pydantic import BaseModel, Field
from typing import Optional

from .statuses import ProjectStatus


class Project(BaseModel):
    """
    A customer order turned into tooling work.
    PRs reference the project by id; the project never embeds them.
    """
    id: str
    customer_po: str                        # Customer purchase order reference
    part_number: str
    tool_number: str
    price: float = Field(ge=0)
    target_date: Optional[str] = None       # YYYY-MM-DD
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    created_by: str
    created_at: str                         # ISO 8601 instant
    updated_at: Optional[str] = None
