from pydantic import BaseModel, Field
from .config import settings

class PageParams(BaseModel):
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=settings.DEFAULT_PAGE_LIMIT, ge=1)

    def clamped_limit(self) -> int:
        return min(self.limit, settings.MAX_PAGE_LIMIT)
