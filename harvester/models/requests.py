"""Request bodies accepted by the API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from harvester.supervision.process_supervisor import CrawlOptions


class StartScraperRequest(BaseModel):
    categories: list[str] = []
    max_pages: int | None = Field(default=None, ge=1)
    resume: bool = False

    def to_options(self) -> CrawlOptions:
        return CrawlOptions(
            categories=list(self.categories),
            max_pages=self.max_pages,
            resume=self.resume,
        )
