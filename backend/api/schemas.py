"""Request/response models for the job API."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import AnyHttpUrl, BaseModel, Field, model_validator


class JobSubmission(BaseModel):
    """A scrape request for one client area."""
    client_name: str = Field(min_length=1, max_length=100)
    area_name: str = Field(min_length=1, max_length=100)
    country: Literal['AU', 'NZ']
    buy_urls: List[AnyHttpUrl] = Field(default_factory=list)
    sold_urls: List[AnyHttpUrl] = Field(default_factory=list)

    @model_validator(mode='after')
    def require_urls(self):
        if not self.buy_urls and not self.sold_urls:
            raise ValueError('At least one of buy_urls or sold_urls must be provided')
        return self

    def to_job_data(self) -> Dict[str, Any]:
        return {
            'client_name': self.client_name,
            'area_name': self.area_name,
            'country': self.country,
            'buy_urls': [str(url) for url in self.buy_urls],
            'sold_urls': [str(url) for url in self.sold_urls],
        }


class JobCreated(BaseModel):
    success: bool = True
    jobId: str
    status: str = 'queued'
    country: str
    client: str
    area: str


class JobData(BaseModel):
    client: Optional[str] = None
    area: Optional[str] = None
    country: Optional[str] = None


class JobStatus(BaseModel):
    success: bool = True
    id: str
    status: str
    progress: int = 0
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    createdAt: Optional[int] = None
    processedAt: Optional[int] = None
    completedAt: Optional[int] = None
    data: JobData
