from datetime import datetime
from typing import Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ShortLink(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Union[int, str]
    slug: str = Field(min_length=1)
    target_url: str
    clicks: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = Field(default=None, alias="date_created")
    updated_at: Optional[datetime] = Field(default=None, alias="date_updated")

    @field_validator("target_url")
    @classmethod
    def check_target_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"not an http(s) URL: {value!r}")
        return value

    @field_validator("clicks", mode="before")
    @classmethod
    def null_clicks_as_zero(cls, value):
        return 0 if value is None else value


class RedirectTarget(BaseModel):
    url: str
    link: ShortLink
    click_recorded: bool = True
    duplicates: int = 0
