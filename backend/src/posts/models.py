"""Pydantic models for the posts and scans API. JSON keys are camelCase."""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.data.posts_repo import PostRecord


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PostResponse(_CamelModel):
    id: str
    type: str
    title: str | None = None
    description: str | None = None
    lat: float
    lng: float
    media_url: str | None = None
    thumb_url: str | None = None
    size: int | None = None
    content_type: str | None = None
    original_name: str | None = None
    created_by: str | None = None
    scan_id: str | None = None
    created_at: str

    @classmethod
    def from_record(cls, rec: PostRecord) -> "PostResponse":
        return cls(**rec._asdict())


class NearbyPostResponse(PostResponse):
    distance: float  # meters from the query center


class PostsListResponse(BaseModel):
    items: list[PostResponse]


class NearbyPostsResponse(BaseModel):
    items: list[NearbyPostResponse]


class CreateScanRequest(_CamelModel):
    qr_payload: str
    lat: float
    lng: float
    session_id: str | None = None
    spot_id: str | None = None


class ScanCreatedResponse(BaseModel):
    id: str
    ok: bool = True
