"""
Record types for stories, pages, jobs and assets.

Rows come out of the database as snake_case dicts; ``to_dict`` renders the
camelCase shape returned by the JSON API.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ReadingLevel(str, Enum):
    KINDERGARTEN = "kindergarten"
    GRADE1 = "grade1"
    GRADE2 = "grade2"
    GRADE3 = "grade3"
    GRADE4 = "grade4"
    GRADE5 = "grade5"


class StoryStatus(str, Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    EDITING = "editing"
    COMPLETE = "complete"
    PURCHASED = "purchased"


class ImageStatus(str, Enum):
    NONE = "none"
    GENERATING = "generating"
    UPLOADED = "uploaded"
    GENERATED = "generated"


class JobType(str, Enum):
    STORY_GENERATION = "story_generation"
    IMAGE_GENERATION = "image_generation"
    PDF_EXPORT = "pdf_export"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class AssetType(str, Enum):
    IMAGE = "image"
    PDF = "pdf"


class AssetSource(str, Enum):
    UPLOAD = "upload"
    GENERATED = "generated"


class ImageErrorKind(str, Enum):
    """Why a single image attempt failed; drives retry backoff."""
    RATE_LIMITED = "rate_limited"
    NO_IMAGE = "no_image"
    OTHER = "other"


def _load_json(value: Any) -> Any:
    if value is None or isinstance(value, (dict, list)):
        return value
    return json.loads(value)


@dataclass
class Story:
    id: str
    user_id: str
    title: str
    outline: str
    reading_level: ReadingLevel
    status: StoryStatus = StoryStatus.DRAFT
    page_count: int = 0
    style_preset_id: str = "default"
    generation_job_id: Optional[str] = None
    raw_ai_response: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Story":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            outline=row["outline"],
            reading_level=ReadingLevel(row["reading_level"]),
            status=StoryStatus(row["status"]),
            page_count=int(row["page_count"] or 0),
            style_preset_id=row.get("style_preset_id") or "default",
            generation_job_id=row.get("generation_job_id"),
            raw_ai_response=row.get("raw_ai_response"),
            metadata=_load_json(row.get("metadata_json")) or {},
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "outline": self.outline,
            "readingLevel": self.reading_level.value,
            "status": self.status.value,
            "pageCount": self.page_count,
            "stylePresetId": self.style_preset_id,
            "generationJobId": self.generation_job_id,
            "rawAIResponse": self.raw_ai_response,
            "metadata": self.metadata,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class Page:
    id: str
    story_id: str
    page_number: int
    original_text: str
    current_text: str
    is_locked: bool = False
    image_id: Optional[str] = None
    image_status: ImageStatus = ImageStatus.NONE
    image_url: Optional[str] = None
    visual_notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Page":
        return cls(
            id=row["id"],
            story_id=row["story_id"],
            page_number=int(row["page_number"]),
            original_text=row["original_text"],
            current_text=row["current_text"],
            is_locked=bool(row["is_locked"]),
            image_id=row.get("image_id"),
            image_status=ImageStatus(row["image_status"]),
            image_url=row.get("image_url"),
            visual_notes=row.get("visual_notes"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @property
    def has_image(self) -> bool:
        return bool(self.image_url)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "storyId": self.story_id,
            "pageNumber": self.page_number,
            "originalText": self.original_text,
            "currentText": self.current_text,
            "isLocked": self.is_locked,
            "imageId": self.image_id,
            "imageStatus": self.image_status.value,
            "imageUrl": self.image_url,
            "visualNotes": self.visual_notes,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class Job:
    id: str
    type: JobType
    status: JobStatus
    user_id: str
    story_id: str
    page_id: Optional[str] = None
    input: Dict[str, Any] = field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Job":
        return cls(
            id=row["id"],
            type=JobType(row["type"]),
            status=JobStatus(row["status"]),
            user_id=row["user_id"],
            story_id=row["story_id"],
            page_id=row.get("page_id"),
            input=_load_json(row.get("input_json")) or {},
            output=_load_json(row.get("output_json")),
            error=row.get("error"),
            retry_count=int(row.get("retry_count") or 0),
            max_retries=int(row.get("max_retries") or 0),
            created_at=row.get("created_at"),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "userId": self.user_id,
            "storyId": self.story_id,
            "pageId": self.page_id,
            "input": self.input,
            "output": self.output,
            "error": self.error,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "createdAt": self.created_at,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }


@dataclass
class Asset:
    id: str
    story_id: str
    page_id: Optional[str]
    type: AssetType
    source: AssetSource
    storage_path: str
    storage_url: str
    public_url: str
    mime_type: str
    size_bytes: int
    thumbnail_url: Optional[str] = None
    generation_job_id: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Asset":
        return cls(
            id=row["id"],
            story_id=row["story_id"],
            page_id=row.get("page_id"),
            type=AssetType(row["type"]),
            source=AssetSource(row["source"]),
            storage_path=row["storage_path"],
            storage_url=row["storage_url"],
            public_url=row["public_url"],
            mime_type=row["mime_type"],
            size_bytes=int(row["size_bytes"]),
            thumbnail_url=row.get("thumbnail_url"),
            generation_job_id=row.get("generation_job_id"),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "storyId": self.story_id,
            "pageId": self.page_id,
            "type": self.type.value,
            "source": self.source.value,
            "storageUrl": self.storage_url,
            "publicUrl": self.public_url,
            "thumbnailUrl": self.thumbnail_url,
            "mimeType": self.mime_type,
            "sizeBytes": self.size_bytes,
            "generationJobId": self.generation_job_id,
            "createdAt": self.created_at,
        }
