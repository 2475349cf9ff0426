"""
Request bodies for the JSON API.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import ReadingLevel, StoryStatus

CLIENT_STATUSES = (StoryStatus.COMPLETE, StoryStatus.PURCHASED)


class StoryMetadata(BaseModel):
    tone: Optional[str] = None
    illustrationHints: Optional[str] = None


class CreateStoryRequest(BaseModel):
    userId: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    outline: str = Field(..., min_length=10, max_length=2000)
    readingLevel: ReadingLevel
    metadata: Optional[StoryMetadata] = None


class UpdateStoryRequest(BaseModel):
    """Partial story update; unknown fields are ignored."""
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    outline: Optional[str] = Field(None, min_length=10, max_length=2000)
    readingLevel: Optional[ReadingLevel] = None
    status: Optional[StoryStatus] = None
    metadata: Optional[StoryMetadata] = None

    @field_validator("status")
    @classmethod
    def status_set_by_client(cls, value):
        # draft, generating and editing belong to story generation
        if value is not None and value not in CLIENT_STATUSES:
            raise ValueError(f"status '{value.value}' is set only by story generation")
        return value

    def to_fields(self) -> dict:
        data = self.model_dump(exclude_unset=True)
        fields = {}
        if data.get("title") is not None:
            fields["title"] = data["title"]
        if data.get("outline") is not None:
            fields["outline"] = data["outline"]
        if data.get("readingLevel") is not None:
            fields["reading_level"] = data["readingLevel"]
        if data.get("status") is not None:
            fields["status"] = data["status"]
        if "metadata" in data:
            fields["metadata"] = {k: v for k, v in (data["metadata"] or {}).items() if v is not None}
        return fields


class UpdatePageRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    currentText: Optional[str] = Field(None, min_length=1)
    isLocked: Optional[bool] = None
    visualNotes: Optional[str] = None
