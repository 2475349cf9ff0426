"""
Generation pipeline: story text, page illustrations, uploads and PDF export.

Every AI call is bracketed by a Job record. On failure the job is marked
failed, partially-applied state (story status, page image status) is rolled
back, and the error propagates to the caller.
"""

import base64
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import logger as app_logger
from errors import (
    Conflict,
    Forbidden,
    ImageGenerationError,
    NoUsableContentError,
    NotFound,
    StorageError,
    UpstreamError,
    ValidationFailed,
)
from generate_pdf import create_storybook_pdf
from image_validator import allowed_file, validate_image
from ai_images import detect_mime_type
from models import AssetSource, AssetType, ImageStatus, JobType, Page, Story, StoryStatus
from page_parser import parse_story_into_pages
from prompts import build_story_prompt, reading_level_config
from storage import page_image_path, page_upload_path, pdf_export_path

log = app_logger.get_logger("pipeline")

# Status changes a client may request, keyed by target status
CLIENT_STATUS_TRANSITIONS = {
    StoryStatus.COMPLETE: (StoryStatus.EDITING,),
    StoryStatus.PURCHASED: (StoryStatus.COMPLETE,),
}


@dataclass
class StoryGenerationResult:
    page_count: int
    job_id: str
    page_ids: List[str] = field(default_factory=list)


@dataclass
class PageImageResult:
    image_url: str
    asset_id: str
    job_id: str


@dataclass
class PdfExportResult:
    pdf_url: str
    asset_id: str
    job_id: str
    page_count: int


class GenerationPipeline:
    def __init__(self, db, jobs, text_client, image_client, storage):
        self.db = db
        self.jobs = jobs
        self.text_client = text_client
        self.image_client = image_client
        self.storage = storage

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_story(self, story_id: str) -> Story:
        story = self.db.get_story(story_id)
        if story is None:
            raise NotFound("Story not found")
        return story

    def get_owned_story(self, story_id: str, user_id: str) -> Story:
        """Fetch a story and check the caller owns it (404 before 403)."""
        story = self.get_story(story_id)
        if story.user_id != user_id:
            raise Forbidden("Unauthorized")
        return story

    def get_page(self, story_id: str, page_id: str) -> Page:
        page = self.db.get_page(story_id, page_id)
        if page is None:
            raise NotFound("Page not found")
        return page

    # -------------------------------------------------------------------------
    # Story records
    # -------------------------------------------------------------------------

    def update_story(self, story_id: str, fields: Dict[str, Any]) -> None:
        """Apply a client edit. Status may only move editing -> complete -> purchased."""
        story = self.get_story(story_id)
        status = fields.get("status")
        if status is not None and status != story.status:
            if story.status == StoryStatus.GENERATING:
                raise Conflict("Story is being generated")
            allowed_from = CLIENT_STATUS_TRANSITIONS.get(StoryStatus(status), ())
            if story.status not in allowed_from:
                raise Conflict(f"Cannot change status from {story.status.value} to {StoryStatus(status).value}")
        if fields:
            self.db.update_story(story_id, **fields)

    def delete_story(self, story_id: str) -> None:
        """Delete a story, its pages and asset records, then its stored files."""
        self.get_story(story_id)
        assets = self.db.get_story_assets(story_id)
        self.db.delete_story(story_id)
        for asset in assets:
            self.storage.delete(asset.storage_path)
        log.info(f"[pipeline] Story deleted: {story_id} ({len(assets)} stored files)")

    # -------------------------------------------------------------------------
    # Story text
    # -------------------------------------------------------------------------

    def generate_story(self, story_id: str) -> StoryGenerationResult:
        """Generate the full story text and replace the story's pages with it."""
        story = self.get_story(story_id)
        if story.status == StoryStatus.GENERATING or not self.db.claim_story_for_generation(story_id):
            raise Conflict("Story is already being generated")

        job = None
        started = time.time()
        try:
            job = self.jobs.create(
                JobType.STORY_GENERATION,
                story.user_id,
                story_id,
                {"title": story.title, "outline": story.outline, "readingLevel": story.reading_level.value},
            )
            self.db.update_story(story_id, generation_job_id=job.id)
            self.jobs.start(job.id)
            app_logger.log_story_generation_start(story.user_id, story_id, story.reading_level.value, job.id)

            prompt = build_story_prompt(story.title, story.outline, story.reading_level)
            raw_response = self.text_client.generate(prompt)
            page_texts = parse_story_into_pages(raw_response)
            if not page_texts:
                raise NoUsableContentError("No pages generated from AI response")

            pages = self.db.replace_pages(story_id, page_texts)
            self.db.update_story(
                story_id,
                status=StoryStatus.EDITING,
                page_count=len(pages),
                raw_ai_response=raw_response,
            )
            page_ids = [page.id for page in pages]
            self.jobs.complete(job.id, {"pageCount": len(pages), "pageIds": page_ids})
        except Exception as e:
            error = str(e) or type(e).__name__
            # Revert before touching the job
            self.db.update_story(story_id, status=StoryStatus.DRAFT)
            if job is not None:
                self.jobs.fail(job.id, error)
            app_logger.log_story_generation_failed(story.user_id, story_id, error, job.id if job else "")
            raise UpstreamError("Failed to generate story", details=error) from e

        app_logger.log_story_generation_completed(story.user_id, story_id, len(pages), time.time() - started, job.id)
        return StoryGenerationResult(page_count=len(pages), job_id=job.id, page_ids=page_ids)

    # -------------------------------------------------------------------------
    # Page illustrations
    # -------------------------------------------------------------------------

    def generate_page_image(self, story_id: str, page_id: str, user_id: str) -> PageImageResult:
        """Generate, upload and attach one page's illustration."""
        story = self.get_owned_story(story_id, user_id)
        page = self.get_page(story_id, page_id)

        job = self.jobs.create(
            JobType.IMAGE_GENERATION,
            user_id,
            story_id,
            {
                "pageText": page.current_text,
                "storyTitle": story.title,
                "readingLevel": story.reading_level.value,
                "pageNumber": page.page_number,
            },
            page_id=page_id,
            max_retries=self.image_client.max_retries,
        )

        attempts = 0
        try:
            self.jobs.start(job.id)
            self.db.update_page(story_id, page_id, image_status=ImageStatus.GENERATING)

            result = self.image_client.generate_with_retry(
                page.current_text, story.title, story.reading_level, page.page_number, job_id=job.id
            )
            attempts = result.attempts
            if not result.success or not result.image_base64:
                raise ImageGenerationError(result.error or "Image generation failed")

            image_bytes = base64.b64decode(result.image_base64)
            mime_type = result.mime_type or "image/png"
            path = page_image_path(story_id, page_id, mime_type)
            upload = self.storage.upload(image_bytes, path, mime_type)
            if not upload.success:
                raise StorageError(upload.error or "Image upload failed")

            asset = self.db.create_asset(
                story_id,
                page_id,
                AssetType.IMAGE.value,
                AssetSource.GENERATED.value,
                storage_path=path,
                storage_url=upload.storage_url,
                public_url=upload.public_url,
                mime_type=mime_type,
                size_bytes=len(image_bytes),
                generation_job_id=job.id,
            )
            self.db.update_page(
                story_id,
                page_id,
                image_id=asset.id,
                image_status=ImageStatus.GENERATED,
                image_url=upload.public_url,
            )
            self.jobs.complete(job.id, {"assetId": asset.id, "imageUrl": upload.public_url},
                               retry_count=max(attempts - 1, 0))
        except Exception as e:
            error = str(e) or type(e).__name__
            self.db.update_page(story_id, page_id, image_status=ImageStatus.NONE)
            self.jobs.fail(job.id, error, retry_count=max(attempts - 1, 0))
            log.warning(f"[pipeline] Image for page {page.page_number} of story {story_id} failed: {error}")
            if isinstance(e, UpstreamError):
                e.details = {"jobId": job.id}
                raise
            raise UpstreamError(error, details={"jobId": job.id}) from e

        return PageImageResult(image_url=upload.public_url, asset_id=asset.id, job_id=job.id)

    def generate_missing_images(self, story_id: str, user_id: str) -> List[Dict[str, Any]]:
        """Illustrate every page that has no image yet, one page at a time."""
        self.get_owned_story(story_id, user_id)
        pending = [
            page for page in self.db.get_pages(story_id)
            if not page.has_image and page.image_status != ImageStatus.GENERATING
        ]
        log.info(f"[pipeline] Generating {len(pending)} missing images for story {story_id}")

        results = []
        for page in pending:
            entry: Dict[str, Any] = {"pageId": page.id, "pageNumber": page.page_number}
            try:
                outcome = self.generate_page_image(story_id, page.id, user_id)
            except UpstreamError as e:
                entry.update(success=False, error=e.message, jobId=(e.details or {}).get("jobId"))
            else:
                entry.update(success=True, imageUrl=outcome.image_url, assetId=outcome.asset_id, jobId=outcome.job_id)
            results.append(entry)
        return results

    def upload_page_image(self, story_id: str, page_id: str, user_id: str, data: bytes,
                          filename: Optional[str] = None):
        """Attach a user-supplied illustration to a page."""
        self.get_owned_story(story_id, user_id)
        self.get_page(story_id, page_id)

        if filename is not None and not allowed_file(filename):
            app_logger.log_validation_failure("page_image", f"unsupported file type: {filename}", user_id)
            raise ValidationFailed("Unsupported file type")

        is_valid, error = validate_image(data)
        if not is_valid:
            app_logger.log_validation_failure("page_image", error, user_id)
            raise ValidationFailed(error)

        mime_type = detect_mime_type(data)
        path = page_upload_path(story_id, page_id, mime_type)
        upload = self.storage.upload(data, path, mime_type)
        if not upload.success:
            raise StorageError(upload.error or "Image upload failed")

        asset = self.db.create_asset(
            story_id,
            page_id,
            AssetType.IMAGE.value,
            AssetSource.UPLOAD.value,
            storage_path=path,
            storage_url=upload.storage_url,
            public_url=upload.public_url,
            mime_type=mime_type,
            size_bytes=len(data),
        )
        self.db.update_page(
            story_id,
            page_id,
            image_id=asset.id,
            image_status=ImageStatus.UPLOADED,
            image_url=upload.public_url,
        )
        return asset

    # -------------------------------------------------------------------------
    # PDF export
    # -------------------------------------------------------------------------

    def _page_image_bytes(self, page: Page) -> Optional[bytes]:
        if not page.image_id:
            return None
        asset = self.db.get_asset(page.image_id)
        if asset is None:
            return None
        return self.storage.read(asset.storage_path)

    def export_pdf(self, story_id: str, user_id: str) -> PdfExportResult:
        story = self.get_owned_story(story_id, user_id)
        pages = self.db.get_pages(story_id)
        if not any(page.has_image for page in pages):
            raise ValidationFailed("Please generate at least one image before exporting to PDF.")

        job = self.jobs.create(JobType.PDF_EXPORT, user_id, story_id, {"pageCount": len(pages)})
        started = time.time()

        try:
            self.jobs.start(job.id)
            content = [(page.current_text, self._page_image_bytes(page)) for page in pages]
            pdf_data = create_storybook_pdf(story.title, reading_level_config(story.reading_level).name, content)

            path = pdf_export_path(story_id, job.id)
            upload = self.storage.upload(pdf_data, path, "application/pdf")
            if not upload.success:
                raise StorageError(upload.error or "PDF upload failed")

            asset = self.db.create_asset(
                story_id,
                None,
                AssetType.PDF.value,
                AssetSource.GENERATED.value,
                storage_path=path,
                storage_url=upload.storage_url,
                public_url=upload.public_url,
                mime_type="application/pdf",
                size_bytes=len(pdf_data),
                generation_job_id=job.id,
            )
            self.jobs.complete(job.id, {"assetId": asset.id, "pdfUrl": upload.public_url})
        except Exception as e:
            error = str(e) or type(e).__name__
            self.jobs.fail(job.id, error)
            if isinstance(e, UpstreamError):
                e.details = {"jobId": job.id}
                raise
            raise UpstreamError("Failed to export PDF", details={"jobId": job.id, "error": error}) from e

        app_logger.log_pdf_exported(story_id, len(pages), len(pdf_data), time.time() - started, user_id)
        return PdfExportResult(pdf_url=upload.public_url, asset_id=asset.id, job_id=job.id, page_count=len(pages))
