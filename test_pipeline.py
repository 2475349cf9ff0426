import pytest

from conftest import BrokenStorage, FakeImageClient, FakeTextClient, make_png
from errors import Conflict, Forbidden, ImageGenerationError, NotFound, StorageError, UpstreamError, ValidationFailed
from jobs import JobTracker
from models import AssetSource, ImageStatus, JobStatus, JobType, StoryStatus
from pipeline import GenerationPipeline


def test_generate_story_creates_numbered_pages(pipeline, db, story, text_client):
    result = pipeline.generate_story(story.id)

    assert result.page_count == 3
    pages = db.get_pages(story.id)
    assert [p.page_number for p in pages] == [1, 2, 3]
    assert [p.current_text for p in pages] == ["Luna looked up.", "The moon smiled.", "Luna waved goodnight."]
    assert [p.id for p in pages] == result.page_ids

    updated = db.get_story(story.id)
    assert updated.status == StoryStatus.EDITING
    assert updated.page_count == 3
    assert updated.generation_job_id == result.job_id
    assert "---PAGE---" in updated.raw_ai_response

    job = db.get_job(result.job_id)
    assert job.type == JobType.STORY_GENERATION
    assert job.status == JobStatus.COMPLETED
    assert job.output["pageCount"] == 3
    assert "A girl befriends the moon at night." in text_client.prompts[0]


def test_regenerating_replaces_pages(db, jobs, image_client, storage, story):
    GenerationPipeline(db, jobs, FakeTextClient("a---PAGE---b---PAGE---c---PAGE---d"), image_client,
                       storage).generate_story(story.id)
    GenerationPipeline(db, jobs, FakeTextClient("only---PAGE---two"), image_client,
                       storage).generate_story(story.id)
    pages = db.get_pages(story.id)
    assert [p.page_number for p in pages] == [1, 2]
    assert db.get_story(story.id).page_count == 2


def test_empty_response_reverts_story_and_fails_job(db, jobs, image_client, storage, story):
    pipeline = GenerationPipeline(db, jobs, FakeTextClient("\n---PAGE---\n  \n"), image_client, storage)

    with pytest.raises(UpstreamError) as excinfo:
        pipeline.generate_story(story.id)

    assert excinfo.value.message == "Failed to generate story"
    assert excinfo.value.details == "No pages generated from AI response"
    assert db.get_story(story.id).status == StoryStatus.DRAFT
    assert db.get_pages(story.id) == []
    (job,) = db.get_story_jobs(story.id)
    assert job.status == JobStatus.FAILED
    assert job.error == "No pages generated from AI response"


def test_text_model_error_reverts_story(db, jobs, image_client, storage, story):
    pipeline = GenerationPipeline(db, jobs, FakeTextClient(error="upstream timeout"), image_client, storage)
    with pytest.raises(UpstreamError):
        pipeline.generate_story(story.id)
    assert db.get_story(story.id).status == StoryStatus.DRAFT
    assert db.get_story_jobs(story.id)[0].status == JobStatus.FAILED


def test_generation_in_progress_is_rejected_without_a_job(pipeline, db, story):
    db.update_story(story.id, status=StoryStatus.GENERATING)
    with pytest.raises(Conflict):
        pipeline.generate_story(story.id)
    assert db.get_story_jobs(story.id) == []
    assert db.get_story(story.id).status == StoryStatus.GENERATING


def test_unknown_story(pipeline):
    with pytest.raises(NotFound):
        pipeline.generate_story("missing")


def test_generate_page_image(pipeline, db, story):
    pipeline.generate_story(story.id)
    page = db.get_pages(story.id)[0]

    result = pipeline.generate_page_image(story.id, page.id, "user-1")

    updated = db.get_page(story.id, page.id)
    assert updated.image_status == ImageStatus.GENERATED
    assert updated.image_url == result.image_url
    assert updated.image_id == result.asset_id
    assert result.image_url.endswith(f"stories/{story.id}/pages/{page.id}/illustration.png")

    asset = db.get_asset(result.asset_id)
    assert asset.source == AssetSource.GENERATED
    assert asset.generation_job_id == result.job_id
    job = db.get_job(result.job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.page_id == page.id
    assert job.output == {"assetId": result.asset_id, "imageUrl": result.image_url}


def test_page_image_requires_owner(pipeline, db, story):
    pipeline.generate_story(story.id)
    page = db.get_pages(story.id)[0]
    with pytest.raises(Forbidden):
        pipeline.generate_page_image(story.id, page.id, "someone-else")
    with pytest.raises(NotFound):
        pipeline.generate_page_image(story.id, "missing-page", "user-1")


def test_image_failure_resets_page(db, jobs, text_client, storage, story):
    pipeline = GenerationPipeline(db, jobs, text_client, FakeImageClient("Failed after 3 attempts. Last error: x"),
                                  storage)
    pipeline.generate_story(story.id)
    page = db.get_pages(story.id)[0]

    with pytest.raises(ImageGenerationError) as excinfo:
        pipeline.generate_page_image(story.id, page.id, "user-1")

    assert db.get_page(story.id, page.id).image_status == ImageStatus.NONE
    job = db.get_job(excinfo.value.details["jobId"])
    assert job.status == JobStatus.FAILED
    assert job.error.startswith("Failed after 3 attempts")
    assert job.retry_count == 2


def test_upload_failure_leaves_page_without_image(db, jobs, text_client, image_client, tmp_path, story):
    storage = BrokenStorage("local", base_dir=str(tmp_path / "broken"))
    pipeline = GenerationPipeline(db, jobs, text_client, image_client, storage)
    pipeline.generate_story(story.id)
    page = db.get_pages(story.id)[0]

    with pytest.raises(StorageError):
        pipeline.generate_page_image(story.id, page.id, "user-1")

    updated = db.get_page(story.id, page.id)
    assert updated.image_status == ImageStatus.NONE
    assert updated.image_id is None
    assert db.get_page_assets(story.id, page.id) == []


def test_generate_missing_images_skips_illustrated_pages(pipeline, db, story, image_client):
    pipeline.generate_story(story.id)
    first = db.get_pages(story.id)[0]
    pipeline.generate_page_image(story.id, first.id, "user-1")
    image_client.calls.clear()

    results = pipeline.generate_missing_images(story.id, "user-1")

    assert [r["pageNumber"] for r in results] == [2, 3]
    assert all(r["success"] for r in results)
    assert image_client.calls == [2, 3]
    assert all(p.image_status == ImageStatus.GENERATED for p in db.get_pages(story.id))


def test_generate_missing_images_reports_failures(db, jobs, text_client, storage, story):
    pipeline = GenerationPipeline(db, jobs, text_client, FakeImageClient("quota"), storage)
    pipeline.generate_story(story.id)
    results = pipeline.generate_missing_images(story.id, "user-1")
    assert len(results) == 3
    assert not any(r["success"] for r in results)
    assert all(r["jobId"] and r["error"] == "quota" for r in results)


def test_upload_page_image(pipeline, db, story):
    pipeline.generate_story(story.id)
    page = db.get_pages(story.id)[1]

    asset = pipeline.upload_page_image(story.id, page.id, "user-1", make_png(400, 300))

    updated = db.get_page(story.id, page.id)
    assert updated.image_status == ImageStatus.UPLOADED
    assert updated.image_url == asset.public_url
    assert asset.source == AssetSource.UPLOAD
    assert asset.storage_path.endswith("upload.png")


def test_upload_rejects_bad_images(pipeline, db, story):
    pipeline.generate_story(story.id)
    page = db.get_pages(story.id)[0]
    with pytest.raises(ValidationFailed):
        pipeline.upload_page_image(story.id, page.id, "user-1", b"not an image")
    with pytest.raises(ValidationFailed):
        pipeline.upload_page_image(story.id, page.id, "user-1", make_png(50, 50))
    with pytest.raises(ValidationFailed):
        pipeline.upload_page_image(story.id, page.id, "user-1", make_png(), filename="drawing.gif")
    assert db.get_page(story.id, page.id).image_status == ImageStatus.NONE


def test_export_pdf_requires_an_image(pipeline, db, story):
    pipeline.generate_story(story.id)
    with pytest.raises(ValidationFailed):
        pipeline.export_pdf(story.id, "user-1")
    assert db.get_story_jobs(story.id)[-1].type == JobType.STORY_GENERATION


def test_export_pdf(pipeline, db, storage, story):
    pipeline.generate_story(story.id)
    page = db.get_pages(story.id)[0]
    pipeline.generate_page_image(story.id, page.id, "user-1")

    result = pipeline.export_pdf(story.id, "user-1")

    assert result.page_count == 3
    asset = db.get_asset(result.asset_id)
    assert asset.mime_type == "application/pdf"
    assert storage.read(asset.storage_path).startswith(b"%PDF")
    assert db.get_job(result.job_id).status == JobStatus.COMPLETED
    assert db.get_story(story.id).status == StoryStatus.EDITING


class JobsFailingOnFail(JobTracker):
    def fail(self, job_id, error, retry_count=None):
        raise RuntimeError("database unavailable")


class JobsFailingOnStart(JobTracker):
    def start(self, job_id):
        raise RuntimeError("database unavailable")


def test_story_reverts_to_draft_even_if_job_cannot_be_failed(db, image_client, storage, story):
    pipeline = GenerationPipeline(db, JobsFailingOnFail(db), FakeTextClient("   "), image_client, storage)
    with pytest.raises(RuntimeError):
        pipeline.generate_story(story.id)
    assert db.get_story(story.id).status == StoryStatus.DRAFT


def test_story_setup_failure_reverts_and_fails_job(db, text_client, image_client, storage, story):
    pipeline = GenerationPipeline(db, JobsFailingOnStart(db), text_client, image_client, storage)
    with pytest.raises(UpstreamError):
        pipeline.generate_story(story.id)
    assert db.get_story(story.id).status == StoryStatus.DRAFT
    (job,) = db.get_story_jobs(story.id)
    assert job.status == JobStatus.FAILED


def test_image_setup_failure_resets_page_and_fails_job(pipeline, db, text_client, image_client, storage, story):
    pipeline.generate_story(story.id)
    page = db.get_pages(story.id)[0]

    failing = GenerationPipeline(db, JobsFailingOnStart(db), text_client, image_client, storage)
    with pytest.raises(UpstreamError) as excinfo:
        failing.generate_page_image(story.id, page.id, "user-1")

    assert db.get_page(story.id, page.id).image_status == ImageStatus.NONE
    assert db.get_job(excinfo.value.details["jobId"]).status == JobStatus.FAILED
    assert image_client.calls == []


def test_image_page_reset_even_if_job_cannot_be_failed(pipeline, db, text_client, storage, story):
    pipeline.generate_story(story.id)
    page = db.get_pages(story.id)[0]

    failing = GenerationPipeline(db, JobsFailingOnFail(db), text_client, FakeImageClient("quota"), storage)
    with pytest.raises(RuntimeError):
        failing.generate_page_image(story.id, page.id, "user-1")
    assert db.get_page(story.id, page.id).image_status == ImageStatus.NONE


def test_update_story_status_transitions(pipeline, db, story):
    with pytest.raises(Conflict):
        pipeline.update_story(story.id, {"status": StoryStatus.COMPLETE})

    pipeline.generate_story(story.id)
    with pytest.raises(Conflict):
        pipeline.update_story(story.id, {"status": StoryStatus.PURCHASED})
    pipeline.update_story(story.id, {"status": StoryStatus.COMPLETE, "title": "Luna Sleeps"})
    updated = db.get_story(story.id)
    assert updated.status == StoryStatus.COMPLETE
    assert updated.title == "Luna Sleeps"


def test_update_story_rejected_while_generating(pipeline, db, story):
    db.update_story(story.id, status=StoryStatus.GENERATING)
    with pytest.raises(Conflict):
        pipeline.update_story(story.id, {"status": StoryStatus.COMPLETE})
    assert db.get_story(story.id).status == StoryStatus.GENERATING


def test_delete_story_removes_stored_files(pipeline, db, storage, story):
    pipeline.generate_story(story.id)
    page = db.get_pages(story.id)[0]
    result = pipeline.generate_page_image(story.id, page.id, "user-1")
    path = db.get_asset(result.asset_id).storage_path

    pipeline.delete_story(story.id)

    assert db.get_story(story.id) is None
    assert db.get_asset(result.asset_id) is None
    assert storage.read(path) is None
    with pytest.raises(NotFound):
        pipeline.delete_story(story.id)
