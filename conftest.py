import base64
import io

import pytest
from PIL import Image

from ai_images import ImageResult
from app import Services, create_app
from config import Config
from database import Database
from errors import TextGenerationError
from jobs import JobTracker
from models import ImageErrorKind
from pipeline import GenerationPipeline
from storage import ObjectStorage, UploadResult


def make_png(width=300, height=300, color=(120, 180, 240)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeTextClient:
    def __init__(self, response="", error=None):
        self.response = response
        self.error = error
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.error:
            raise TextGenerationError(self.error)
        return self.response


class FakeImageClient:
    max_retries = 3

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.calls = []

    def generate_with_retry(self, page_text, story_title, reading_level, page_number, max_retries=None, job_id=""):
        self.calls.append(page_number)
        if self.fail_with:
            return ImageResult(success=False, error=self.fail_with, error_kind=ImageErrorKind.OTHER,
                               attempts=self.max_retries)
        return ImageResult(success=True, image_base64=base64.b64encode(make_png()).decode("ascii"),
                           mime_type="image/png", attempts=1)


class BrokenStorage(ObjectStorage):
    def upload(self, data, path, content_type):
        return UploadResult(success=False, error="Upload failed: bucket unavailable")


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'storybook.db'}")
    database.init_schema()
    return database


@pytest.fixture
def storage(tmp_path):
    return ObjectStorage("local", base_dir=str(tmp_path / "outputs"), public_base_url="http://test.local")


@pytest.fixture
def text_client():
    return FakeTextClient("Luna looked up.\n---PAGE---\nThe moon smiled.\n---PAGE---\nLuna waved goodnight.")


@pytest.fixture
def image_client():
    return FakeImageClient()


@pytest.fixture
def jobs(db):
    return JobTracker(db)


@pytest.fixture
def pipeline(db, jobs, text_client, image_client, storage):
    return GenerationPipeline(db, jobs, text_client, image_client, storage)


@pytest.fixture
def story(db):
    return db.create_story("user-1", "Luna", "A girl befriends the moon at night.", "grade1")


@pytest.fixture
def services(db, storage, jobs, text_client, image_client, pipeline):
    return Services(db, storage, jobs, text_client, image_client, pipeline)


@pytest.fixture
def app(tmp_path, services):
    config = Config(
        database_url=services.db.database_url,
        storage_dir=str(tmp_path / "outputs"),
        secret_key="test-secret",
        setup_logging=False,
    )
    app = create_app(config, services)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer user-1"}
