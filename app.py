r"""
AI Storybook Creator - JSON API
-------------------------------
Users describe a story outline and reading level; the service asks a text
model for the story, splits it into pages, illustrates pages with an image
model, and exports the finished book as a PDF.

Quick start
-----------
python -m venv .venv
pip install -e .

# Put your key in .env at project root:
# OPENAI_API_KEY=sk-***
# DATABASE_URL=sqlite:///runtime/storybook.db   (or postgresql://..., mysql://...)
# STORAGE_TYPE=local                            (or s3, gcs)

flask --app app:create_app run

Folders: ./outputs (local object storage), ./runtime (sqlite), ./logs
"""

from __future__ import annotations

import json
import logging
import os
import traceback
from dataclasses import dataclass
from typing import Any, Optional

from flask import Flask, current_app, jsonify, request, send_from_directory
from flask_login import current_user, login_required
from pydantic import BaseModel, ValidationError
from werkzeug.exceptions import HTTPException

import logger as app_logger
from ai_images import ImageGenerationClient
from ai_text import TextGenerationClient, make_openai_client
from auth import init_auth
from config import Config
from database import Database
from errors import Conflict, NotFound, StorybookError, ValidationFailed
from jobs import JobTracker
from pipeline import GenerationPipeline
from schemas import CreateStoryRequest, UpdatePageRequest, UpdateStoryRequest
from storage import ObjectStorage

APP_TITLE = "AI Storybook Creator"


@dataclass
class Services:
    db: Database
    storage: ObjectStorage
    jobs: JobTracker
    text_client: Any
    image_client: Any
    pipeline: GenerationPipeline


def build_services(config: Config) -> Services:
    """Construct every collaborator explicitly from configuration."""
    db = Database(config.database_url)
    storage = ObjectStorage.from_config(config)
    openai_client = make_openai_client(config)
    text_client = TextGenerationClient(openai_client, model=config.model_text)
    image_client = ImageGenerationClient(
        openai_client,
        model=config.model_image,
        size=config.image_size,
        quality=config.image_quality,
        max_retries=config.image_max_retries,
    )
    jobs = JobTracker(db)
    pipeline = GenerationPipeline(db, jobs, text_client, image_client, storage)
    return Services(db, storage, jobs, text_client, image_client, pipeline)


def create_app(config: Optional[Config] = None, services: Optional[Services] = None) -> Flask:
    config = config or Config.from_env()
    services = services or build_services(config)

    if config.setup_logging:
        app_logger.setup_logging(
            log_dir=config.log_dir,
            max_bytes=10 * 1024 * 1024,
            backup_count=5,
            db=services.db if config.log_to_database else None,
        )

    services.db.init_schema()

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["MAX_CONTENT_LENGTH"] = config.max_content_length
    app.extensions["storybook"] = services

    init_auth(app)
    register_error_handlers(app)
    register_routes(app)

    logging.info(f"[app] {APP_TITLE} ready (db={services.db.db_type}, storage={services.storage.storage_type})")
    return app


def _services() -> Services:
    return current_app.extensions["storybook"]


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return body


def _validate(schema: type[BaseModel], body: dict, validation_type: str):
    try:
        return schema.model_validate(body)
    except ValidationError as e:
        app_logger.log_validation_failure(validation_type, str(e.error_count()) + " field error(s)", body.get("userId"))
        raise ValidationFailed("Validation failed", details=json.loads(e.json(include_url=False)))


# -----------------------------------------------------------------------------
# Error handling
# -----------------------------------------------------------------------------

def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(StorybookError)
    def handle_storybook_error(e: StorybookError):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        app_logger.log_api_error(request.path, str(e), traceback.format_exc())
        return jsonify({"error": "Internal server error"}), 500


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------

def register_routes(app: Flask) -> None:
    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok", "title": APP_TITLE})

    @app.route("/stories", methods=["POST"])
    def create_story():
        payload = _validate(CreateStoryRequest, _json_body(), "story")
        metadata = payload.metadata.model_dump(exclude_none=True) if payload.metadata else {}
        story = _services().db.create_story(
            payload.userId, payload.title, payload.outline, payload.readingLevel.value, metadata
        )
        app_logger.log_story_created(story.user_id, story.id, story.reading_level.value)
        return jsonify({"storyId": story.id}), 201

    @app.route("/stories", methods=["GET"])
    def list_stories():
        user_id = request.args.get("userId")
        if not user_id:
            raise ValidationFailed("userId is required")
        stories = _services().db.get_user_stories(user_id)
        return jsonify({"stories": [story.to_dict() for story in stories]})

    @app.route("/stories/<story_id>", methods=["GET"])
    def get_story(story_id: str):
        services = _services()
        story = services.pipeline.get_story(story_id)
        pages = services.db.get_pages(story_id)
        return jsonify({"story": story.to_dict(), "pages": [page.to_dict() for page in pages]})

    @app.route("/stories/<story_id>", methods=["PATCH"])
    def update_story(story_id: str):
        payload = _validate(UpdateStoryRequest, _json_body(), "story_update")
        _services().pipeline.update_story(story_id, payload.to_fields())
        return jsonify({"success": True})

    @app.route("/stories/<story_id>", methods=["DELETE"])
    def delete_story(story_id: str):
        _services().pipeline.delete_story(story_id)
        return jsonify({"success": True})

    @app.route("/stories/<story_id>/generate", methods=["POST"])
    def generate_story(story_id: str):
        result = _services().pipeline.generate_story(story_id)
        return jsonify({"success": True, "pageCount": result.page_count, "jobId": result.job_id})

    @app.route("/stories/<story_id>/pages/<page_id>", methods=["PATCH"])
    def update_page(story_id: str, page_id: str):
        services = _services()
        payload = _validate(UpdatePageRequest, _json_body(), "page_update")
        services.pipeline.get_story(story_id)
        page = services.pipeline.get_page(story_id, page_id)

        fields = {}
        if payload.currentText is not None and payload.currentText != page.current_text:
            # A page locked before this request keeps its text
            if page.is_locked:
                raise Conflict("Page is locked")
            fields["current_text"] = payload.currentText
        if payload.isLocked is not None:
            fields["is_locked"] = payload.isLocked
        if payload.visualNotes is not None:
            fields["visual_notes"] = payload.visualNotes
        if fields:
            services.db.update_page(story_id, page_id, **fields)
        return jsonify({"success": True, "page": services.db.get_page(story_id, page_id).to_dict()})

    @app.route("/stories/<story_id>/pages/<page_id>/generate-image", methods=["POST"])
    @login_required
    def generate_page_image(story_id: str, page_id: str):
        result = _services().pipeline.generate_page_image(story_id, page_id, current_user.user_id)
        return jsonify({
            "success": True,
            "imageUrl": result.image_url,
            "assetId": result.asset_id,
            "jobId": result.job_id,
        })

    @app.route("/stories/<story_id>/generate-images", methods=["POST"])
    @login_required
    def generate_missing_images(story_id: str):
        results = _services().pipeline.generate_missing_images(story_id, current_user.user_id)
        return jsonify({
            "success": all(entry["success"] for entry in results),
            "results": results,
        })

    @app.route("/stories/<story_id>/pages/<page_id>/image", methods=["POST"])
    @login_required
    def upload_page_image(story_id: str, page_id: str):
        if "image" not in request.files:
            raise ValidationFailed("No file part in request")
        file = request.files["image"]
        if file.filename == "":
            raise ValidationFailed("No file selected")

        asset = _services().pipeline.upload_page_image(
            story_id, page_id, current_user.user_id, file.read(), filename=file.filename
        )
        return jsonify({"success": True, "imageUrl": asset.public_url, "assetId": asset.id}), 201

    @app.route("/stories/<story_id>/export-pdf", methods=["POST"])
    @login_required
    def export_pdf(story_id: str):
        result = _services().pipeline.export_pdf(story_id, current_user.user_id)
        return jsonify({
            "success": True,
            "pdfUrl": result.pdf_url,
            "assetId": result.asset_id,
            "jobId": result.job_id,
        })

    @app.route("/jobs/<job_id>", methods=["GET"])
    def get_job(job_id: str):
        return jsonify({"job": _services().jobs.get(job_id).to_dict()})

    @app.route("/files/<path:path>", methods=["GET"])
    def serve_file(path: str):
        storage = _services().storage
        if storage.storage_type != "local":
            raise NotFound("File not found")
        return send_from_directory(storage.base_dir, path)


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_DEBUG", "False").lower() == "true"
    host = "0.0.0.0" if port != 5000 else "localhost"
    create_app().run(host=host, port=port, debug=debug)
