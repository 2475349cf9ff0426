"""
Enhanced logging module with file rotation and database logging.
Provides structured logging with context support.
"""

import os
import logging
import json
import traceback
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional


class DatabaseLogHandler(logging.Handler):
    """Custom logging handler that writes to the logs table."""

    def __init__(self, db, level=logging.INFO):
        super().__init__(level)
        self.db = db

    def emit(self, record):
        """Emit a log record to database."""
        # Records raised by the database layer itself would loop back here
        if record.name == "db":
            return
        try:
            user_id = getattr(record, "user_id", None)
            context = getattr(record, "context", {})

            message = record.getMessage()
            if context:
                message = f"{message} | Context: {json.dumps(context, default=str)}"

            if record.levelno >= logging.ERROR and record.exc_info:
                stack_trace = "".join(traceback.format_exception(*record.exc_info))
                message = f"{message}\nStack Trace:\n{stack_trace}"

            self.db.create_log(user_id=user_id, level=record.levelname, message=message)
        except Exception:
            self.handleError(record)


def setup_logging(log_dir: str = "logs", max_bytes: int = 10 * 1024 * 1024, backup_count: int = 5, db=None):
    """
    Setup comprehensive logging with file rotation and optional database logging.

    Args:
        log_dir: Directory for log files
        max_bytes: Maximum size of log file before rotation (default 10MB)
        backup_count: Number of backup files to keep
        db: Database to mirror INFO+ records into (skipped when None)
    """
    os.makedirs(log_dir, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    root_logger.addHandler(console_handler)

    file_format = logging.Formatter(
        "%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, "app.log"),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_format)
    root_logger.addHandler(file_handler)

    # Separate file for errors
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, "errors.log"),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8"
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_format)
    root_logger.addHandler(error_handler)

    if db is not None:
        root_logger.addHandler(DatabaseLogHandler(db, level=logging.INFO))

    return root_logger


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_story_created(user_id: str, story_id: str, reading_level: str):
    """Log story creation event."""
    logger = logging.getLogger("story")
    context = {
        "event": "story_created",
        "user_id": user_id,
        "story_id": story_id,
        "reading_level": reading_level,
        "timestamp": _timestamp()
    }
    logger.info(
        f"Story created: user_id={user_id}, story_id={story_id}, reading_level={reading_level}",
        extra={"user_id": user_id, "context": context}
    )


def log_story_generation_start(user_id: str, story_id: str, reading_level: str, job_id: str):
    """Log story generation start event."""
    logger = logging.getLogger("story")
    context = {
        "event": "story_generation_start",
        "user_id": user_id,
        "story_id": story_id,
        "reading_level": reading_level,
        "job_id": job_id,
        "timestamp": _timestamp()
    }
    logger.info(
        f"Story generation started: user_id={user_id}, story_id={story_id}, job_id={job_id}",
        extra={"user_id": user_id, "context": context}
    )


def log_story_generation_completed(user_id: str, story_id: str, page_count: int, duration: float, job_id: str):
    """Log story generation completion event."""
    logger = logging.getLogger("story")
    context = {
        "event": "story_generation_completed",
        "story_id": story_id,
        "page_count": page_count,
        "duration": duration,
        "job_id": job_id,
        "timestamp": _timestamp()
    }
    logger.info(
        f"Story generation completed: story_id={story_id}, pages={page_count}, duration={duration:.2f}s, job_id={job_id}",
        extra={"user_id": user_id, "context": context}
    )


def log_story_generation_failed(user_id: str, story_id: str, error: str, job_id: str):
    """Log story generation failure event."""
    logger = logging.getLogger("story")
    context = {
        "event": "story_generation_failed",
        "story_id": story_id,
        "error": error,
        "job_id": job_id,
        "timestamp": _timestamp()
    }
    logger.error(
        f"Story generation failed: story_id={story_id}, job_id={job_id}, error={error}",
        extra={"user_id": user_id, "context": context}
    )


def log_image_generation(page_number: int, prompt_used: str, duration: float, status: str, job_id: str, error: Optional[str] = None):
    """Log image generation event."""
    logger = logging.getLogger("image")
    context = {
        "event": "image_generation",
        "page_number": page_number,
        "prompt_used": prompt_used[:200],  # Truncate long prompts
        "duration": duration,
        "status": status,
        "job_id": job_id,
        "timestamp": _timestamp()
    }
    if error:
        context["error"] = error

    level = logging.ERROR if status == "error" else logging.DEBUG
    message = f"Image generation: page={page_number}, status={status}, duration={duration:.2f}s, job_id={job_id}"
    if error:
        message += f", error={error}"
    logger.log(level, message, extra={"context": context})


def log_validation_failure(validation_type: str, reason: str, user_id: Optional[str] = None):
    """Log validation failure event."""
    logger = logging.getLogger("validation")
    context = {
        "event": "validation_failure",
        "validation_type": validation_type,
        "reason": reason,
        "user_id": user_id,
        "timestamp": _timestamp()
    }
    logger.warning(
        f"Validation failed: type={validation_type}, reason={reason}",
        extra={"user_id": user_id, "context": context}
    )


def log_api_error(api_name: str, error_message: str, stack_trace: Optional[str] = None, user_id: Optional[str] = None):
    """Log API error event."""
    logger = logging.getLogger("api")
    context = {
        "event": "api_error",
        "api_name": api_name,
        "error_message": error_message,
        "user_id": user_id,
        "timestamp": _timestamp()
    }
    if stack_trace:
        context["stack_trace"] = stack_trace

    logger.error(
        f"API error: api={api_name}, error={error_message}",
        extra={"user_id": user_id, "context": context}
    )


def log_pdf_exported(story_id: str, page_count: int, pdf_size: int, duration: float, user_id: Optional[str] = None):
    """Log PDF export event."""
    logger = logging.getLogger("pdf")
    context = {
        "event": "pdf_exported",
        "story_id": story_id,
        "page_count": page_count,
        "pdf_size": pdf_size,
        "duration": duration,
        "user_id": user_id,
        "timestamp": _timestamp()
    }
    logger.info(
        f"PDF exported: story_id={story_id}, pages={page_count}, duration={duration:.2f}s, pdf_size={pdf_size} bytes",
        extra={"user_id": user_id, "context": context}
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
