"""
Page illustration generation via the OpenAI Images API.

A single attempt never raises: it returns an ImageResult whose ``error_kind``
tells the retry loop whether to back off (rate limits) or retry at once.
"""

import base64
import binascii
import io
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import openai
import requests
from PIL import Image

from models import ImageErrorKind, ReadingLevel
import logger as app_logger

logger = logging.getLogger("image")

# Art style per reading level
STYLE_PRESETS = {
    ReadingLevel.KINDERGARTEN: "bright, colorful, simple shapes, friendly cartoon style, very playful and whimsical",
    ReadingLevel.GRADE1: "warm watercolor illustration, friendly characters, soft colors, storybook style",
    ReadingLevel.GRADE2: "vibrant digital illustration, expressive characters, dynamic scenes",
    ReadingLevel.GRADE3: "detailed storybook illustration, rich colors, engaging compositions",
    ReadingLevel.GRADE4: "polished book illustration, realistic yet stylized, atmospheric lighting",
    ReadingLevel.GRADE5: "sophisticated children's book art, detailed environments, expressive characters",
}

AUDIENCE_NAMES = {
    ReadingLevel.KINDERGARTEN: "Kindergarten",
    ReadingLevel.GRADE1: "Grade 1",
    ReadingLevel.GRADE2: "Grade 2",
    ReadingLevel.GRADE3: "Grade 3",
    ReadingLevel.GRADE4: "Grade 4",
    ReadingLevel.GRADE5: "Grade 5",
}


@dataclass
class ImageResult:
    success: bool
    image_base64: Optional[str] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ImageErrorKind] = None
    attempts: int = 1
    prompt: str = ""


def build_image_prompt(page_text: str, story_title: str, reading_level, page_number: int) -> str:
    level = ReadingLevel(reading_level)
    style = STYLE_PRESETS[level]

    return f"""Create a beautiful children's book illustration for a story titled "{story_title}".

This is page {page_number} of the story. The page text reads:
"{page_text}"

Art Style: {style}

Requirements:
- Create a scene that captures the key moment or emotion from this page text
- Child-friendly and age-appropriate for {AUDIENCE_NAMES[level]} readers
- DO NOT include any text, words, letters, or numbers in the image
- Focus on the main characters and action described in the text
- Use bright, engaging colors that appeal to young readers
- The illustration should be warm and inviting
- Horizontal/landscape orientation suitable for a book page
- No scary, violent, or inappropriate content"""


def classify_error(error: Exception) -> ImageErrorKind:
    """Map an SDK exception onto a retry category."""
    if isinstance(error, openai.RateLimitError):
        return ImageErrorKind.RATE_LIMITED
    if isinstance(error, openai.APIStatusError) and error.status_code == 429:
        return ImageErrorKind.RATE_LIMITED
    return ImageErrorKind.OTHER


def detect_mime_type(raw: bytes, default: str = "image/png") -> str:
    try:
        with Image.open(io.BytesIO(raw)) as im:
            return Image.MIME.get(im.format, default)
    except Exception:
        return default


def download_image(url: str, timeout: int = 60) -> bytes:
    r = requests.get(url, timeout=timeout)
    r.raise_for_status()
    return r.content


class ImageGenerationClient:
    """Generates one illustration per call, with a bounded retry wrapper."""

    def __init__(self, client: Optional[openai.OpenAI], model: str = "dall-e-3", size: str = "1792x1024",
                 quality: str = "standard", max_retries: int = 3,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.model = model
        self.size = size
        self.quality = quality
        self.max_retries = max_retries
        self.sleep = sleep

    def _request_params(self, prompt: str) -> dict:
        params = {"model": self.model, "prompt": prompt, "size": self.size, "n": 1}
        if self.model.startswith("dall-e"):
            params["response_format"] = "b64_json"
        if self.model == "dall-e-3" and self.quality:
            params["quality"] = self.quality
        return params

    def generate_page_image(self, page_text: str, story_title: str, reading_level, page_number: int) -> ImageResult:
        """Single attempt against the image model."""
        prompt = build_image_prompt(page_text, story_title, reading_level, page_number)
        if self.client is None:
            return ImageResult(success=False, error="Image generation is not configured (missing OPENAI_API_KEY)",
                               error_kind=ImageErrorKind.OTHER, prompt=prompt)

        logger.info("[image] OpenAI generate → page %d of %r", page_number, story_title)
        try:
            resp = self.client.images.generate(**self._request_params(prompt))
        except Exception as e:
            kind = classify_error(e)
            logger.warning("[image] Attempt failed (%s, %s): %s", type(e).__name__, kind.value, e)
            return ImageResult(success=False, error=str(e), error_kind=kind, prompt=prompt)

        first = resp.data[0] if getattr(resp, "data", None) else None
        b64_data = getattr(first, "b64_json", None) if first is not None else None
        img_url = getattr(first, "url", None) if first is not None else None

        if not b64_data and img_url:
            try:
                b64_data = base64.b64encode(download_image(img_url)).decode("ascii")
            except requests.RequestException as e:
                return ImageResult(success=False, error=f"Image download failed: {e}",
                                   error_kind=ImageErrorKind.OTHER, prompt=prompt)

        if not b64_data:
            return ImageResult(success=False, error="No image in response",
                               error_kind=ImageErrorKind.NO_IMAGE, prompt=prompt)

        try:
            raw = base64.b64decode(b64_data, validate=True)
        except binascii.Error as e:
            logger.warning("[image] Malformed base64 in response: %s", e)
            return ImageResult(success=False, error=f"Malformed image data in response: {e}",
                               error_kind=ImageErrorKind.OTHER, prompt=prompt)

        mime_type = detect_mime_type(raw)
        return ImageResult(success=True, image_base64=b64_data, mime_type=mime_type, prompt=prompt)

    def generate_with_retry(self, page_text: str, story_title: str, reading_level, page_number: int,
                            max_retries: Optional[int] = None, job_id: str = "") -> ImageResult:
        """Try up to ``max_retries`` times, strictly one after another.

        Rate-limited attempts wait 2**attempt seconds before the next try;
        other failures retry immediately. No wait follows the last attempt.
        """
        if max_retries is None:
            max_retries = self.max_retries
        last: Optional[ImageResult] = None

        for attempt in range(1, max_retries + 1):
            started = time.time()
            result = self.generate_page_image(page_text, story_title, reading_level, page_number)
            duration = time.time() - started

            if result.success:
                result.attempts = attempt
                app_logger.log_image_generation(page_number, result.prompt, duration, "success", job_id)
                return result

            last = result
            app_logger.log_image_generation(page_number, result.prompt, duration, "retry", job_id, result.error)

            if attempt < max_retries and result.error_kind == ImageErrorKind.RATE_LIMITED:
                wait_time = 2 ** attempt
                logger.warning(f"[image] Rate limit hit (attempt {attempt}/{max_retries}), waiting {wait_time}s before retry...")
                self.sleep(wait_time)

        error = f"Failed after {max_retries} attempts. Last error: {last.error if last else 'Unknown error'}"
        app_logger.log_image_generation(page_number, last.prompt if last else "", 0.0, "error", job_id, error)
        return ImageResult(success=False, error=error, error_kind=last.error_kind if last else ImageErrorKind.OTHER,
                           attempts=max_retries, prompt=last.prompt if last else "")
