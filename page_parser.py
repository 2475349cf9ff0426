from typing import List

from prompts import PAGE_DELIMITER


def parse_story_into_pages(raw_response: str) -> List[str]:
    """Split raw model output into page texts.

    Segments are split on every delimiter, trimmed, and empty ones dropped.
    Text with no delimiter at all comes back as a single page.
    """
    pages = (segment.strip() for segment in raw_response.split(PAGE_DELIMITER))
    return [page for page in pages if page]
