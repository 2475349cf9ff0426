"""
Story prompt construction for the text model.
Reading levels control vocabulary, sentence length and target page count.
"""

from dataclasses import dataclass
from typing import Dict

from models import ReadingLevel

PAGE_DELIMITER = "---PAGE---"


@dataclass(frozen=True)
class ReadingLevelConfig:
    name: str
    vocabulary_guidance: str
    sentence_guidance: str
    suggested_pages: int


READING_LEVEL_CONFIG: Dict[ReadingLevel, ReadingLevelConfig] = {
    ReadingLevel.KINDERGARTEN: ReadingLevelConfig(
        name="Kindergarten (Ages 4-6)",
        vocabulary_guidance="Use only simple sight words and very basic vocabulary that a 5-year-old would understand",
        sentence_guidance="Keep sentences very short, 3-6 words each",
        suggested_pages=8,
    ),
    ReadingLevel.GRADE1: ReadingLevelConfig(
        name="1st Grade (Ages 6-7)",
        vocabulary_guidance="Use basic vocabulary with simple phonetic words",
        sentence_guidance="Keep sentences short, 5-8 words each",
        suggested_pages=10,
    ),
    ReadingLevel.GRADE2: ReadingLevelConfig(
        name="2nd Grade (Ages 7-8)",
        vocabulary_guidance="Use expanding vocabulary with some descriptive words",
        sentence_guidance="Sentences can be 6-10 words",
        suggested_pages=10,
    ),
    ReadingLevel.GRADE3: ReadingLevelConfig(
        name="3rd Grade (Ages 8-9)",
        vocabulary_guidance="Use grade-level vocabulary with more complex words",
        sentence_guidance="Sentences can be 8-12 words with varied structure",
        suggested_pages=12,
    ),
    ReadingLevel.GRADE4: ReadingLevelConfig(
        name="4th Grade (Ages 9-10)",
        vocabulary_guidance="Use more sophisticated vocabulary and descriptive language",
        sentence_guidance="Sentences can be 10-15 words with compound structures",
        suggested_pages=12,
    ),
    ReadingLevel.GRADE5: ReadingLevelConfig(
        name="5th Grade (Ages 10-11)",
        vocabulary_guidance="Use advanced vocabulary appropriate for pre-teens",
        sentence_guidance="Sentences can be 12-18 words with complex structures",
        suggested_pages=14,
    ),
}


def reading_level_config(reading_level) -> ReadingLevelConfig:
    """Look up guidance for a reading level (enum or its string value)."""
    return READING_LEVEL_CONFIG[ReadingLevel(reading_level)]


def build_story_prompt(title: str, outline: str, reading_level) -> str:
    """Build the full-story prompt sent to the text model."""
    config = reading_level_config(reading_level)

    return f"""You are a children's book author. Write a complete story based on the following information.

TITLE: {title}

STORY OUTLINE:
{outline}

REQUIREMENTS:
- Reading level: {config.name}
- Vocabulary: {config.vocabulary_guidance}
- Sentence length: {config.sentence_guidance}
- Target length: {config.suggested_pages} pages (one paragraph per page)

CRITICAL FORMATTING RULES:
- Write exactly one paragraph per page
- Each paragraph should describe a single scene or moment
- Separate each page with the exact text "{PAGE_DELIMITER}" on its own line
- Do NOT include page numbers
- Do NOT include any markdown formatting
- Do NOT include the title in the output
- Write ONLY the story text, nothing else

EXAMPLE OUTPUT FORMAT:
Once upon a time, there was a little rabbit named Lily who loved to explore the forest.
{PAGE_DELIMITER}
One sunny morning, Lily hopped out of her cozy burrow and looked around with excitement.
{PAGE_DELIMITER}
She saw a beautiful butterfly with rainbow wings dancing in the air.

BEGIN STORY:"""
