"""Keyword knowledge base built from a Word manual.

The manual is flattened into a sequence of text and image elements in document
order. Questions are matched against text elements by keyword, and images that
sit directly next to a matching paragraph are returned alongside it.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
import logging
from pathlib import Path
import unicodedata
import zipfile

import docx
from docx.image.exceptions import InvalidImageStreamError, UnexpectedEndOfFileError, UnrecognizedImageError
from docx.image.image import Image
from docx.opc.exceptions import PackageNotFoundError
from docx.parts.image import ImagePart

logger = logging.getLogger(__name__)

TEXT = "text"
IMAGE = "image"

# Images with both sides below this many pixels are decorations (bullets, icons).
MIN_IMAGE_SIDE = 60

_STOP_WORDS = frozenset({"и", "в", "на", "с", "по", "для"})
_KEYWORD_STRIP = ".,!?\"'"
_MIN_QUESTION_LENGTH = 5
_MIN_KEYWORD_LENGTH = 4


class KnowledgeBaseError(RuntimeError):
    """Raised when the manual cannot be parsed."""


@dataclass(frozen=True, slots=True)
class DocumentElement:
    """A paragraph of text or an image path extracted from the manual."""

    kind: str
    content: str

    @property
    def is_text(self) -> bool:
        return self.kind == TEXT

    @property
    def is_image(self) -> bool:
        return self.kind == IMAGE


@dataclass(slots=True)
class ContextMatch:
    """Documentation text and images relevant to a question."""

    text: str = ""
    image_paths: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.text)


def is_invalid_question(question: str) -> bool:
    """Return ``True`` for questions that are too short or contain odd symbols."""

    trimmed = (question or "").strip()
    if len(trimmed) < _MIN_QUESTION_LENGTH:
        return True
    return any(not _is_allowed_char(char) for char in trimmed)


def _is_allowed_char(char: str) -> bool:
    if char.isspace() or char == "_":
        return True
    category = unicodedata.category(char)
    return category[0] in {"L", "N", "P"}


def find_keywords(text: str) -> list[str]:
    """Extract lowercase keywords longer than three characters, first-seen order."""

    keywords: list[str] = []
    seen: set[str] = set()
    for word in (text or "").split():
        cleaned = word.lower().strip(_KEYWORD_STRIP)
        if len(cleaned) < _MIN_KEYWORD_LENGTH or cleaned in _STOP_WORDS or cleaned in seen:
            continue
        seen.add(cleaned)
        keywords.append(cleaned)
    return keywords


def find_relevant_context(question: str, elements: Sequence[DocumentElement]) -> ContextMatch:
    """Collect text elements mentioning any keyword of ``question``."""

    keywords = find_keywords(question)
    match = ContextMatch()
    if not keywords:
        return match

    parts: list[str] = []
    for index, element in enumerate(elements):
        if not element.is_text:
            continue
        haystack = element.content.lower()
        if not any(keyword in haystack for keyword in keywords):
            continue

        parts.append(element.content + "\n")
        if index + 1 < len(elements) and elements[index + 1].is_image:
            match.image_paths.append(elements[index + 1].content)
        if index > 0 and elements[index - 1].is_image:
            match.image_paths.append(elements[index - 1].content)

    match.text = "".join(parts)
    return match


def load_docx_elements(path: str | Path, media_dir: str | Path) -> list[DocumentElement]:
    """Flatten the ``.docx`` file at ``path`` into text and image elements.

    Embedded media is written to ``media_dir``; image elements hold the path of
    the written file. Images that cannot be decoded, or whose sides are both
    under ``MIN_IMAGE_SIDE`` pixels, are left out.
    """

    source = Path(path)
    try:
        document = docx.Document(str(source))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
        raise KnowledgeBaseError(f"Cannot open manual '{source}': {exc}") from exc

    paragraphs = document.paragraphs
    if not paragraphs:
        raise KnowledgeBaseError(f"Manual '{source}' contains no paragraphs")

    target_dir = Path(media_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    related_parts = document.part.related_parts
    saved: dict[str, str | None] = {}

    elements: list[DocumentElement] = []
    for paragraph in paragraphs:
        if paragraph.text:
            elements.append(DocumentElement(TEXT, paragraph.text))

        for relationship_id in paragraph._p.xpath(".//a:blip/@r:embed"):
            part = related_parts.get(relationship_id)
            if not isinstance(part, ImagePart):
                continue
            if part.partname not in saved:
                saved[part.partname] = _save_image(part, target_dir)
            if saved[part.partname]:
                elements.append(DocumentElement(IMAGE, saved[part.partname]))

    logger.info(
        "Manual loaded",
        extra={"event": "knowledge.loaded", "source": str(source), "element_count": len(elements)},
    )
    return elements


def _save_image(part: ImagePart, target_dir: Path) -> str | None:
    name = Path(part.partname).name
    try:
        image = Image.from_blob(part.blob)
    except (UnrecognizedImageError, InvalidImageStreamError, UnexpectedEndOfFileError):
        logger.warning("Skipping undecodable image %s", name, extra={"event": "knowledge.image_undecodable"})
        return None

    if image.px_width < MIN_IMAGE_SIDE and image.px_height < MIN_IMAGE_SIDE:
        logger.info(
            "Skipping %s: %dx%d is too small",
            name,
            image.px_width,
            image.px_height,
            extra={"event": "knowledge.image_too_small"},
        )
        return None

    destination = target_dir / name
    try:
        destination.write_bytes(part.blob)
    except OSError:
        logger.exception("Failed to save media file %s", name, extra={"event": "knowledge.media_failed"})
        return None
    return str(destination)


__all__ = [
    "ContextMatch",
    "DocumentElement",
    "IMAGE",
    "KnowledgeBaseError",
    "MIN_IMAGE_SIDE",
    "TEXT",
    "find_keywords",
    "find_relevant_context",
    "is_invalid_question",
    "load_docx_elements",
]
