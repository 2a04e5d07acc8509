"""
Name normalization and request-level field validation.

Tag names and usernames are compared in their normalized form, so every
write path goes through normalize_tag_name / sanitize_username first.
"""
import re
from typing import Iterable, List

from catalog.config import get_settings
from catalog.errors import ValidationError
from catalog.schemas import DocumentFields

TAG_PATTERN = re.compile(r"^[a-z0-9_-]+$")
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
_INVALID_TAG_CHARS = re.compile(r"[^a-z0-9_-]")
_SEPARATOR_RUN = re.compile(r"[-_]{2,}")
_EDGE_SEPARATORS = re.compile(r"^[-_]+|[-_]+$")
_DOUBLED_SEPARATORS = ("__", "--", "_-", "-_")
_FILENAME_INVALID = re.compile(r"[^a-zA-Z0-9\s\-_]")


def normalize_tag_name(name: str) -> str:
    """
    Returns the canonical form of a tag name.

    Trims and lowercases, drops characters outside [a-z0-9-_], trims
    separators from both ends, collapses separator runs into a single "-" and
    truncates to the maximum tag length. Applying it twice gives the same
    result as applying it once.

    Args:
        name: Raw tag name

    Returns:
        Normalized name (possibly empty)
    """
    max_length = get_settings().tag_max_length
    value = _INVALID_TAG_CHARS.sub("", (name or "").strip().lower())
    value = _EDGE_SEPARATORS.sub("", value)
    value = _SEPARATOR_RUN.sub("-", value)
    value = value[:max_length]
    return _EDGE_SEPARATORS.sub("", value)


def is_valid_tag_name(name: str) -> bool:
    settings = get_settings()
    if not name or not settings.tag_min_length <= len(name) <= settings.tag_max_length:
        return False
    if not TAG_PATTERN.match(name):
        return False
    return not (name[0] in "-_" or name[-1] in "-_")


def normalize_tag_list(names: Iterable[str]) -> List[str]:
    """
    Normalizes and de-duplicates tag names, keeping first-seen order.

    Blank entries are dropped. Entries whose normalized form is invalid are
    kept so the caller can report them.
    """
    seen = set()
    result = []
    for raw in names or []:
        if raw is None or not raw.strip():
            continue
        normalized = normalize_tag_name(raw)
        key = normalized or raw
        if key in seen:
            continue
        seen.add(key)
        result.append(normalized or raw)
    return result


def sanitize_username(candidate: str) -> str:
    """
    Turns free-form profile text into a username candidate.
    """
    max_length = get_settings().username_max_length
    value = re.sub(r"[^a-z0-9_-]", "", (candidate or "").lower())
    value = _EDGE_SEPARATORS.sub("", value)
    value = _SEPARATOR_RUN.sub("_", value)
    value = value[:max_length]
    return _EDGE_SEPARATORS.sub("", value)


def is_valid_username(username: str) -> bool:
    settings = get_settings()
    if not username or not settings.username_min_length <= len(username) <= settings.username_max_length:
        return False
    if not USERNAME_PATTERN.match(username):
        return False
    if username[0] in "-_" or username[-1] in "-_":
        return False
    return not any(sep in username for sep in _DOUBLED_SEPARATORS)


def validate_document_fields(fields: DocumentFields) -> DocumentFields:
    """
    Checks document limits and returns a cleaned copy.

    Args:
        fields: Incoming document fields

    Returns:
        DocumentFields with trimmed title/description and normalized tags

    Raises:
        ValidationError if any limit is exceeded
    """
    settings = get_settings()

    title = (fields.title or "").strip()
    if not title:
        raise ValidationError("Document title is required", field="title")
    if len(title) > settings.title_max_length:
        raise ValidationError(
            f"Document title must be {settings.title_max_length} characters or less", field="title"
        )

    description = (fields.description or "").strip() or None
    if description and len(description) > settings.description_max_length:
        raise ValidationError(
            f"Document description must be {settings.description_max_length} characters or less",
            field="description",
        )

    content = fields.content or ""
    if not content.strip():
        raise ValidationError("Document content is required", field="content")
    if len(content.encode("utf-8")) > settings.content_max_bytes:
        raise ValidationError(
            f"Document content is too large (max {settings.content_max_bytes} bytes)", field="content"
        )

    tags = normalize_tag_list(fields.tags)
    invalid = [name for name in tags if not is_valid_tag_name(name)]
    if invalid:
        raise ValidationError(f"Invalid tag name: {invalid[0]!r}", field="tags")
    if len(tags) > settings.max_tags_per_document:
        raise ValidationError(
            f"Maximum of {settings.max_tags_per_document} tags allowed per document", field="tags"
        )

    return DocumentFields(
        title=title,
        description=description,
        content=content,
        is_public=fields.is_public,
        tags=tags,
    )


def sanitize_filename(title: str) -> str:
    """
    Builds a download filename stem from a document title.
    """
    value = _FILENAME_INVALID.sub("", title)
    value = re.sub(r"\s+", "_", value.strip())
    return value[:100] or "document"
