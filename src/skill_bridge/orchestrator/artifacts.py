"""Informational metadata pulled from skill output for the sender."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PureWindowsPath

IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".bmp"})
AUDIO_EXTENSIONS = frozenset({".mp3", ".wav", ".aac", ".ogg", ".flac", ".m4a", ".opus"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".avi", ".mov", ".mkv", ".flv", ".webm"})
DOCUMENT_EXTENSIONS = frozenset(
    {".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".pdf", ".txt", ".csv", ".md"},
)
MAX_NUMBERS = 10

_URL_PATTERN = re.compile(r"https?://[^\s]+")
_FILE_PATTERN = re.compile(r"(?:[a-zA-Z]:\\|/)?[\w\-\\/.]+\.[A-Za-z][A-Za-z0-9]*")
_NUMBER_PATTERN = re.compile(r"\b\d+\b")
_ERROR_LINE_PATTERN = re.compile(
    r"(?:error|错误|exception|异常|failed|失败)[:：]\s*([^\n]+)",
    re.IGNORECASE,
)


@dataclass(slots=True)
class KeyInfo:
    """Paths, links and error lines detected in one output."""

    files: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    audio: list[str] = field(default_factory=list)
    video: list[str] = field(default_factory=list)
    documents: list[str] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)
    numbers: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "files": list(self.files),
            "images": list(self.images),
            "audio": list(self.audio),
            "video": list(self.video),
            "documents": list(self.documents),
            "urls": list(self.urls),
            "numbers": list(self.numbers),
            "errors": list(self.errors),
        }


def extract_key_info(output: str) -> KeyInfo:
    """Collect candidate files (bucketed by media type), URLs, numbers and errors."""

    info = KeyInfo()
    if not output:
        return info

    info.urls = _dedupe(_URL_PATTERN.findall(output))
    without_urls = _URL_PATTERN.sub(" ", output)
    info.files = _dedupe(_FILE_PATTERN.findall(without_urls))
    for path in info.files:
        bucket = media_bucket(path)
        if bucket == "image":
            info.images.append(path)
        elif bucket == "audio":
            info.audio.append(path)
        elif bucket == "video":
            info.video.append(path)
        elif bucket == "document":
            info.documents.append(path)

    info.numbers = _NUMBER_PATTERN.findall(output)[:MAX_NUMBERS]
    info.errors = [match.strip() for match in _ERROR_LINE_PATTERN.findall(output)]
    return info


def media_bucket(path: str) -> str | None:
    """Return image/audio/video/document for a path, or None for other files."""

    suffix = PureWindowsPath(path).suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        return "image"
    if suffix in AUDIO_EXTENSIONS:
        return "audio"
    if suffix in VIDEO_EXTENSIONS:
        return "video"
    if suffix in DOCUMENT_EXTENSIONS:
        return "document"
    return None


def _dedupe(values: list[str]) -> list[str]:
    deduped: list[str] = []
    seen: set[str] = set()
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        deduped.append(value)
    return deduped
