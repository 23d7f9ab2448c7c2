"""Data point extraction from normalized messages (core domain)."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import List, Optional

from core.config import DataCollectionConfig
from core.models import NormalizedMessage

_PHONE_RE = re.compile(r"(\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}")
_URL_RE = re.compile(r"https?://[^\s]+")


@dataclass(frozen=True)
class DataPoint:
    kind: str
    value: str
    context: Optional[dict] = None


def extract_data_points(message: NormalizedMessage, config: DataCollectionConfig) -> List[DataPoint]:
    """Return the phone numbers, URLs and media references enabled in config."""

    points: List[DataPoint] = []
    if config.collect_phone_numbers and message.text:
        points.extend(DataPoint("phone", match.group(0).strip()) for match in _PHONE_RE.finditer(message.text))
    if config.collect_urls and message.text:
        points.extend(DataPoint("url", match.group(0)) for match in _URL_RE.finditer(message.text))
    if config.collect_media and message.media_ref and message.media_ref.url:
        points.append(
            DataPoint(
                "media",
                message.media_ref.url,
                {"type": message.media_ref.mime_type, "message_type": message.content_kind},
            )
        )
    return points
