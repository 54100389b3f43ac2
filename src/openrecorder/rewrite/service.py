"""Content-type driven response body rewriting."""

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from openrecorder.rewrite.rules import BASE_RULES, RuleSet
from openrecorder.rewrite.video import DEFAULT_MAX_BANDWIDTH, DEFAULT_MAX_RESOLUTION, rewrite_dash, rewrite_hls

logger = logging.getLogger(__name__)


class ContentKind(str, Enum):
    HLS = 'hls'
    DASH = 'dash'
    HTML = 'html'
    OTHER = 'other'


def normalize_content_type(content_type: str | None) -> str:
    """Lowercase the media type and strip parameters."""
    if not content_type:
        return ''
    return content_type.split(';', 1)[0].strip().lower()


def classify_content_type(content_type: str | None) -> ContentKind:
    match normalize_content_type(content_type):
        case 'application/x-mpegurl' | 'application/vnd.apple.mpegurl':
            return ContentKind.HLS
        case 'application/dash+xml':
            return ContentKind.DASH
        case 'text/html':
            return ContentKind.HTML
        case _:
            return ContentKind.OTHER


def get_content_type(headers: Any) -> str | None:
    """Find the content-type in a header list (name/value entries) or mapping."""
    if not headers:
        return None
    items = headers.items() if isinstance(headers, dict) else ((h.get('name', ''), h.get('value')) for h in headers)
    for name, value in items:
        if str(name).lower() == 'content-type':
            return value
    return None


class ResponseRewriter(BaseModel):
    """Pure transform from an intercepted body to an optional replacement body.

    Attributes:
        rules: URL-scoped rules consulted for HTML responses.
        max_bandwidth: Upper bandwidth bound for the rendition kept in manifests.
        max_resolution: Upper pixel-area bound for the rendition kept in manifests.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    rules: RuleSet = Field(default=BASE_RULES)
    max_bandwidth: int = DEFAULT_MAX_BANDWIDTH
    max_resolution: int = DEFAULT_MAX_RESOLUTION

    def rewrite(self, content_type: str | None, body: bytes | str | None, url: str) -> str | None:
        """Rewrite ``body`` according to its content type.

        Returns:
            The new body, or None when the response should pass through untouched.
        """
        if not body:
            return None

        kind = classify_content_type(content_type)
        if kind is ContentKind.OTHER:
            return None

        text = body.decode('utf-8', errors='replace') if isinstance(body, bytes) else body
        if not text:
            return None

        match kind:
            case ContentKind.HLS:
                new_text = rewrite_hls(text, self.max_bandwidth, self.max_resolution)
            case ContentKind.DASH:
                new_text = rewrite_dash(text, self.max_bandwidth, self.max_resolution)
            case ContentKind.HTML:
                rule = self.rules.get_rewriter(url)
                if rule is self.rules.default_rule:
                    return None
                new_text = rule.rewrite(text)
                if new_text == text:
                    return None
            case _:
                return None

        return new_text or None
