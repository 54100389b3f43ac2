"""Response body rewriting for intercepted responses."""

from openrecorder.rewrite.rules import BASE_RULES, DomainRule, RuleSet
from openrecorder.rewrite.service import ContentKind, ResponseRewriter, classify_content_type, get_content_type

__all__ = [
    "BASE_RULES",
    "ContentKind",
    "DomainRule",
    "ResponseRewriter",
    "RuleSet",
    "classify_content_type",
    "get_content_type",
]
