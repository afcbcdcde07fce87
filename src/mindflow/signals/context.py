"""Page-context classification by URL keywords."""

from __future__ import annotations

from mindflow.errors import UnknownCategoryError
from mindflow.models import ContextCategory

# Checked in order; first match wins.
_CATEGORY_KEYWORDS: list[tuple[ContextCategory, tuple[str, ...]]] = [
    (
        ContextCategory.SOCIAL,
        ("twitter", "facebook", "instagram", "tiktok", "weibo", "douyin",
         "xiaohongshu", "zhihu", "reddit", "bilibili"),
    ),
    (
        ContextCategory.NEWS,
        ("news", "toutiao", "sina", "sohu", "netease", "163.com", "cnn", "bbc"),
    ),
    (
        ContextCategory.VIDEO,
        ("youtube", "netflix", "youku", "iqiyi", "twitch", "vimeo"),
    ),
    (
        ContextCategory.DOCUMENT,
        ("docs.google", "notion", "github", "stackoverflow", "wikipedia", "mdn", "readthedocs"),
    ),
    (
        ContextCategory.SHOPPING,
        ("shop", "taobao", "jd.com", "amazon", "ebay"),
    ),
]


def classify_url(url: str | None) -> ContextCategory:
    """Return the :class:`ContextCategory` for *url* (``OTHER`` when unknown)."""
    if not url:
        return ContextCategory.OTHER
    lower = url.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in lower for k in keywords):
            return category
    return ContextCategory.OTHER


def parse_category(value: str | ContextCategory) -> ContextCategory:
    """Coerce *value* to a category, raising :class:`UnknownCategoryError`."""
    if isinstance(value, ContextCategory):
        return value
    try:
        return ContextCategory(value.lower())
    except (ValueError, AttributeError):
        raise UnknownCategoryError(str(value)) from None
