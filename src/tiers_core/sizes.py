"""Package-size detection for product variants.

Every product that takes part in tiering is sold in a 30 ml and/or a 100 ml
presentation. This module decides which bucket a variant belongs to from
its SKU and variant title.

Examples:
    >>> classify_size("EDP-ROSE-100", "100 ml").bucket
    '100'
    >>> classify_size("KIT-30-100", "Duo").bucket is None
    True
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

# A standalone 30/100 token, optionally followed by "ml", not adjacent to other digits.
DEFAULT_SIZE_30_PATTERN = r"(?:^|[^0-9])30(?:\s*ml)?(?:$|[^0-9])"
DEFAULT_SIZE_100_PATTERN = r"(?:^|[^0-9])100(?:\s*ml)?(?:$|[^0-9])"

# SKU-only suffix fallback, e.g. "ROSE-100".
_SUFFIX_30 = re.compile(r"-30\b", re.IGNORECASE)
_SUFFIX_100 = re.compile(r"-100\b", re.IGNORECASE)

BUCKET_30 = "30"
BUCKET_100 = "100"


@dataclass(frozen=True)
class SizeMatch:
    """Result of classifying a variant.

    At most one of ``is30`` / ``is100`` is ever True.
    """

    is30: bool = False
    is100: bool = False

    @property
    def bucket(self) -> str | None:
        """Return "30", "100" or None when the variant is unclassifiable."""
        if self.is30:
            return BUCKET_30
        if self.is100:
            return BUCKET_100
        return None


class SizeMatcher(Protocol):
    """Anything that maps (sku, variant_title) to a SizeMatch."""

    def __call__(self, sku: str, variant_title: str) -> SizeMatch: ...


def compile_pattern(pattern: str | None, default: str) -> re.Pattern[str]:
    """Compile a case-insensitive size pattern, falling back to ``default``.

    Args:
        pattern: User-supplied regex. None or empty uses ``default``.
        default: Built-in regex used when ``pattern`` is unusable.

    Returns:
        Compiled pattern.
    """
    if pattern:
        try:
            return re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            logger.warning("Invalid size pattern %r (%s); using default %r", pattern, e, default)
    return re.compile(default, re.IGNORECASE)


class SizeClassifier:
    """Classify variants into the 30 or 100 bucket.

    Patterns are compiled once at construction. A variant that matches both
    sizes is treated as unclassifiable rather than counted twice.

    Example:
        >>> classifier = SizeClassifier(size30_pattern=r"\\bmini\\b")
        >>> classifier("ROSE", "Mini").is30
        True
    """

    def __init__(
        self,
        size30_pattern: str | None = None,
        size100_pattern: str | None = None,
    ) -> None:
        self.r30 = compile_pattern(size30_pattern, DEFAULT_SIZE_30_PATTERN)
        self.r100 = compile_pattern(size100_pattern, DEFAULT_SIZE_100_PATTERN)

    def classify(self, sku: str, variant_title: str) -> SizeMatch:
        """Classify one variant by its SKU and title."""
        sku = str(sku or "")
        title = str(variant_title or "")
        has30 = bool(self.r30.search(sku) or self.r30.search(title) or _SUFFIX_30.search(sku))
        has100 = bool(
            self.r100.search(sku) or self.r100.search(title) or _SUFFIX_100.search(sku)
        )
        return SizeMatch(is30=has30 and not has100, is100=has100 and not has30)

    __call__ = classify


_DEFAULT_CLASSIFIER = SizeClassifier()


def classify_size(sku: str, variant_title: str) -> SizeMatch:
    """Classify a variant with the built-in patterns."""
    return _DEFAULT_CLASSIFIER.classify(sku, variant_title)


def make_prefix_matcher(prefix: str) -> Callable[[str], bool]:
    """Build a predicate that checks a SKU starts with a literal prefix.

    An empty prefix accepts every SKU.
    """
    prefix = (prefix or "").strip()
    if not prefix:
        return lambda sku: True
    return lambda sku: str(sku or "").startswith(prefix)
