"""In-process registry of known categories and their URL slugs.

The registry is the single place where category names are matched
case-insensitively and where slugs are assigned. A slug is derived once
per category and never changes for the lifetime of the process.
"""

import re
from typing import Dict, Optional, Set

import structlog

from dealfeeds.scrapers.utils.normalizer import canonical_category_name

logger = structlog.get_logger(__name__)


# Reserved for the "every category" aggregate view
AGGREGATE_KEY = "all"

DEFAULT_SLUG = "category"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Derive a URL-safe slug from a category name.

    Lowercases and replaces every run of non-alphanumeric characters with a
    single "-".

    Examples:
        "Home & Kitchen" -> "home-kitchen"
        "Tools" -> "tools"
    """
    slug = _NON_ALNUM_RE.sub("-", name.lower()).strip("-")
    return slug or DEFAULT_SLUG


class CategoryRegistry:
    """Known categories with a bidirectional name <-> slug mapping.

    Names are stored in their canonical display form and looked up by a
    case-folded key. Slug collisions between different names are resolved
    by appending "-2", "-3", ... to the later name.
    """

    def __init__(self):
        self._names: Dict[str, str] = {}  # casefold key -> display name
        self._slugs: Dict[str, str] = {}  # display name -> slug
        self._by_slug: Dict[str, str] = {}  # slug -> display name
        self.logger = logger.bind(service="category_registry")

    @staticmethod
    def _key(name: str) -> str:
        return name.casefold()

    def canonical(self, name: Optional[str]) -> Optional[str]:
        """Return the stored display name matching `name`, ignoring case."""
        cleaned = canonical_category_name(name)
        if cleaned is None:
            return None
        return self._names.get(self._key(cleaned))

    def ensure(self, name: str) -> bool:
        """Register a category if unseen.

        Args:
            name: Category name in any casing

        Returns:
            True if the category was newly created

        Raises:
            ValueError: If the name is empty or reserved
        """
        cleaned = self._validate(name)
        if self._key(cleaned) in self._names:
            return False

        self._register(cleaned, self._unique_slug(slugify(cleaned)))
        self.logger.info("category_registered", category=cleaned, slug=self._slugs[cleaned])
        return True

    def restore(self, name: str, slug: str) -> None:
        """Register a category with a previously persisted slug.

        Used when rehydrating from storage so slugs survive restarts. A
        category that is already known keeps its current slug.
        """
        cleaned = self._validate(name)
        if self._key(cleaned) in self._names:
            return
        if slug in self._by_slug:
            slug = self._unique_slug(slug)
        self._register(cleaned, slug)

    def slug_of(self, name: str) -> Optional[str]:
        """Return the slug of a known category, or None."""
        canonical = self.canonical(name)
        if canonical is None:
            return None
        return self._slugs[canonical]

    def resolve(self, slug: str) -> Optional[str]:
        """Return the display name owning `slug`, or None."""
        return self._by_slug.get(slug.strip().lower())

    def list(self) -> Set[str]:
        """Every category observed in this process, including empty ones."""
        return set(self._slugs)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.canonical(name) is not None

    def __len__(self) -> int:
        return len(self._slugs)

    def _validate(self, name: str) -> str:
        cleaned = canonical_category_name(name)
        if cleaned is None:
            raise ValueError("category name is required")
        if self._key(cleaned) == AGGREGATE_KEY:
            raise ValueError(f"'{cleaned}' is reserved for the aggregate feed")
        return cleaned

    def _register(self, name: str, slug: str) -> None:
        self._names[self._key(name)] = name
        self._slugs[name] = slug
        self._by_slug[slug] = name

    def _unique_slug(self, base: str) -> str:
        slug = base
        suffix = 2
        while slug in self._by_slug or slug == AGGREGATE_KEY:
            slug = f"{base}-{suffix}"
            suffix += 1
        return slug
