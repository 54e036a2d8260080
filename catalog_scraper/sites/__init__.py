"""Site adapter registry."""

import logging
from typing import Type

from catalog_scraper.sites.base import SiteAdapter
from catalog_scraper.sites.nike import NikeAdapter
from catalog_scraper.sites.tommy import TommyHilfigerAdapter

logger = logging.getLogger(__name__)


class UnknownSiteError(ValueError):
    """Raised when no adapter is registered for a site slug."""

    pass


class SiteRegistry:
    """Registry for site adapters."""

    _adapters: dict[str, Type[SiteAdapter]] = {
        TommyHilfigerAdapter.slug: TommyHilfigerAdapter,
        NikeAdapter.slug: NikeAdapter,
    }

    @classmethod
    def get_adapter(cls, slug: str) -> SiteAdapter:
        """
        Create the adapter for a site.

        Args:
            slug: Site identifier

        Returns:
            Adapter instance

        Raises:
            UnknownSiteError: If the site is not registered
        """
        if slug not in cls._adapters:
            raise UnknownSiteError(
                f"Unknown site: {slug}. Available: {cls.list_sites()}"
            )
        return cls._adapters[slug]()

    @classmethod
    def register(cls, adapter_class: Type[SiteAdapter]) -> None:
        """Register an adapter class under its slug."""
        cls._adapters[adapter_class.slug] = adapter_class
        logger.info(f"Registered site adapter: {adapter_class.slug}")

    @classmethod
    def list_sites(cls) -> list[str]:
        """List all registered site slugs."""
        return sorted(cls._adapters.keys())
