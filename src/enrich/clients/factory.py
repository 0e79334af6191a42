"""Provider selection from configuration."""

from common.env import env

from .base import MetadataProvider
from .google_books import GoogleBooksClient
from .null_provider import NullProvider
from .openlibrary import OpenLibraryClient

PROVIDERS: dict[str, type[MetadataProvider]] = {
    "google": GoogleBooksClient,
    "openlibrary": OpenLibraryClient,
    "none": NullProvider,
}


def create_provider(name: str | None = None) -> MetadataProvider:
    """Create the metadata provider named by ``name`` or METADATA_PROVIDER.

    Raises:
        ValueError: If the name is not a known provider
    """
    name = (name or env.metadata_provider()).lower()
    try:
        provider_cls = PROVIDERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown metadata provider '{name}'. Choose from: {', '.join(PROVIDERS)}"
        ) from None
    return provider_cls()
