"""Identity provider selection and FastAPI dependency."""

import logging
from functools import lru_cache

from party_admin.core.config import settings
from party_admin.identity.base import IdentityProvider

logger = logging.getLogger("party_admin.identity")


@lru_cache(maxsize=1)
def get_identity_provider() -> IdentityProvider:
    """Return the configured identity provider (one per process)."""
    if settings.IDENTITY_BACKEND == "gotrue":
        from party_admin.identity.gotrue import GoTrueIdentityProvider
        logger.info("Using GoTrue identity provider at %s", settings.GOTRUE_URL)
        return GoTrueIdentityProvider()
    if settings.IDENTITY_BACKEND == "local":
        from party_admin.identity.local import LocalIdentityProvider
        provider = LocalIdentityProvider()
        provider.create_schema()
        return provider
    raise ValueError(f"Unknown IDENTITY_BACKEND '{settings.IDENTITY_BACKEND}'")
