"""Storefront configuration.

Read once from STOREFRONT_* environment variables at import time.
"""

from patterns.domain_config import StorefrontConfig

config = StorefrontConfig.from_env()
