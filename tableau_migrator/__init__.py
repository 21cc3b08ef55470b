"""
Tableau Server site-to-site migration.
"""

from .capabilities import ValidationError
from .client import TableauAPIError, TableauClient
from .config import ConfigManager, ConfigurationError, MigrationConfig, SiteConfig
from .credentials import AmbiguousPasswordError, CredentialStoreError, VizDatasourceStore
from .migration import MigrationError, MigrationSummary, TableauMigrator
from .services import SiteServices

__version__ = "1.0.0"

__all__ = [
    'TableauClient', 'TableauAPIError', 'ValidationError', 'ConfigManager', 'ConfigurationError',
    'MigrationConfig', 'SiteConfig', 'VizDatasourceStore', 'CredentialStoreError',
    'AmbiguousPasswordError', 'TableauMigrator', 'MigrationError', 'MigrationSummary', 'SiteServices'
]
