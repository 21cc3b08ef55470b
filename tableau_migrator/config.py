"""Configuration management for Tableau Migrator.

Settings are plain dataclasses. ``ConfigManager`` assembles them from a YAML or
JSON file, a ``.env`` file and environment variables (environment wins).
"""
import os
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from .common.helpers import load_config

__all__ = [
    'ConfigurationError', 'SiteConfig', 'VizDatasourceConfig', 'SmtpConfig',
    'MigrationConfig', 'CaseInsensitiveDict', 'ConfigManager', 'parse_workbook_list'
]


class ConfigurationError(Exception):
    """Raised when required settings are missing or malformed"""


@dataclass
class SiteConfig:
    """Connection settings for one Tableau Server site."""
    base_url: str
    username: str
    password: str
    api_version: str = "3.6"
    site_content_url: str = ""
    timeout_seconds: int = 0


@dataclass
class VizDatasourceConfig:
    """Settings for the viz datasource catalog and its credential report."""
    report_output_path: str
    json_source_path: Optional[str] = None
    base_url: Optional[str] = None
    cookie: Optional[str] = None
    datasource_files_path: str = "datasources"


@dataclass
class SmtpConfig:
    """Mail server used to notify the administrator after a run."""
    server: str
    sender: str
    admin: str = ""
    port: int = 25
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = False
    dev_test: Optional[str] = None


class CaseInsensitiveDict(dict):
    """Dictionary keyed by strings compared without regard to case."""

    def __init__(self, data: Optional[Mapping[str, Any]] = None):
        super().__init__()
        for key, value in (data or {}).items():
            self[key] = value

    def __setitem__(self, key, value):
        super().__setitem__(key.casefold(), value)

    def __getitem__(self, key):
        return super().__getitem__(key.casefold())

    def __contains__(self, key):
        return isinstance(key, str) and super().__contains__(key.casefold())

    def get(self, key, default=None):
        if not isinstance(key, str):
            return default
        return super().get(key.casefold(), default)


@dataclass
class MigrationConfig:
    """Configuration for a source to destination migration run."""
    source: SiteConfig
    destination: SiteConfig
    viz_datasources: VizDatasourceConfig
    projects_to_migrate: "OrderedDict[str, str]" = field(default_factory=OrderedDict)
    workbook_download_path: str = "workbooks"
    destination_root_project_name: Optional[str] = None
    default_owner_username: str = ""
    embedded_connection_credentials: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    workbooks_to_skip: List[str] = field(default_factory=list)
    dry_run: bool = False
    smtp: Optional[SmtpConfig] = None

    def __post_init__(self):
        if not isinstance(self.embedded_connection_credentials, CaseInsensitiveDict):
            self.embedded_connection_credentials = CaseInsensitiveDict(self.embedded_connection_credentials)
        if not isinstance(self.projects_to_migrate, OrderedDict):
            self.projects_to_migrate = OrderedDict(self.projects_to_migrate or {})
        self.default_owner_username = self.default_owner_username or ""


def parse_workbook_list(value: Optional[str]) -> List[str]:
    """Split a pipe-delimited workbook allow-list, dropping blank entries."""
    return [name.strip() for name in (value or '').split('|') if name.strip()]


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


class ConfigManager:
    """Loads migration settings from a config file, .env and the environment"""

    def __init__(self, config_file: Optional[str] = None, env_file: Optional[str] = None):
        self.config_file = config_file
        self.env_file = env_file or ".env"
        self._load_environment()
        self.data: Dict[str, Any] = load_config(config_file) if config_file else {}

    def _load_environment(self):
        """Load environment variables from .env file"""
        if os.path.exists(self.env_file):
            load_dotenv(self.env_file, override=False)

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.data.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Section '{name}' must be a mapping")
        return dict(section)

    def get_site_config(self, role: str) -> SiteConfig:
        """Get settings for the 'source' or 'destination' site"""
        section = self._section(role)
        prefix = f"TABLEAU_{role.upper()}_"
        base_url = os.getenv(prefix + 'BASE_URL', section.get('base_url'))
        username = os.getenv(prefix + 'USERNAME', section.get('username'))
        password = os.getenv(prefix + 'PASSWORD', section.get('password'))

        missing = [key for key, value in (('base_url', base_url), ('username', username),
                                          ('password', password)) if not value]
        if missing:
            raise ConfigurationError(f"Missing {role} settings: {', '.join(missing)}")

        return SiteConfig(
            base_url=base_url,
            username=username,
            password=password,
            api_version=str(section.get('api_version', '3.6')),
            site_content_url=section.get('site_content_url') or '',
            timeout_seconds=int(section.get('timeout_seconds') or 0)
        )

    def get_viz_datasource_config(self) -> VizDatasourceConfig:
        """Get viz datasource catalog settings"""
        section = self._section('viz_datasources')
        report_output_path = section.get('report_output_path')
        if not report_output_path:
            raise ConfigurationError("Viz datasource report path required")
        return VizDatasourceConfig(
            report_output_path=report_output_path,
            json_source_path=section.get('json_source_path'),
            base_url=section.get('base_url'),
            cookie=os.getenv('VIZ_DATASOURCE_COOKIE', section.get('cookie')),
            datasource_files_path=section.get('datasource_files_path') or 'datasources'
        )

    def get_smtp_config(self) -> Optional[SmtpConfig]:
        """Get mail settings, or None when mail is not configured"""
        section = self._section('smtp')
        if not section.get('server'):
            return None
        return SmtpConfig(
            server=section['server'],
            sender=section.get('sender') or section.get('from') or '',
            admin=section.get('admin') or '',
            port=int(section.get('port') or 25),
            username=section.get('username'),
            password=os.getenv('SMTP_PASSWORD', section.get('password')),
            use_tls=_as_bool(section.get('use_tls', False)),
            dev_test=section.get('dev_test')
        )

    def get_migration_config(self) -> MigrationConfig:
        """Get migration configuration"""
        projects = self.data.get('projects_to_migrate') or {}
        if not isinstance(projects, dict):
            raise ConfigurationError("projects_to_migrate must map project names to workbook lists")

        dry_run = self.data.get('dry_run', False)
        if os.getenv('TABLEAU_MIGRATOR_DRY_RUN') is not None:
            dry_run = os.getenv('TABLEAU_MIGRATOR_DRY_RUN')

        return MigrationConfig(
            source=self.get_site_config('source'),
            destination=self.get_site_config('destination'),
            viz_datasources=self.get_viz_datasource_config(),
            projects_to_migrate=OrderedDict((str(k), str(v or '')) for k, v in projects.items()),
            workbook_download_path=self.data.get('workbook_download_path') or 'workbooks',
            destination_root_project_name=self.data.get('destination_root_project_name'),
            default_owner_username=self.data.get('default_owner_username') or '',
            embedded_connection_credentials=CaseInsensitiveDict(
                self.data.get('embedded_connection_credentials') or {}
            ),
            workbooks_to_skip=list(self.data.get('workbooks_to_skip') or []),
            dry_run=_as_bool(dry_run),
            smtp=self.get_smtp_config()
        )
