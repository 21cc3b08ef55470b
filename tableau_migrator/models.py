"""Data models for Tableau Migrator.

Flat records for the REST resources. Cross references are id strings, never
nested objects, so the same record shape serves both sites.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .common.helpers import equals_ignore_case

__all__ = [
    # Constants
    'CONNECTION_TYPE_MYSQL', 'CONNECTION_TYPE_NETEZZA', 'CONNECTION_TYPE_ORACLE',
    'CONNECTION_TYPE_SQLPROXY', 'CONNECTION_TYPE_SQLSERVER',
    'LEGACY_SITE_ROLE_MAP', 'normalize_site_role',
    # Data models
    'Pagination', 'FileBytes', 'Project', 'Domain', 'User', 'Group', 'ConnectionCredentials',
    'Connection', 'Workbook', 'Datasource'
]

CONNECTION_TYPE_MYSQL = "mysql"
CONNECTION_TYPE_NETEZZA = "netezza"
CONNECTION_TYPE_ORACLE = "oracle"
CONNECTION_TYPE_SQLPROXY = "sqlproxy"
CONNECTION_TYPE_SQLSERVER = "sqlserver"

# Legacy site roles: Interactor, Publisher, ServerAdministrator, SiteAdministrator, Viewer
# 2018 site roles: Creator, Explorer, ExplorerCanPublish, ReadOnly, ServerAdministrator,
# SiteAdministratorExplorer, SiteAdministratorCreator, Unlicensed, Viewer
SITE_ROLE_LEGACY_INTERACTOR = "Interactor"
SITE_ROLE_LEGACY_PUBLISHER = "Publisher"
SITE_ROLE_LEGACY_SITE_ADMIN = "SiteAdministrator"
SITE_ROLE_LEGACY_VIEWER = "Viewer"

SITE_ROLE_EXPLORER = "Explorer"
SITE_ROLE_EXPLORER_CAN_PUBLISH = "ExplorerCanPublish"
SITE_ROLE_SITE_ADMIN_EXPLORER = "SiteAdministratorExplorer"
SITE_ROLE_READ_ONLY = "ReadOnly"

SITE_ROLES_2018 = (
    "Creator", SITE_ROLE_EXPLORER, SITE_ROLE_EXPLORER_CAN_PUBLISH, SITE_ROLE_READ_ONLY,
    "ServerAdministrator", SITE_ROLE_SITE_ADMIN_EXPLORER, "SiteAdministratorCreator",
    "Unlicensed", "Viewer",
)

LEGACY_SITE_ROLE_MAP = {
    SITE_ROLE_LEGACY_INTERACTOR: SITE_ROLE_EXPLORER,
    SITE_ROLE_LEGACY_PUBLISHER: SITE_ROLE_EXPLORER_CAN_PUBLISH,
    SITE_ROLE_LEGACY_SITE_ADMIN: SITE_ROLE_SITE_ADMIN_EXPLORER,
    SITE_ROLE_LEGACY_VIEWER: SITE_ROLE_READ_ONLY,
}


def normalize_site_role(site_role: Optional[str]) -> Optional[str]:
    """Translate a legacy site role to its 2018 equivalent."""
    return LEGACY_SITE_ROLE_MAP.get(site_role, site_role)


def _ref_id(data: Dict[str, Any], key: str) -> Optional[str]:
    return (data.get(key) or {}).get('id')


@dataclass
class Pagination:
    page_number: int = 1
    page_size: int = 0
    total_available: int = 0

    @classmethod
    def from_json(cls, data: Optional[Dict[str, Any]]) -> 'Pagination':
        data = data or {}
        return cls(
            page_number=int(data.get('pageNumber') or 1),
            page_size=int(data.get('pageSize') or 0),
            total_available=int(data.get('totalAvailable') or 0)
        )


@dataclass
class FileBytes:
    """Content downloaded from or uploaded to the server"""
    name: str
    content: bytes
    content_type: str = "application/octet-stream"
    part_name: Optional[str] = None


@dataclass
class Project:
    id: Optional[str]
    name: str
    description: Optional[str] = None
    parent_project_id: Optional[str] = None
    content_permissions: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'Project':
        return cls(
            id=data.get('id'),
            name=data.get('name'),
            description=data.get('description'),
            parent_project_id=data.get('parentProjectId'),
            content_permissions=data.get('contentPermissions')
        )

    def to_request(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'contentPermissions': self.content_permissions,
            'parentProjectId': self.parent_project_id
        }


@dataclass
class Domain:
    name: Optional[str] = None

    @classmethod
    def from_json(cls, data: Optional[Dict[str, Any]]) -> 'Domain':
        return cls(name=(data or {}).get('name'))


@dataclass
class User:
    """Site user; identity across sites is (name, domain), never id"""
    id: Optional[str]
    name: str
    site_role: Optional[str] = None
    full_name: Optional[str] = None
    domain_name: Optional[str] = None

    @property
    def user_principal_name(self) -> str:
        return f"{self.name or ''}@{self.domain_name or ''}"

    @property
    def down_level_logon_name(self) -> str:
        return f"{self.domain_name or ''}\\{self.name or ''}".lstrip('\\')

    def same_identity(self, other: 'User') -> bool:
        return (equals_ignore_case(self.name or '', other.name or '') and
                equals_ignore_case(self.domain_name or '', other.domain_name or ''))

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            id=data.get('id'),
            name=data.get('name'),
            site_role=data.get('siteRole'),
            full_name=data.get('fullName'),
            domain_name=Domain.from_json(data.get('domain')).name
        )

    def to_request(self) -> Dict[str, Any]:
        return {'name': self.name, 'siteRole': self.site_role}


@dataclass
class Group:
    id: Optional[str]
    name: str
    domain_name: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'Group':
        return cls(
            id=data.get('id'),
            name=data.get('name'),
            domain_name=Domain.from_json(data.get('domain')).name
        )


@dataclass
class ConnectionCredentials:
    name: Optional[str]
    password: Optional[str]
    embed: bool = True

    def to_request(self) -> Dict[str, Any]:
        return {'name': self.name, 'password': self.password, 'embed': bool(self.embed)}


@dataclass
class Connection:
    id: Optional[str]
    type: Optional[str] = None
    server_address: Optional[str] = None
    server_port: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    embed_password: bool = False
    credentials: Optional[ConnectionCredentials] = None
    datasource_id: Optional[str] = None
    datasource_name: Optional[str] = None

    @property
    def is_proxy(self) -> bool:
        """Published datasource connection rather than a direct embedded one"""
        return equals_ignore_case(self.type or '', CONNECTION_TYPE_SQLPROXY)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'Connection':
        datasource = data.get('datasource') or {}
        return cls(
            id=data.get('id'),
            type=data.get('type'),
            server_address=data.get('serverAddress'),
            server_port=data.get('serverPort'),
            username=data.get('userName'),
            password=data.get('password'),
            embed_password=bool(data.get('embedPassword', False)),
            datasource_id=datasource.get('id'),
            datasource_name=datasource.get('name')
        )

    def to_request(self) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            'serverAddress': self.server_address,
            'serverPort': self.server_port,
            'connectionCredentials': self.credentials.to_request() if self.credentials else None
        }
        if self.datasource_id:
            request['datasource'] = {'id': self.datasource_id, 'name': self.datasource_name}
        return request


def _parse_connections(data: Dict[str, Any]) -> List[Connection]:
    connections = (data.get('connections') or {}).get('connection') or []
    return [Connection.from_json(c) for c in connections]


@dataclass
class Workbook:
    id: Optional[str]
    name: str
    project_id: Optional[str] = None
    owner_id: Optional[str] = None
    content_url: Optional[str] = None
    connections: List[Connection] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'Workbook':
        return cls(
            id=data.get('id'),
            name=data.get('name'),
            project_id=_ref_id(data, 'project'),
            owner_id=_ref_id(data, 'owner'),
            content_url=data.get('contentUrl'),
            connections=_parse_connections(data)
        )

    def to_request(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'project': {'id': self.project_id},
            'connections': {'connection': [c.to_request() for c in self.connections]}
        }


@dataclass
class Datasource:
    id: Optional[str]
    name: str
    type: Optional[str] = None
    project_id: Optional[str] = None
    owner_id: Optional[str] = None
    content_url: Optional[str] = None
    connections: List[Connection] = field(default_factory=list)
    credentials: Optional[ConnectionCredentials] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'Datasource':
        return cls(
            id=data.get('id'),
            name=data.get('name'),
            type=data.get('type'),
            project_id=_ref_id(data, 'project'),
            owner_id=_ref_id(data, 'owner'),
            content_url=data.get('contentUrl'),
            connections=_parse_connections(data)
        )

    def to_request(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'connectionCredentials': self.credentials.to_request() if self.credentials else None,
            'project': {'id': self.project_id}
        }
