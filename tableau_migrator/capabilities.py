"""Capability model for Tableau permissions.

Closed enumerations for resources, grantees and capabilities, the immutable
capability-role tables and the builders that turn a single grant (or a whole
role) into a permission payload for the REST API.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

__all__ = [
    'ValidationError', 'ResourceType', 'GranteeType', 'CapabilityMode', 'CapabilityName',
    'CapabilityRole', 'Capability', 'GranteeCapability', 'Permission',
    'WORKBOOK_VIEW', 'WORKBOOK_INTERACT', 'WORKBOOK_EDIT', 'DATASOURCE_USE', 'DATASOURCE_EDIT',
    'WORKBOOK_VIEWER', 'WORKBOOK_INTERACTOR', 'WORKBOOK_EDITOR',
    'DATASOURCE_CONNECTOR', 'DATASOURCE_EDITOR', 'ROLE_CAPABILITIES',
    'role_resource_type', 'build_permission', 'build_default_permission',
    'build_role_permission', 'validate_permission'
]


class ValidationError(Exception):
    """Raised when a permission or capability value is malformed"""


class _WireEnum(Enum):
    """Enum whose value is the string used on the wire."""

    @classmethod
    def parse(cls, value: Any):
        """Parse a wire string case-insensitively, failing on unknown values."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value.casefold() == value.strip().casefold():
                    return member
        raise ValidationError(f"Unknown {cls.__name__} value: {value!r}")

    @property
    def path_name(self) -> str:
        """Lower-case plural segment used in resource paths (e.g. 'workbooks')."""
        return f"{self.value.lower()}s"


class ResourceType(_WireEnum):
    DATASOURCE = "Datasource"
    PROJECT = "Project"
    WORKBOOK = "Workbook"


class GranteeType(_WireEnum):
    USER = "User"
    GROUP = "Group"


class CapabilityMode(_WireEnum):
    ALLOW = "Allow"
    DENY = "Deny"


class CapabilityName(_WireEnum):
    ADD_COMMENT = "AddComment"
    CHANGE_HIERARCHY = "ChangeHierarchy"
    CHANGE_PERMISSIONS = "ChangePermissions"
    CONNECT = "Connect"
    DELETE = "Delete"
    EXPORT_DATA = "ExportData"
    EXPORT_IMAGE = "ExportImage"
    EXPORT_XML = "ExportXml"
    FILTER = "Filter"
    INHERITED_PROJECT_LEADER = "InheritedProjectLeader"
    PROJECT_LEADER = "ProjectLeader"
    READ = "Read"
    SHARE_VIEW = "ShareView"
    VIEW_COMMENTS = "ViewComments"
    VIEW_UNDERLYING_DATA = "ViewUnderlyingData"
    WEB_AUTHORING = "WebAuthoring"
    WRITE = "Write"


class CapabilityRole(_WireEnum):
    WORKBOOK_VIEWER = "WorkbookViewer"
    WORKBOOK_INTERACTOR = "WorkbookInteractor"
    WORKBOOK_EDITOR = "WorkbookEditor"
    DATASOURCE_CONNECTOR = "DatasourceConnector"
    DATASOURCE_EDITOR = "DatasourceEditor"


# Capability groups
WORKBOOK_VIEW: FrozenSet[CapabilityName] = frozenset({
    CapabilityName.READ,
    CapabilityName.EXPORT_IMAGE,
    CapabilityName.EXPORT_DATA,
    CapabilityName.VIEW_COMMENTS,
    CapabilityName.ADD_COMMENT,
})
WORKBOOK_INTERACT: FrozenSet[CapabilityName] = frozenset({
    CapabilityName.FILTER,
    CapabilityName.VIEW_UNDERLYING_DATA,
    CapabilityName.SHARE_VIEW,
    CapabilityName.WEB_AUTHORING,
})
WORKBOOK_EDIT: FrozenSet[CapabilityName] = frozenset({
    CapabilityName.WRITE,
    CapabilityName.EXPORT_XML,
    CapabilityName.CHANGE_HIERARCHY,
    CapabilityName.DELETE,
    CapabilityName.CHANGE_PERMISSIONS,
})
DATASOURCE_USE: FrozenSet[CapabilityName] = frozenset({
    CapabilityName.READ,
    CapabilityName.CONNECT,
})
DATASOURCE_EDIT: FrozenSet[CapabilityName] = frozenset({
    CapabilityName.WRITE,
    CapabilityName.EXPORT_XML,
    CapabilityName.DELETE,
    CapabilityName.CHANGE_PERMISSIONS,
})

# Roles, each the union of the role below it and one more group
WORKBOOK_VIEWER = WORKBOOK_VIEW
WORKBOOK_INTERACTOR = WORKBOOK_VIEWER | WORKBOOK_INTERACT
WORKBOOK_EDITOR = WORKBOOK_INTERACTOR | WORKBOOK_EDIT
DATASOURCE_CONNECTOR = DATASOURCE_USE
DATASOURCE_EDITOR = DATASOURCE_CONNECTOR | DATASOURCE_EDIT

ROLE_CAPABILITIES: Mapping[CapabilityRole, FrozenSet[CapabilityName]] = MappingProxyType({
    CapabilityRole.WORKBOOK_VIEWER: WORKBOOK_VIEWER,
    CapabilityRole.WORKBOOK_INTERACTOR: WORKBOOK_INTERACTOR,
    CapabilityRole.WORKBOOK_EDITOR: WORKBOOK_EDITOR,
    CapabilityRole.DATASOURCE_CONNECTOR: DATASOURCE_CONNECTOR,
    CapabilityRole.DATASOURCE_EDITOR: DATASOURCE_EDITOR,
})


@dataclass(frozen=True)
class Capability:
    """A named permission flag with its Allow/Deny mode"""
    name: CapabilityName
    mode: CapabilityMode

    @classmethod
    def parse(cls, name: Any, mode: Any) -> 'Capability':
        return cls(CapabilityName.parse(name), CapabilityMode.parse(mode))

    def to_request(self) -> Dict[str, str]:
        return {'name': self.name.value, 'mode': self.mode.value}


@dataclass
class GranteeCapability:
    """Capabilities granted to exactly one user or group"""
    capabilities: List[Capability] = field(default_factory=list)
    user_id: Optional[str] = None
    group_id: Optional[str] = None

    @property
    def grantee_type(self) -> Optional[GranteeType]:
        if self.user_id and not self.group_id:
            return GranteeType.USER
        if self.group_id and not self.user_id:
            return GranteeType.GROUP
        return None

    @property
    def grantee_id(self) -> Optional[str]:
        return self.user_id or self.group_id

    def validate(self):
        if bool(self.user_id) == bool(self.group_id):
            raise ValidationError("Grantee capability must reference exactly one user or group")
        if not self.capabilities:
            raise ValidationError(f"Grantee capability for {self.grantee_id} has no capabilities")

    def to_request(self) -> Dict[str, Any]:
        self.validate()
        grantee_key = 'user' if self.user_id else 'group'
        return {
            grantee_key: {'id': self.grantee_id},
            'capabilities': {'capability': [c.to_request() for c in self.capabilities]}
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'GranteeCapability':
        capabilities = (data.get('capabilities') or {}).get('capability') or []
        if isinstance(capabilities, dict):
            capabilities = [capabilities]
        return cls(
            capabilities=[Capability.parse(c.get('name'), c.get('mode')) for c in capabilities],
            user_id=(data.get('user') or {}).get('id'),
            group_id=(data.get('group') or {}).get('id')
        )


@dataclass
class Permission:
    """Capability grants on one resource, or a project default template when no resource is set"""
    grantee_capabilities: List[GranteeCapability] = field(default_factory=list)
    project_id: Optional[str] = None
    workbook_id: Optional[str] = None
    datasource_id: Optional[str] = None

    def _resources(self) -> List[tuple]:
        return [(resource_type, resource_id) for resource_type, resource_id in (
            (ResourceType.DATASOURCE, self.datasource_id),
            (ResourceType.PROJECT, self.project_id),
            (ResourceType.WORKBOOK, self.workbook_id),
        ) if resource_id]

    @property
    def resource_type(self) -> Optional[ResourceType]:
        resources = self._resources()
        return resources[0][0] if len(resources) == 1 else None

    @property
    def resource_id(self) -> Optional[str]:
        resources = self._resources()
        return resources[0][1] if len(resources) == 1 else None

    @property
    def is_default(self) -> bool:
        return not self._resources()

    def to_request(self) -> Dict[str, Any]:
        """Serialize to the REST payload, validating its shape first."""
        validate_permission(self)
        payload: Dict[str, Any] = {}
        if not self.is_default:
            payload[self.resource_type.value.lower()] = {'id': self.resource_id}
        payload['granteeCapabilities'] = [g.to_request() for g in self.grantee_capabilities]
        return payload

    @classmethod
    def from_json(cls, data: Optional[Dict[str, Any]]) -> 'Permission':
        data = data or {}
        grantees = data.get('granteeCapabilities') or []
        if isinstance(grantees, dict):
            grantees = [grantees]
        return cls(
            grantee_capabilities=[GranteeCapability.from_json(g) for g in grantees],
            project_id=(data.get('project') or {}).get('id'),
            workbook_id=(data.get('workbook') or {}).get('id'),
            datasource_id=(data.get('datasource') or {}).get('id')
        )


def validate_permission(permission: Permission) -> None:
    if len(permission._resources()) > 1:
        raise ValidationError("Permission must reference at most one resource")
    if not permission.grantee_capabilities:
        raise ValidationError("Permission has no grantee capabilities")
    for grantee_capability in permission.grantee_capabilities:
        grantee_capability.validate()


def role_resource_type(role: CapabilityRole) -> ResourceType:
    """Resource type a capability role applies to, taken from the role name prefix."""
    matches = [r for r in ResourceType if role.value.lower().startswith(r.value.lower())]
    if len(matches) != 1:
        raise ValidationError(f"Cannot determine resource type for role {role.value}")
    return matches[0]


def _grantee_capability(grantee_type: GranteeType, grantee_id: str,
                        capabilities: Iterable[Capability]) -> GranteeCapability:
    grantee_type = GranteeType.parse(grantee_type)
    if not grantee_id:
        raise ValidationError("Grantee id is required")
    if grantee_type is GranteeType.USER:
        return GranteeCapability(capabilities=list(capabilities), user_id=grantee_id)
    return GranteeCapability(capabilities=list(capabilities), group_id=grantee_id)


def _scope(permission: Permission, resource_type: ResourceType, resource_id: str) -> Permission:
    resource_type = ResourceType.parse(resource_type)
    if not resource_id:
        raise ValidationError(f"{resource_type.value} id is required")
    if resource_type is ResourceType.DATASOURCE:
        permission.datasource_id = resource_id
    elif resource_type is ResourceType.PROJECT:
        permission.project_id = resource_id
    else:
        permission.workbook_id = resource_id
    return permission


def build_default_permission(grantee_type: GranteeType, grantee_id: str,
                             capability_name: CapabilityName,
                             capability_mode: CapabilityMode) -> Permission:
    """Single grant without a resource, for project default-permission templates."""
    capability = Capability(CapabilityName.parse(capability_name), CapabilityMode.parse(capability_mode))
    return Permission(grantee_capabilities=[_grantee_capability(grantee_type, grantee_id, [capability])])


def build_permission(resource_type: ResourceType, resource_id: str,
                     grantee_type: GranteeType, grantee_id: str,
                     capability_name: CapabilityName,
                     capability_mode: CapabilityMode) -> Permission:
    """Single grant scoped to a concrete resource."""
    permission = build_default_permission(grantee_type, grantee_id, capability_name, capability_mode)
    return _scope(permission, resource_type, resource_id)


def build_role_permission(grantee_type: GranteeType, grantee_id: str, role: CapabilityRole,
                          resource_id: Optional[str] = None,
                          mode: CapabilityMode = CapabilityMode.ALLOW) -> Permission:
    """Collapse every capability of a role into one grantee capability.

    With a resource id the permission is scoped to a resource of the role's
    resource type, otherwise it is a default-permission template.
    """
    role = CapabilityRole.parse(role)
    mode = CapabilityMode.parse(mode)
    capabilities = [Capability(name, mode) for name in sorted(ROLE_CAPABILITIES[role], key=lambda c: c.value)]
    permission = Permission(grantee_capabilities=[_grantee_capability(grantee_type, grantee_id, capabilities)])
    if resource_id:
        _scope(permission, role_resource_type(role), resource_id)
    return permission
