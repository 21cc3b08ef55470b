"""Explicit and default permission operations against one Tableau site.

Adds are submitted as one PUT carrying the whole permission; the server merges
the grants. Deletes have no bulk form, so every (grantee, capability) pair is
removed with its own call and a failing pair does not stop the others.
"""

import logging
from typing import List, Tuple

from ..capabilities import (
    Capability, CapabilityMode, CapabilityName, CapabilityRole, GranteeType, Permission,
    ResourceType, ValidationError, build_default_permission, build_permission,
    build_role_permission, role_resource_type, validate_permission
)
from ..client import TableauClient
from ..common.log_utils import log_error

__all__ = ['PermissionService']

FailedDelete = Tuple[str, Capability]


class PermissionService:
    """Reads, adds and deletes capability grants"""

    def __init__(self, client: TableauClient):
        self.client = client
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _permissions_path(resource_type: ResourceType, resource_id: str) -> str:
        return f"{ResourceType.parse(resource_type).path_name}/{resource_id}/permissions"

    @staticmethod
    def _default_permissions_path(project_id: str, resource_type: ResourceType) -> str:
        return f"projects/{project_id}/default-permissions/{ResourceType.parse(resource_type).path_name}"

    def get_permissions(self, resource_type: ResourceType, resource_id: str) -> Permission:
        """Get the explicit permissions of a resource"""
        data = self.client.get(self._permissions_path(resource_type, resource_id))
        permission = Permission.from_json(data.get('permissions'))
        self.logger.debug(f"{len(permission.grantee_capabilities)} grantee capabilities found "
                          f"on {ResourceType.parse(resource_type).value} {resource_id}")
        return permission

    def get_default_permissions(self, project_id: str, resource_type: ResourceType) -> Permission:
        """Get a project's default permissions for one resource type"""
        data = self.client.get(self._default_permissions_path(project_id, resource_type))
        permission = Permission.from_json(data.get('permissions'))
        self.logger.debug(f"{len(permission.grantee_capabilities)} default grantee capabilities found "
                          f"on project {project_id} for {ResourceType.parse(resource_type).value}")
        return permission

    def add_permission(self, permission: Permission) -> Permission:
        """Submit a permission scoped to its resource"""
        validate_permission(permission)
        if permission.is_default:
            raise ValidationError("Explicit permission must reference a resource")
        path = self._permissions_path(permission.resource_type, permission.resource_id)
        data = self.client.put(path, {'permissions': permission.to_request()})
        return Permission.from_json(data.get('permissions'))

    def add_default_permission(self, project_id: str, resource_type: ResourceType,
                               permission: Permission) -> Permission:
        """Submit a permission as a project default template"""
        path = self._default_permissions_path(project_id, resource_type)
        data = self.client.put(path, {'permissions': permission.to_request()})
        return Permission.from_json(data.get('permissions'))

    def add_capability(self, resource_type: ResourceType, resource_id: str,
                       grantee_type: GranteeType, grantee_id: str,
                       capability_name: CapabilityName, capability_mode: CapabilityMode) -> Permission:
        """Grant one capability on a resource"""
        self.logger.debug(f"Adding {capability_name} {capability_mode} for {grantee_type} {grantee_id} "
                          f"on {resource_type} {resource_id}")
        permission = build_permission(resource_type, resource_id, grantee_type, grantee_id,
                                      capability_name, capability_mode)
        return self.add_permission(permission)

    def add_default_capability(self, project_id: str, resource_type: ResourceType,
                               grantee_type: GranteeType, grantee_id: str,
                               capability_name: CapabilityName,
                               capability_mode: CapabilityMode) -> Permission:
        """Grant one capability in a project default template"""
        self.logger.debug(f"Adding default {capability_name} {capability_mode} for {grantee_type} "
                          f"{grantee_id} on project {project_id} ({resource_type})")
        permission = build_default_permission(grantee_type, grantee_id, capability_name, capability_mode)
        return self.add_default_permission(project_id, resource_type, permission)

    def add_capability_role_permissions(self, resource_type: ResourceType, resource_id: str,
                                        grantee_type: GranteeType, grantee_id: str,
                                        role: CapabilityRole) -> Permission:
        """Grant every capability of a role on a resource of the role's type"""
        role = CapabilityRole.parse(role)
        resource_type = ResourceType.parse(resource_type)
        if role_resource_type(role) is not resource_type:
            raise ValidationError(f"Role {role.value} does not apply to {resource_type.value} resources")
        permission = build_role_permission(grantee_type, grantee_id, role, resource_id)
        return self.add_permission(permission)

    def add_default_capability_role_permissions(self, project_id: str, grantee_type: GranteeType,
                                                grantee_id: str, role: CapabilityRole) -> Permission:
        """Grant every capability of a role in the matching project default template"""
        role = CapabilityRole.parse(role)
        permission = build_role_permission(grantee_type, grantee_id, role)
        return self.add_default_permission(project_id, role_resource_type(role), permission)

    def delete_permission(self, permission: Permission) -> List[FailedDelete]:
        """Delete each grant of a resource permission; returns the pairs that failed"""
        validate_permission(permission)
        if permission.is_default:
            raise ValidationError("Explicit permission must reference a resource")
        base_path = self._permissions_path(permission.resource_type, permission.resource_id)
        return self._delete_grants(base_path, permission)

    def delete_default_permission(self, project_id: str, resource_type: ResourceType,
                                  permission: Permission) -> List[FailedDelete]:
        """Delete each grant of a project default template; returns the pairs that failed"""
        validate_permission(permission)
        base_path = self._default_permissions_path(project_id, resource_type)
        return self._delete_grants(base_path, permission)

    def _delete_grants(self, base_path: str, permission: Permission) -> List[FailedDelete]:
        failures: List[FailedDelete] = []
        for grantee_capability in permission.grantee_capabilities:
            grantee_path = f"{grantee_capability.grantee_type.path_name}/{grantee_capability.grantee_id}"
            for capability in grantee_capability.capabilities:
                path = f"{base_path}/{grantee_path}/{capability.name.value}/{capability.mode.value}"
                try:
                    self.client.delete(path)
                except Exception as e:
                    log_error(f"Failed to delete {capability.name.value} {capability.mode.value} "
                              f"for {grantee_capability.grantee_id}", e)
                    failures.append((grantee_capability.grantee_id, capability))
        return failures

    def delete_capability(self, resource_type: ResourceType, resource_id: str,
                          grantee_type: GranteeType, grantee_id: str,
                          capability_name: CapabilityName,
                          capability_mode: CapabilityMode) -> List[FailedDelete]:
        """Revoke one capability on a resource"""
        permission = build_permission(resource_type, resource_id, grantee_type, grantee_id,
                                      capability_name, capability_mode)
        return self.delete_permission(permission)

    def delete_default_capability(self, project_id: str, resource_type: ResourceType,
                                  grantee_type: GranteeType, grantee_id: str,
                                  capability_name: CapabilityName,
                                  capability_mode: CapabilityMode) -> List[FailedDelete]:
        """Revoke one capability from a project default template"""
        permission = build_default_permission(grantee_type, grantee_id, capability_name, capability_mode)
        return self.delete_default_permission(project_id, resource_type, permission)

    def delete_capability_role_permissions(self, resource_type: ResourceType, resource_id: str,
                                           grantee_type: GranteeType, grantee_id: str,
                                           role: CapabilityRole) -> List[FailedDelete]:
        """Revoke every capability of a role on a resource"""
        role = CapabilityRole.parse(role)
        resource_type = ResourceType.parse(resource_type)
        if role_resource_type(role) is not resource_type:
            raise ValidationError(f"Role {role.value} does not apply to {resource_type.value} resources")
        permission = build_role_permission(grantee_type, grantee_id, role, resource_id)
        return self.delete_permission(permission)

    def delete_default_capability_role_permissions(self, project_id: str, grantee_type: GranteeType,
                                                   grantee_id: str,
                                                   role: CapabilityRole) -> List[FailedDelete]:
        """Revoke every capability of a role from the matching project default template"""
        role = CapabilityRole.parse(role)
        permission = build_role_permission(grantee_type, grantee_id, role)
        return self.delete_default_permission(project_id, role_resource_type(role), permission)
