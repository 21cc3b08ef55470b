"""Migration of projects from a source Tableau site to a destination site.

For every configured project the migrator reconciles, in order: the project
itself, the users and groups referenced by its permissions, its explicit and
default permissions, and finally its workbooks together with the published
datasources they connect to. Work is strictly sequential. Nothing is rolled
back: every mutation that succeeded before a failure stays applied.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .capabilities import GranteeType, Permission, ResourceType
from .common.helpers import equals_ignore_case, get_valid_file_name, split_identity
from .common.log_utils import (
    log_debug, log_error, log_fatal, log_file_downloaded, log_file_saved, log_info, log_warning
)
from .config import MigrationConfig, parse_workbook_list
from .credentials import VizDatasourceStore
from .models import ConnectionCredentials, Datasource, Project, User, Workbook
from .services import SiteServices
from .workbook_xml import rewrite_connection_servers

__all__ = ['MigrationError', 'MigrationSummary', 'TableauMigrator', 'DEFAULT_PERMISSION_RESOURCE_TYPES']

# Resource types whose project default permissions are migrated, in order
DEFAULT_PERMISSION_RESOURCE_TYPES = (ResourceType.DATASOURCE, ResourceType.WORKBOOK)

LOCALHOST = 'localhost'
SETTLE_SECONDS = 1


class MigrationError(Exception):
    """Raised when the migration cannot safely continue"""


@dataclass
class MigrationSummary:
    """Counters of a run; under dry run they count the changes that would be made"""
    dry_run: bool = False
    projects_migrated: int = 0
    projects_skipped: int = 0
    users_created: int = 0
    groups_created: int = 0
    members_added: int = 0
    permissions_added: int = 0
    workbooks_downloaded: int = 0
    workbooks_published: int = 0
    workbooks_skipped: int = 0
    workbooks_failed: int = 0
    datasources_published: int = 0
    failures: List[str] = field(default_factory=list)

    def record_failure(self, message: str):
        self.failures.append(message)

    def to_text(self) -> str:
        """Plain text report for logs and mail"""
        lines = ["Tableau migration summary" + (" (dry run)" if self.dry_run else ""), ""]
        for name in ('projects_migrated', 'projects_skipped', 'users_created', 'groups_created',
                     'members_added', 'permissions_added', 'workbooks_downloaded', 'workbooks_published',
                     'workbooks_skipped', 'workbooks_failed', 'datasources_published'):
            lines.append(f"{name.replace('_', ' ').capitalize()}: {getattr(self, name)}")
        if self.failures:
            lines.append("")
            lines.append("Failures:")
            lines.extend(f"  - {failure}" for failure in self.failures)
        return "\n".join(lines)


class TableauMigrator:
    """Migrates configured projects between two sites"""

    def __init__(self, config: MigrationConfig, source: SiteServices, destination: SiteServices,
                 store: VizDatasourceStore, sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.source = source
        self.destination = destination
        self.store = store
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)
        self.summary = MigrationSummary(dry_run=config.dry_run)
        self._default_owner_resolved = False
        self._planned_groups = set()
        self._default_owner: Optional[User] = None

    def __enter__(self) -> 'TableauMigrator':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        """Sign out of both sites"""
        for services in (self.source, self.destination):
            if services.client.is_signed_in:
                services.client.sign_out()

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    @property
    def source_server(self) -> str:
        return self.source.server_host or ''

    @property
    def destination_server(self) -> str:
        return self.destination.server_host or ''

    def migrate_projects(self) -> MigrationSummary:
        """Run the migration of every configured project"""
        log_info(f"Starting migration from {self.config.source.base_url} to "
                 f"{self.config.destination.base_url} "
                 f"(root project '{self.config.destination_root_project_name or ''}')")
        if self.dry_run:
            log_warning("Dry run specified, no changes will be made")

        root_project = self._resolve_root_project()

        for project_name, workbook_list in self.config.projects_to_migrate.items():
            allow_list = parse_workbook_list(workbook_list)
            log_info(f"Beginning migration of project '{project_name}'")

            source_project = self.source.projects.find_project(project_name)
            if source_project is None:
                log_warning(f"Project '{project_name}' not found in Tableau source, skipping")
                self.summary.projects_skipped += 1
                continue

            destination_project = self._resolve_destination_project(source_project, root_project)

            self.migrate_project_users(source_project)
            self.migrate_project_groups(source_project)
            self.migrate_project_permissions(source_project, destination_project)
            for resource_type in DEFAULT_PERMISSION_RESOURCE_TYPES:
                self.migrate_project_default_permissions(source_project, destination_project, resource_type)

            # passwords may have been filled in since the run started
            self.store.load_report()

            self.download_project_workbooks(source_project)
            self.migrate_project_workbooks(source_project, destination_project, allow_list)

            self.summary.projects_migrated += 1
            log_info(f"Completed migration of project {project_name}")

        log_info("Migration complete")
        return self.summary

    def _resolve_root_project(self) -> Optional[Project]:
        name = self.config.destination_root_project_name
        if not name:
            return None
        root_project = self.destination.projects.find_project(name)
        if root_project is None:
            log_debug(f"Destination root project '{name}' not found")
        else:
            log_debug(f"Migrating to destination root project '{name}' ({root_project.id})")
        return root_project

    def _resolve_destination_project(self, source_project: Project,
                                     root_project: Optional[Project]) -> Optional[Project]:
        destination_project = self.destination.projects.find_project(source_project.name)
        if destination_project is not None:
            log_info(f"Project '{source_project.name}' found in Tableau destination")
            return destination_project

        log_info(f"Project '{source_project.name}' not found in Tableau destination, creating")
        if self.dry_run:
            return None
        return self.destination.projects.create_project(
            source_project.name,
            source_project.description,
            root_project.id if root_project else None
        )

    def _get_project_permissions(self, services: SiteServices, project_id: str) -> List[Permission]:
        """Explicit permissions plus the datasource and workbook default templates"""
        permissions = [services.permissions.get_permissions(ResourceType.PROJECT, project_id)]
        for resource_type in DEFAULT_PERMISSION_RESOURCE_TYPES:
            permissions.append(services.permissions.get_default_permissions(project_id, resource_type))
        return permissions

    @staticmethod
    def _get_users_with_domain(services: SiteServices, group_id: str) -> Dict[str, User]:
        # listing does not include the domain, so each member is fetched by id
        return OrderedDict((u.id, services.users.get_user(u.id)) for u in services.users.get_users(group_id))

    def _get_project_users(self, project_id: str) -> Dict[str, User]:
        users: Dict[str, User] = OrderedDict()
        for permission in self._get_project_permissions(self.source, project_id):
            for grantee_capability in permission.grantee_capabilities:
                if grantee_capability.grantee_type is GranteeType.GROUP:
                    for member in self.source.users.get_users(grantee_capability.group_id):
                        if member.id not in users:
                            users[member.id] = self.source.users.get_user(member.id)
                elif grantee_capability.grantee_type is GranteeType.USER and \
                        grantee_capability.user_id not in users:
                    users[grantee_capability.user_id] = self.source.users.get_user(grantee_capability.user_id)
        return users

    def _get_project_groups(self, project_id: str):
        groups = OrderedDict()
        for permission in self._get_project_permissions(self.source, project_id):
            for grantee_capability in permission.grantee_capabilities:
                if grantee_capability.grantee_type is GranteeType.GROUP:
                    group = self.source.groups.get_group(grantee_capability.group_id)
                    if group is None:
                        log_fatal(f"Source group not found: {grantee_capability.group_id}")
                        raise MigrationError(f"Source group not found: {grantee_capability.group_id}")
                    groups[group.id] = group
        return groups

    def migrate_project_users(self, source_project: Project):
        """Create the users referenced by a project that the destination lacks"""
        log_debug(f"Migrating users for project {source_project.name}")

        creations_issued = 0
        for source_user in self._get_project_users(source_project.id).values():
            destination_user = self.destination.users.find_user(source_user.name, source_user.domain_name)
            if destination_user is not None:
                log_debug(f"User {source_user.user_principal_name} found in destination site")
                continue

            log_debug(f"Creating user {source_user.user_principal_name}")
            if self.dry_run:
                self.summary.users_created += 1
                continue
            creations_issued += 1
            try:
                new_user = self.destination.users.add_user_to_site(
                    source_user.down_level_logon_name, source_user.site_role
                )
                self.summary.users_created += 1
                log_debug(f"Created user {new_user.user_principal_name} ({new_user.id})")
            except Exception as e:
                self.summary.record_failure(f"User {source_user.down_level_logon_name}: {e}")
                log_error(f"Unable to create user {source_user.down_level_logon_name}", e)

        # new users are not visible to reads right away
        if creations_issued:
            self.sleep(SETTLE_SECONDS)

    def migrate_project_groups(self, source_project: Project):
        """Create missing groups and add the source members they lack.

        Membership is only ever added; destination members missing from the
        source group are kept.
        """
        log_debug(f"Migrating groups for project {source_project.name}")

        for source_group in self._get_project_groups(source_project.id).values():
            destination_group = self.destination.groups.find_group(source_group.name)
            if destination_group is None:
                log_debug(f"Creating group {source_group.name} in destination site")
                if self.dry_run:
                    self._planned_groups.add(source_group.name.casefold())
                else:
                    try:
                        destination_group = self.destination.groups.create_group(source_group.name)
                    except Exception as e:
                        self.summary.record_failure(f"Group {source_group.name}: {e}")
                        log_error(f"Unable to create group {source_group.name}", e)
                        continue
                    self.sleep(SETTLE_SECONDS)
                self.summary.groups_created += 1
            else:
                log_warning(f"Group {source_group.name} found in destination site ({destination_group.id})")

            self._sync_group_members(source_group, destination_group)

    def _sync_group_members(self, source_group, destination_group):
        source_members = self._get_users_with_domain(self.source, source_group.id)
        destination_members = (
            self._get_users_with_domain(self.destination, destination_group.id) if destination_group else {}
        )
        group_name = destination_group.name if destination_group else source_group.name

        for source_member in source_members.values():
            if any(equals_ignore_case(m.user_principal_name, source_member.user_principal_name)
                   for m in destination_members.values()):
                continue

            destination_user = self.destination.users.find_user(source_member.name, source_member.domain_name)
            if destination_user is None:
                log_warning(f"User {source_member.down_level_logon_name} not found in destination, "
                            f"not added to group {group_name}")
                continue

            log_debug(f"Adding user {destination_user.user_principal_name} to {group_name}")
            if self.dry_run:
                self.summary.members_added += 1
                continue
            try:
                self.destination.groups.add_user_to_group(destination_group.id, destination_user.id)
                self.summary.members_added += 1
                log_debug(f"Added user {destination_user.user_principal_name} to {group_name}")
            except Exception as e:
                self.summary.record_failure(f"Group {group_name} member {destination_user.user_principal_name}: {e}")
                log_error(f"Unable to add user {destination_user.user_principal_name} to group {group_name}", e)

    def _resolve_destination_grantee(self, grantee_capability, destination_groups) -> Optional[str]:
        if grantee_capability.grantee_type is GranteeType.USER:
            source_user = self.source.users.get_user(grantee_capability.user_id)
            destination_user = self.destination.users.find_user(source_user.name, source_user.domain_name)
            if destination_user is None:
                log_warning(f"User {source_user.down_level_logon_name} not found in destination, "
                            f"permissions not migrated")
                return None
            return destination_user.id

        source_group = self.source.groups.get_group(grantee_capability.group_id)
        if source_group is None:
            log_fatal(f"Source group not found: {grantee_capability.group_id}")
            raise MigrationError(f"Source group not found: {grantee_capability.group_id}")
        matches = [g for g in destination_groups if equals_ignore_case(g.name, source_group.name)]
        if not matches and self.dry_run and source_group.name.casefold() in self._planned_groups:
            return f"<new group {source_group.name}>"
        if len(matches) != 1:
            log_fatal(f"Destination group not found: {source_group.name}")
            raise MigrationError(f"Destination group not found: {source_group.name}")
        return matches[0].id

    def migrate_project_permissions(self, source_project: Project, destination_project: Optional[Project]):
        """Replicate the explicit permissions of a project"""
        log_debug(f"Migrating permissions for project {source_project.name}")
        source_permission = self.source.permissions.get_permissions(ResourceType.PROJECT, source_project.id)
        destination_groups = self.destination.groups.get_groups()

        if not source_permission.grantee_capabilities:
            log_debug("No grantee capabilities found")
            return

        for grantee_capability in source_permission.grantee_capabilities:
            grantee_id = self._resolve_destination_grantee(grantee_capability, destination_groups)
            if grantee_id is None:
                continue
            for capability in grantee_capability.capabilities:
                log_debug(f"Adding permission for {grantee_capability.grantee_type.value} {grantee_id}: "
                          f"{capability.mode.value} {capability.name.value}")
                self.summary.permissions_added += 1
                if not self.dry_run:
                    self.destination.permissions.add_capability(
                        ResourceType.PROJECT, destination_project.id, grantee_capability.grantee_type,
                        grantee_id, capability.name, capability.mode
                    )

    def migrate_project_default_permissions(self, source_project: Project,
                                            destination_project: Optional[Project],
                                            resource_type: ResourceType):
        """Replicate one default-permission template of a project"""
        log_debug(f"Migrating default {resource_type.value} permissions for project {source_project.name}")
        source_permission = self.source.permissions.get_default_permissions(source_project.id, resource_type)
        destination_groups = self.destination.groups.get_groups()

        if not source_permission.grantee_capabilities:
            log_debug("No grantee capabilities found")
            return

        for grantee_capability in source_permission.grantee_capabilities:
            grantee_id = self._resolve_destination_grantee(grantee_capability, destination_groups)
            if grantee_id is None:
                continue
            for capability in grantee_capability.capabilities:
                log_debug(f"Adding default permission for {grantee_capability.grantee_type.value} "
                          f"{grantee_id}: {capability.mode.value} {capability.name.value}")
                self.summary.permissions_added += 1
                if not self.dry_run:
                    self.destination.permissions.add_default_capability(
                        destination_project.id, resource_type, grantee_capability.grantee_type,
                        grantee_id, capability.name, capability.mode
                    )

    def download_project_workbooks(self, source_project: Project) -> List[Path]:
        """Archive every workbook of the source project locally"""
        log_debug(f"Downloading workbooks for project {source_project.name}")
        download_path = Path(self.config.workbook_download_path)
        download_path.mkdir(parents=True, exist_ok=True)

        saved = []
        for workbook in self.source.workbooks.get_project_workbooks(source_project.id):
            log_debug(f"Downloading workbook '{workbook.name}'")
            try:
                path = self.source.workbooks.download_workbook(
                    workbook.id, str(download_path), get_valid_file_name(workbook.name) + '.twb'
                )
            except Exception as e:
                self.summary.record_failure(f"Download of workbook {workbook.name}: {e}")
                log_error(f"Error downloading workbook {workbook.name}", e)
                continue
            log_file_downloaded(str(path), workbook.name)
            self.summary.workbooks_downloaded += 1
            saved.append(path)

        log_debug(f"Downloaded workbooks for project {source_project.name}")
        return saved

    def _is_selected(self, workbook_name: str, allow_list: List[str]) -> bool:
        name = (workbook_name or '').strip()
        if any(equals_ignore_case(name, skipped.strip()) for skipped in self.config.workbooks_to_skip):
            return False
        return '*' in allow_list or any(equals_ignore_case(name, allowed) for allowed in allow_list)

    def _resolve_default_owner(self) -> Optional[User]:
        if not self._default_owner_resolved:
            name, domain = split_identity(self.config.default_owner_username)
            self._default_owner = self.destination.users.find_user(name, domain or None) if name else None
            if self._default_owner is None:
                log_warning(f"Default owner '{self.config.default_owner_username}' not found in destination")
            self._default_owner_resolved = True
        return self._default_owner

    def _resolve_owner(self, workbook: Workbook) -> Optional[User]:
        if workbook.owner_id:
            source_owner = self.source.users.get_user(workbook.owner_id)
            owner = self.destination.users.find_user(source_owner.name, source_owner.domain_name)
            if owner is not None:
                return owner
            log_debug(f"Owner {source_owner.down_level_logon_name} not found in destination, using default owner")
        return self._resolve_default_owner()

    def migrate_project_workbooks(self, source_project: Project, destination_project: Optional[Project],
                                  allow_list: List[str]):
        """Publish the selected workbooks of a project to the destination"""
        log_debug(f"Migrating workbooks for project '{source_project.name}': '{', '.join(allow_list)}'")
        destination_project_id = destination_project.id if destination_project else None

        for source_workbook in self.source.workbooks.get_project_workbooks(source_project.id):
            if not self._is_selected(source_workbook.name, allow_list):
                log_debug(f"Skipping workbook {source_workbook.name}")
                self.summary.workbooks_skipped += 1
                continue

            try:
                workbook = self.source.workbooks.get_workbook(source_workbook.id, include_connections=True)

                if self._workbook_exists(source_workbook.name, destination_project_id):
                    log_debug(f"Workbook '{source_workbook.name}' already exists in destination, skipping")
                    self.summary.workbooks_skipped += 1
                    continue

                owner = self._resolve_owner(workbook)
                if owner is None:
                    log_error(f"Error, owner of workbook {source_workbook.name} not found in destination")
                    self.summary.workbooks_failed += 1
                    self.summary.record_failure(f"Workbook {source_workbook.name}: owner not found in destination")
                    continue

                log_debug(f"Publishing workbook '{source_workbook.name}'")
                self.migrate_workbook(workbook, destination_project_id, owner)
                self.summary.workbooks_published += 1
                log_debug(f"Published workbook '{source_workbook.name}'")
            except Exception as e:
                self.summary.workbooks_failed += 1
                self.summary.record_failure(f"Workbook {source_workbook.name}: {e}")
                log_error(f"Error publishing workbook {source_workbook.name}", e)

    def _workbook_exists(self, name: str, destination_project_id: Optional[str]) -> bool:
        """Whether a workbook of that name is already in the destination project"""
        same_name = [w for w in self.destination.workbooks.find_workbooks(name) if equals_ignore_case(w.name, name)]
        if destination_project_id and any(w.project_id == destination_project_id for w in same_name):
            return True
        for other in same_name:
            log_warning(f"Workbook '{name}' found in project {other.project_id}")
        return False

    def migrate_workbook(self, workbook: Workbook, destination_project_id: Optional[str],
                         owner: User) -> Optional[Workbook]:
        """Rewrite the connections and content of one workbook and publish it.

        Returns the published workbook, or None under dry run.
        """
        log_debug(f"Migrating workbook {workbook.name}")

        for connection in workbook.connections:
            if connection.is_proxy:
                self._migrate_proxy_connection(connection, destination_project_id)
            elif (connection.username or '').strip():
                connection.credentials = ConnectionCredentials(
                    name=connection.username,
                    password=self._get_connection_password(connection.username),
                    embed=True
                )
            else:
                raise MigrationError("Workbook connection not sqlproxy but missing username")

        file_bytes = self.source.workbooks.download_workbook_bytes(workbook.id)
        content, replaced = rewrite_connection_servers(
            file_bytes.content, self.source_server, self.destination_server, (LOCALHOST,)
        )
        log_debug(f"Replaced {replaced} connection servers with {self.destination_server} in workbook")
        file_bytes.content = content

        save_path = Path(self.config.workbook_download_path) / f"{get_valid_file_name(workbook.name)}_publish.twb"
        save_path.parent.mkdir(parents=True, exist_ok=True)
        save_path.write_bytes(content)
        log_file_saved(str(save_path), workbook.name)

        if self.dry_run:
            log_info(f"Dry run, workbook {workbook.name} not published")
            return None

        request = Workbook(
            id=None,
            name=workbook.name,
            project_id=destination_project_id,
            owner_id=owner.id,
            connections=workbook.connections
        )
        published = self.destination.workbooks.publish_workbook(request, file_bytes)
        if published.owner_id != owner.id:
            published = self.destination.workbooks.update_workbook_owner(published.id, owner.id)
        return published

    def _get_connection_password(self, username: str) -> Optional[str]:
        password = self.store.find_password(username)
        if password is None:
            password = self.config.embedded_connection_credentials.get(username)
        if password is None:
            log_warning(f"Password not found for connection user {username}")
        return password

    def _migrate_proxy_connection(self, connection, destination_project_id: Optional[str]):
        server = (connection.server_address or '').strip()
        if server and not equals_ignore_case(server, self.source_server) and \
                not equals_ignore_case(server, LOCALHOST):
            raise MigrationError(f"Unexpected source connection server address: {connection.server_address}")

        datasource = self.source.datasources.get_datasource(connection.datasource_id, include_connections=True)
        destination_datasource = None
        if destination_project_id:
            destination_datasource = self.destination.datasources.find_datasource(
                datasource.name, include_connections=True, project_id=destination_project_id
            )
        if destination_datasource is not None:
            log_debug(f"Datasource found in destination: {destination_datasource.id}")

        valid_name = self.store.get_valid_name((datasource.name or '').strip())
        viz_datasource = self.store.get_viz_datasource(valid_name)
        if viz_datasource is None:
            log_warning(f"Viz datasource not found for sqlproxy workbook connection {connection.id}, "
                        f"skipping: {valid_name} ({datasource.name})")
            return

        detail = viz_datasource.connection_detail
        if self._needs_datasource_publish(destination_datasource, destination_project_id, detail.username):
            destination_datasource = self._publish_datasource(
                datasource, destination_project_id, viz_datasource
            ) or destination_datasource

        connection.credentials = ConnectionCredentials(name=detail.username, password=detail.password, embed=True)
        connection.datasource_id = destination_datasource.id if destination_datasource else None
        connection.datasource_name = destination_datasource.name if destination_datasource else None
        connection.server_address = self.destination_server

    def _needs_datasource_publish(self, destination_datasource: Optional[Datasource],
                                  destination_project_id: Optional[str], username: Optional[str]) -> bool:
        if destination_datasource is None or destination_datasource.project_id != destination_project_id:
            return True
        connections = destination_datasource.connections
        same_server = any(equals_ignore_case(c.server_address or '', self.destination_server) for c in connections)
        same_user = any(equals_ignore_case(c.username or '', username or '') for c in connections)
        return not same_server and not same_user

    def _publish_datasource(self, datasource: Datasource, destination_project_id: Optional[str],
                            viz_datasource) -> Optional[Datasource]:
        detail = viz_datasource.connection_detail
        request = Datasource(
            id=None,
            name=datasource.name,
            type=datasource.type,
            project_id=destination_project_id,
            credentials=ConnectionCredentials(name=detail.username, password=detail.password, embed=True)
        )

        # the REST API cannot download datasources with whitespace in their names
        file_bytes = self.store.get_viz_datasource_file(viz_datasource.name)
        if file_bytes is None:
            raise MigrationError(f"Datasource file not found for {viz_datasource.name}")

        log_debug(f"Publishing datasource '{datasource.name}'")
        self.summary.datasources_published += 1
        if self.dry_run:
            return None
        published = self.destination.datasources.publish_datasource(request, file_bytes)
        log_debug(f"Published datasource '{datasource.name}' ({published.id})")
        self.sleep(SETTLE_SECONDS)
        return published
