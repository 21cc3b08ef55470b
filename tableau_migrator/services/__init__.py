"""
Per-resource services bound to one Tableau site.
"""

from ..client import TableauClient
from .datasources import DatasourceService
from .groups import GroupService
from .permissions import PermissionService
from .projects import ProjectService
from .users import UserService
from .workbooks import WorkbookService

__all__ = [
    'SiteServices', 'ProjectService', 'UserService', 'GroupService',
    'WorkbookService', 'DatasourceService', 'PermissionService'
]


class SiteServices:
    """One instance of every resource service for a single site"""

    def __init__(self, client: TableauClient):
        self.client = client
        self.projects = ProjectService(client)
        self.users = UserService(client)
        self.groups = GroupService(client)
        self.workbooks = WorkbookService(client)
        self.datasources = DatasourceService(client)
        self.permissions = PermissionService(client)

    @property
    def server_host(self):
        return self.client.server_host
