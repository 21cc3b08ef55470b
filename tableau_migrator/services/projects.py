"""Project operations against one Tableau site."""

import logging
from typing import List, Optional

from ..client import QueryFilterOperator, TableauAPIError, TableauClient
from ..common.helpers import equals_ignore_case
from ..models import Project

__all__ = ['ProjectService']


class ProjectService:
    """Lists, finds and creates projects"""

    def __init__(self, client: TableauClient):
        self.client = client
        self.logger = logging.getLogger(__name__)

    def get_projects(self) -> List[Project]:
        """Get all projects on the site"""
        projects = [Project.from_json(p) for p in self.client.list_paged('projects', 'projects', 'project')]
        self.logger.debug(f"{len(projects)} projects found")
        return projects

    def get_project(self, project_id: str) -> Optional[Project]:
        """Get a project by id"""
        return next((p for p in self.get_projects() if p.id == project_id), None)

    def find_projects(self, name: str) -> List[Project]:
        """Find projects whose name equals the given name"""
        query = "filter=" + self.client.build_query_filter('name', QueryFilterOperator.EQ, name)
        return [Project.from_json(p) for p in self.client.list_paged('projects', 'projects', 'project', query)]

    def find_project(self, name: str) -> Optional[Project]:
        """Find a single project by name, case-insensitively"""
        self.logger.debug(f"Finding project: {name}")
        matches = [p for p in self.find_projects(name) if equals_ignore_case(p.name, name)]
        if len(matches) > 1:
            raise TableauAPIError(f"{len(matches)} projects named '{name}' found")
        return matches[0] if matches else None

    def create_project(self, name: str, description: Optional[str] = None,
                       parent_project_id: Optional[str] = None) -> Project:
        """Create a project, optionally nested under a parent"""
        self.logger.debug(f"Creating project {name}")
        project = Project(id=None, name=name, description=description, parent_project_id=parent_project_id)
        data = self.client.post('projects', {'project': project.to_request()})
        created = Project.from_json(data.get('project') or {})
        self.logger.debug(f"Project {name} created with id {created.id}")
        return created

    def delete_project(self, project_id: str):
        """Delete a project"""
        self.logger.debug(f"Deleting project {project_id}")
        self.client.delete(f"projects/{project_id}")
