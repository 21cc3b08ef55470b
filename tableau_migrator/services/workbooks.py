"""Workbook operations against one Tableau site."""

import logging
from pathlib import Path
from typing import List, Optional

from ..client import QueryFilterOperator, TableauAPIError, TableauClient
from ..common.helpers import equals_ignore_case
from ..models import Connection, FileBytes, Workbook

__all__ = ['WorkbookService', 'WORKBOOK_PART_NAME']

WORKBOOK_PART_NAME = 'tableau_workbook'


class WorkbookService:
    """Lists, downloads and publishes workbooks"""

    def __init__(self, client: TableauClient):
        self.client = client
        self.logger = logging.getLogger(__name__)

    def get_workbooks(self) -> List[Workbook]:
        """Get all workbooks on the site"""
        workbooks = [Workbook.from_json(w) for w in self.client.list_paged('workbooks', 'workbooks', 'workbook')]
        self.logger.debug(f"{len(workbooks)} workbooks found")
        return workbooks

    def get_project_workbooks(self, project_id: str) -> List[Workbook]:
        """Get the workbooks that live directly in a project"""
        return [w for w in self.get_workbooks() if w.project_id == project_id]

    def get_workbook(self, workbook_id: str, include_connections: bool = False) -> Workbook:
        """Get a workbook by id"""
        data = self.client.get(f"workbooks/{workbook_id}")
        workbook = Workbook.from_json(data.get('workbook') or {})
        if include_connections:
            workbook.connections = self.get_workbook_connections(workbook_id)
        return workbook

    def get_workbook_connections(self, workbook_id: str) -> List[Connection]:
        """Get the data connections of a workbook"""
        data = self.client.get(f"workbooks/{workbook_id}/connections")
        connections = [Connection.from_json(c) for c in (data.get('connections') or {}).get('connection') or []]
        self.logger.debug(f"{len(connections)} connections returned for workbook {workbook_id}")
        return connections

    def find_workbooks(self, name: str) -> List[Workbook]:
        """Find workbooks whose name equals the given name"""
        query = "filter=" + self.client.build_query_filter('name', QueryFilterOperator.EQ, name)
        return [Workbook.from_json(w) for w in
                self.client.list_paged('workbooks', 'workbooks', 'workbook', query)]

    def find_workbook(self, name: str, include_connections: bool = False,
                      project_id: Optional[str] = None) -> Optional[Workbook]:
        """Find a single workbook by name, case-insensitively, optionally within one project"""
        self.logger.debug(f"Finding workbook: {name}")
        matches = [w for w in self.find_workbooks(name) if equals_ignore_case(w.name, name)]
        if project_id:
            matches = [w for w in matches if w.project_id == project_id]
        if len(matches) > 1:
            raise TableauAPIError(f"{len(matches)} workbooks named '{name}' found")
        workbook = matches[0] if matches else None
        if workbook and include_connections:
            workbook.connections = self.get_workbook_connections(workbook.id)
        return workbook

    def download_workbook(self, workbook_id: str, directory: str, file_name: Optional[str] = None) -> Path:
        """Download a workbook into a directory"""
        self.logger.debug(f"Downloading workbook {workbook_id}")
        path = self.client.download_to(f"workbooks/{workbook_id}/content", directory, file_name)
        self.logger.debug(f"Workbook {workbook_id} downloaded to {path}")
        return path

    def download_workbook_bytes(self, workbook_id: str) -> FileBytes:
        """Download a workbook into memory"""
        file_bytes = self.client.download(f"workbooks/{workbook_id}/content")
        self.logger.debug(f"Workbook {workbook_id} ({file_bytes.name}) downloaded, {len(file_bytes.content)} bytes")
        return file_bytes

    def publish_workbook(self, workbook: Workbook, file_bytes: FileBytes, overwrite: bool = False) -> Workbook:
        """Publish a workbook, skipping the server-side connection check"""
        self.logger.debug(f"Publishing workbook {workbook.name}")
        if not workbook.project_id:
            raise ValueError("Project ID must be specified")

        file_bytes.part_name = WORKBOOK_PART_NAME
        file_bytes.content_type = 'application/octet-stream'
        path = f"workbooks?skipConnectionCheck=true&overwrite={str(overwrite).lower()}"
        data = self.client.upload(path, {'workbook': workbook.to_request()}, file_bytes)
        published = Workbook.from_json(data.get('workbook') or {})
        self.logger.debug(f"Workbook {workbook.name} published, id {published.id}")
        return published

    def update_workbook_owner(self, workbook_id: str, owner_id: str) -> Workbook:
        """Reassign the owner of a workbook"""
        self.logger.debug(f"Setting owner of workbook {workbook_id} to {owner_id}")
        data = self.client.put(f"workbooks/{workbook_id}", {'workbook': {'owner': {'id': owner_id}}})
        return Workbook.from_json(data.get('workbook') or {})

    def delete_workbook(self, workbook_id: str):
        """Delete a workbook"""
        self.logger.debug(f"Deleting workbook {workbook_id}")
        self.client.delete(f"workbooks/{workbook_id}")
