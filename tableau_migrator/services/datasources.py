"""Published datasource operations against one Tableau site."""

import logging
from typing import List, Optional

from ..client import QueryFilterOperator, TableauAPIError, TableauClient
from ..common.helpers import equals_ignore_case
from ..models import Connection, Datasource, FileBytes

__all__ = ['DatasourceService', 'DATASOURCE_PART_NAME']

DATASOURCE_PART_NAME = 'tableau_datasource'


class DatasourceService:
    """Lists, finds and publishes datasources"""

    def __init__(self, client: TableauClient):
        self.client = client
        self.logger = logging.getLogger(__name__)

    def get_datasources(self) -> List[Datasource]:
        """Get all published datasources on the site"""
        return [Datasource.from_json(d) for d in self.client.list_paged('datasources', 'datasources', 'datasource')]

    def get_datasource(self, datasource_id: str, include_connections: bool = False) -> Datasource:
        """Get a datasource by id"""
        data = self.client.get(f"datasources/{datasource_id}")
        datasource = Datasource.from_json(data.get('datasource') or {})
        if include_connections:
            datasource.connections = self.get_datasource_connections(datasource_id)
        return datasource

    def get_datasource_connections(self, datasource_id: str) -> List[Connection]:
        """Get the connections of a datasource"""
        data = self.client.get(f"datasources/{datasource_id}/connections")
        return [Connection.from_json(c) for c in (data.get('connections') or {}).get('connection') or []]

    def find_datasources(self, name: str) -> List[Datasource]:
        """Find datasources whose name equals the given name"""
        query = "filter=" + self.client.build_query_filter('name', QueryFilterOperator.EQ, name)
        return [Datasource.from_json(d) for d in
                self.client.list_paged('datasources', 'datasources', 'datasource', query)]

    def find_datasource(self, name: str, include_connections: bool = False,
                        project_id: Optional[str] = None) -> Optional[Datasource]:
        """Find a single datasource by name, case-insensitively, optionally within one project"""
        self.logger.debug(f"Finding datasource: {name}")
        matches = [d for d in self.find_datasources(name) if equals_ignore_case(d.name, name)]
        if project_id:
            matches = [d for d in matches if d.project_id == project_id]
        if len(matches) > 1:
            raise TableauAPIError(f"{len(matches)} datasources named '{name}' found")
        datasource = matches[0] if matches else None
        if datasource and include_connections:
            datasource.connections = self.get_datasource_connections(datasource.id)
        return datasource

    def download_datasource_bytes(self, datasource_id: str) -> FileBytes:
        """Download a datasource into memory"""
        return self.client.download(f"datasources/{datasource_id}/content")

    def publish_datasource(self, datasource: Datasource, file_bytes: FileBytes,
                           overwrite: bool = False) -> Datasource:
        """Publish a datasource with its embedded credentials"""
        self.logger.debug(f"Publishing datasource {datasource.name}")
        if not datasource.project_id:
            raise ValueError("Project ID must be specified")

        file_bytes.part_name = DATASOURCE_PART_NAME
        file_bytes.content_type = 'application/octet-stream'
        path = f"datasources?overwrite={str(overwrite).lower()}"
        data = self.client.upload(path, {'datasource': datasource.to_request()}, file_bytes)
        published = Datasource.from_json(data.get('datasource') or {})
        self.logger.debug(f"Datasource {datasource.name} published, id {published.id}")
        return published

    def delete_datasource(self, datasource_id: str):
        """Delete a datasource"""
        self.logger.debug(f"Deleting datasource {datasource_id}")
        self.client.delete(f"datasources/{datasource_id}")
