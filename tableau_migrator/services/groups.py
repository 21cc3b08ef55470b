"""Group operations against one Tableau site."""

import logging
from typing import List, Optional

from ..client import QueryFilterOperator, TableauAPIError, TableauClient
from ..common.helpers import equals_ignore_case
from ..models import Group

__all__ = ['GroupService']


class GroupService:
    """Lists, creates and maintains membership of groups"""

    def __init__(self, client: TableauClient):
        self.client = client
        self.logger = logging.getLogger(__name__)

    def get_groups(self) -> List[Group]:
        """Get all groups on the site"""
        groups = [Group.from_json(g) for g in self.client.list_paged('groups', 'groups', 'group')]
        self.logger.debug(f"{len(groups)} groups found")
        return groups

    def get_group(self, group_id: str) -> Optional[Group]:
        """Get a group by id"""
        return next((g for g in self.get_groups() if g.id == group_id), None)

    def find_groups(self, name: str) -> List[Group]:
        """Find groups whose name equals the given name"""
        query = "filter=" + self.client.build_query_filter('name', QueryFilterOperator.EQ, name)
        return [Group.from_json(g) for g in self.client.list_paged('groups', 'groups', 'group', query)]

    def find_group(self, name: str) -> Optional[Group]:
        """Find a single group by name, case-insensitively"""
        self.logger.debug(f"Finding group: {name}")
        matches = [g for g in self.find_groups(name) if equals_ignore_case(g.name, name)]
        if len(matches) > 1:
            raise TableauAPIError(f"{len(matches)} groups named '{name}' found")
        return matches[0] if matches else None

    def create_group(self, name: str) -> Group:
        """Create a local group"""
        self.logger.debug(f"Creating group {name}")
        data = self.client.post('groups', {'group': {'name': name}})
        group = Group.from_json(data.get('group') or {})
        self.logger.debug(f"Group {name} created with id {group.id}")
        return group

    def add_user_to_group(self, group_id: str, user_id: str):
        """Add a user to a group"""
        self.logger.debug(f"Adding user {user_id} to group {group_id}")
        self.client.post(f"groups/{group_id}/users", {'user': {'id': user_id}})

    def remove_user_from_group(self, group_id: str, user_id: str):
        """Remove a user from a group"""
        self.logger.debug(f"Removing user {user_id} from group {group_id}")
        self.client.delete(f"groups/{group_id}/users/{user_id}")

    def delete_group(self, group_id: str):
        """Delete a group"""
        self.logger.debug(f"Deleting group {group_id}")
        self.client.delete(f"groups/{group_id}")
