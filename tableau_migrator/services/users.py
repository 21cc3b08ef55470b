"""User operations against one Tableau site."""

import logging
from typing import List, Optional

from ..client import QueryFilterOperator, TableauClient
from ..common.helpers import equals_ignore_case
from ..models import User, normalize_site_role

__all__ = ['UserService']


class UserService:
    """Lists, resolves and creates site users.

    The domain of a user is only returned when the user is fetched by id, so
    lookups by (name, domain) fetch each candidate individually.
    """

    def __init__(self, client: TableauClient):
        self.client = client
        self.logger = logging.getLogger(__name__)

    def get_users(self, group_id: Optional[str] = None) -> List[User]:
        """Get all site users, or the members of a group"""
        path = f"groups/{group_id}/users" if group_id else 'users'
        users = [User.from_json(u) for u in self.client.list_paged(path, 'users', 'user')]
        self.logger.debug(f"{len(users)} users found")
        return users

    def get_user(self, user_id: str) -> User:
        """Get a user by id, including its domain"""
        data = self.client.get(f"users/{user_id}")
        return User.from_json(data.get('user') or {})

    def find_users(self, name: str, domain: Optional[str] = None) -> List[User]:
        """Find users by name, narrowed to a domain when one is given"""
        self.logger.debug(f"Finding users: {name} ({domain or 'any domain'})")
        query = "filter=" + self.client.build_query_filter('name', QueryFilterOperator.EQ, name)
        users = [User.from_json(u) for u in self.client.list_paged('users', 'users', 'user', query)]

        if domain:
            detailed = []
            for user in users:
                detailed_user = self.get_user(user.id)
                if equals_ignore_case(detailed_user.domain_name or '', domain):
                    detailed.append(detailed_user)
            users = detailed

        self.logger.debug(f"{len(users)} matching user(s) found")
        return users

    def find_user(self, name: str, domain: Optional[str] = None) -> Optional[User]:
        """Find a single user by (name, domain); None when absent or ambiguous"""
        users = self.find_users(name, domain)
        if len(users) > 1:
            self.logger.warning(f"{len(users)} users match {name} ({domain}), treating as not found")
            return None
        return users[0] if users else None

    def add_user_to_site(self, name: str, site_role: str, normalize_legacy_role: bool = False) -> User:
        """Add a user to the site with the given site role"""
        if normalize_legacy_role:
            site_role = normalize_site_role(site_role)
        self.logger.debug(f"Adding user {name} with role {site_role}")
        data = self.client.post('users', {'user': User(id=None, name=name, site_role=site_role).to_request()})
        user = User.from_json(data.get('user') or {})
        self.logger.debug(f"User {user.id} added as {site_role}")
        return user

    def remove_user_from_site(self, user_id: str):
        """Remove a user from the site"""
        self.logger.debug(f"Removing user {user_id} from site {self.client.site_id}")
        self.client.delete(f"users/{user_id}")
