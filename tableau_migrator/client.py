"""Tableau Server REST API Client."""

import json
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from urllib.parse import quote, urlparse

import requests
from urllib3.fields import RequestField
from urllib3.filepost import encode_multipart_formdata

from .common.helpers import append_uri
from .config import SiteConfig
from .models import FileBytes, Pagination

__all__ = ['TableauAPIError', 'TableauClient', 'QueryFilterOperator', 'PAGE_SIZE']

PAGE_SIZE = 1000

_DISPOSITION_PARAM = re.compile(r'(\w+)\s*=\s*"?([^";]*)"?')


class TableauAPIError(Exception):
    """Custom exception for Tableau API errors"""
    def __init__(self, message: str, status_code: Optional[int] = None, response_data: Optional[Any] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class QueryFilterOperator(Enum):
    EQ = "eq"
    GT = "gt"
    GTE = "gte"
    HAS = "has"
    LT = "lt"
    LTE = "lte"
    IN = "in"


def parse_content_disposition(value: str) -> Dict[str, str]:
    """Parse ``name="tableau_workbook"; filename="x.twb"`` into a dict."""
    return {key.lower(): param for key, param in _DISPOSITION_PARAM.findall(value or '')}


class TableauClient:
    """
    Tableau Server REST API Client
    Bound to one site; source and destination are two instances of this type
    """

    def __init__(self, site: SiteConfig, session: Optional[requests.Session] = None):
        self.site = site
        self.session = session or requests.Session()
        self.session.headers.update({'Accept': 'application/json'})
        self.logger = logging.getLogger(__name__)
        self.token: Optional[str] = None
        self.user_id: Optional[str] = None
        self._site_id: Optional[str] = None

    def __enter__(self) -> 'TableauClient':
        self.sign_in()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.sign_out()

    @property
    def api_version(self) -> str:
        return self.site.api_version

    @property
    def site_id(self) -> Optional[str]:
        return self._site_id

    @property
    def auth_url(self) -> str:
        return f"api/{self.api_version}/auth/"

    @property
    def site_url(self) -> str:
        return f"api/{self.api_version}/sites/{self._site_id}/"

    @property
    def server_host(self) -> Optional[str]:
        return urlparse(self.site.base_url).hostname

    @property
    def is_signed_in(self) -> bool:
        return bool(self.token)

    def sign_in(self):
        """Sign in and attach the session token to every subsequent request"""
        if self.token:
            self.sign_out()

        self.logger.info(f"Signing in to {self.site.base_url} as {self.site.username}")
        payload = {
            'credentials': {
                'name': self.site.username,
                'password': self.site.password,
                'site': {'contentUrl': self.site.site_content_url or ''}
            }
        }
        data = self._json(self._make_request('POST', self.auth_url + 'signin', json=payload))
        credentials = data.get('credentials') or {}
        self.token = credentials.get('token')
        self._site_id = (credentials.get('site') or {}).get('id')
        self.user_id = (credentials.get('user') or {}).get('id')
        if not self.token or not self._site_id:
            raise TableauAPIError("Sign in response did not include a token and site id", response_data=data)

        self.session.headers.update({
            'X-Tableau-Auth': self.token,
            'Cookie': f"workgroup_session_id={self.token}"
        })
        self.logger.debug(f"Signed in to site {self._site_id}")

    def sign_out(self):
        """Sign out and clear the session token"""
        if not self.token:
            return
        self.logger.debug("Signing out")
        try:
            self._make_request('POST', self.auth_url + 'signout')
        finally:
            self.token = None
            self._site_id = None
            self.user_id = None
            self.session.headers.pop('X-Tableau-Auth', None)
            self.session.headers.pop('Cookie', None)

    def _url(self, path: str) -> str:
        if path.startswith('http://') or path.startswith('https://'):
            return path
        if not path.startswith('api/'):
            path = self.site_url + path.lstrip('/')
        return append_uri(self.site.base_url, path)

    def _make_request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Make HTTP request, surfacing any failure as TableauAPIError (no retries)"""
        url = self._url(path)
        try:
            response = self.session.request(
                method=method,
                url=url,
                timeout=self.site.timeout_seconds or None,
                **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise TableauAPIError(f"{method} {url} failed: {e}") from e

        if not response.ok:
            raise TableauAPIError(
                f"{method} {url} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                response_data=response.text
            )
        return response

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        return response.json()

    def get(self, path: str) -> Dict[str, Any]:
        return self._json(self._make_request('GET', path))

    def post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._json(self._make_request('POST', path, json=payload))

    def put(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._json(self._make_request('PUT', path, json=payload))

    def delete(self, path: str) -> Dict[str, Any]:
        return self._json(self._make_request('DELETE', path))

    @staticmethod
    def build_query_filter(field: str, operator: QueryFilterOperator, value: str) -> str:
        return f"{field}:{operator.value}:{quote(value, safe='')}"

    def list_paged(self, path: str, collection_key: str, item_key: str,
                   query: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """Yield every item of a paged collection.

        Paging stops when the collection element has no items or when every
        available item has been retrieved.
        """
        page_number = 1
        retrieved = 0
        while True:
            url = f"{path}?pageSize={PAGE_SIZE}&pageNumber={page_number}"
            if query:
                url += f"&{query}"
            data = self.get(url)
            items = (data.get(collection_key) or {}).get(item_key)
            if not items:
                break
            yield from items

            pagination = Pagination.from_json(data.get('pagination'))
            retrieved += len(items)
            page_number += 1
            if retrieved >= pagination.total_available:
                break

    def download(self, path: str) -> FileBytes:
        """Download content, naming it from the Content-Disposition header"""
        self.logger.debug(f"Downloading file from {path}")
        response = self._make_request('GET', path)
        disposition = response.headers.get('Content-Disposition')
        if not disposition:
            self.logger.error(f"Error downloading file: {response.text}")
            raise TableauAPIError(f"Error downloading file: {response.text}",
                                  status_code=response.status_code, response_data=response.text)

        params = parse_content_disposition(disposition)
        return FileBytes(
            name=params.get('filename', ''),
            content=response.content,
            content_type=response.headers.get('Content-Type', 'application/octet-stream'),
            part_name=params.get('name')
        )

    def download_to(self, path: str, directory: str, file_name: Optional[str] = None,
                    overwrite: bool = True) -> Path:
        """Download content into a directory"""
        file_bytes = self.download(path)
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / (file_name or file_bytes.name)
        if target.exists() and not overwrite:
            raise FileExistsError(f"File already exists: {target}")
        target.write_bytes(file_bytes.content)
        self.logger.debug(f"Downloaded file from {path} to {target}")
        return target

    def upload(self, path: str, metadata: Dict[str, Any], file_bytes: FileBytes) -> Dict[str, Any]:
        """Publish content as multipart/mixed.

        The metadata part must be named 'request_payload' and the content part
        must carry the resource kind's part name; the server looks them up by
        those names.
        """
        self.logger.debug(f"Uploading {file_bytes.name} to {path}")
        payload_part = RequestField(name='request_payload', data=json.dumps(metadata))
        payload_part.make_multipart(content_type='application/json')

        file_part = RequestField(name=file_bytes.part_name, data=file_bytes.content,
                                 filename=Path(file_bytes.name).name)
        file_part.make_multipart(content_type=file_bytes.content_type or 'application/octet-stream')

        body, content_type = encode_multipart_formdata([payload_part, file_part])
        content_type = ''.join(('multipart/mixed',) + content_type.partition(';')[1:])
        response = self._make_request('POST', path, data=body, headers={'Content-Type': content_type})
        return self._json(response)

    def raw_request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None) -> bytes:
        """Request an arbitrary server url and return the body bytes"""
        return self._make_request(method, url, headers=headers or {}).content
