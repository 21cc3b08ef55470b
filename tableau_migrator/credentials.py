"""Credential reconciliation store for viz datasources.

The REST API cannot hand back the embedded credentials of published
datasources, and cannot download the content of datasources with whitespace in
their names. The store works from a JSON snapshot of the web UI's datasource
catalog instead: operators export it to a CSV report, fill in the passwords
and load the report back before workbooks are published.
"""

import csv
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

from .common.helpers import append_uri, equals_ignore_case, get_valid_file_name
from .common.log_utils import log_error, log_file_downloaded
from .config import VizDatasourceConfig
from .models import FileBytes

__all__ = [
    'CredentialStoreError', 'AmbiguousPasswordError', 'VizConnectionDetail', 'VizDatasource',
    'VizDatasourceStore', 'REPORT_HEADER'
]

REPORT_HEADER = ['Name', 'Server', 'Port', 'HasEmbeddedPassword', 'Username', 'Password']
TDS_CONTENT_TYPE = 'application/x-tds'
BROWSER_USER_AGENT = 'Mozilla Chrome Safari'


class CredentialStoreError(Exception):
    """Raised when the credential catalog or report cannot be reconciled"""


class AmbiguousPasswordError(CredentialStoreError):
    """Raised when catalog entries for one username carry different passwords"""


@dataclass
class VizConnectionDetail:
    server_name: Optional[str] = None
    server_port: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    has_embedded_password: bool = False
    type: Optional[str] = None

    @classmethod
    def from_json(cls, data: Optional[Dict[str, Any]]) -> 'VizConnectionDetail':
        data = data or {}
        port = data.get('serverPort')
        return cls(
            server_name=(data.get('serverName') or '').strip() or None,
            server_port=str(port).strip() if port is not None else None,
            username=(data.get('databaseUsername') or '').strip() or None,
            password=data.get('databasePassword'),
            has_embedded_password=bool(data.get('hasEmbeddedPassword', False)),
            type=data.get('type')
        )


@dataclass
class VizDatasource:
    """Datasource as listed by the web UI catalog"""
    name: str
    download_url: Optional[str] = None
    connection_detail: VizConnectionDetail = field(default_factory=VizConnectionDetail)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'VizDatasource':
        return cls(
            name=get_valid_file_name((data.get('name') or '').strip()),
            download_url=data.get('downloadUrl'),
            connection_detail=VizConnectionDetail.from_json(data.get('connectionDetails'))
        )


def _is_blank(value: Optional[str]) -> bool:
    return not (value or '').strip()


class VizDatasourceStore:
    """Viz datasource catalog with operator supplied passwords"""

    def __init__(self, config: VizDatasourceConfig, client=None):
        self.config = config
        self.client = client
        self.logger = logging.getLogger(__name__)

        if _is_blank(config.report_output_path):
            raise CredentialStoreError("Viz datasource report path required")

        self.datasources: List[VizDatasource] = self._load_catalog()

    def _load_catalog(self) -> List[VizDatasource]:
        if not self.config.json_source_path:
            self.logger.warning("No viz datasource snapshot configured, catalog is empty")
            return []
        self.logger.debug(f"Loading viz datasource snapshot {self.config.json_source_path}")
        with open(self.config.json_source_path, 'r', encoding='utf-8') as f:
            entries = json.load(f)
        if not isinstance(entries, list):
            raise CredentialStoreError("Viz datasource snapshot must be a JSON list")
        datasources = [VizDatasource.from_json(entry) for entry in entries]
        self.logger.debug(f"{len(datasources)} viz datasources loaded")
        return datasources

    @staticmethod
    def get_valid_name(name: Optional[str]) -> str:
        """Name with characters that are invalid in file names removed"""
        return get_valid_file_name(name)

    def produce_report(self, delimiter: str = ","):
        """Write the catalog as a CSV report with blank, commented-out passwords"""
        report_path = Path(self.config.report_output_path)
        if report_path.parent and not report_path.parent.exists():
            report_path.parent.mkdir(parents=True, exist_ok=True)

        with open(report_path, 'w', encoding='utf-8', newline='') as f:
            writer = csv.writer(f, delimiter=delimiter)
            writer.writerow(REPORT_HEADER)
            for datasource in self.datasources:
                detail = datasource.connection_detail
                writer.writerow([
                    f"#{datasource.name}",
                    detail.server_name or '',
                    detail.server_port or '',
                    str(bool(detail.has_embedded_password)),
                    detail.username or '',
                    ''
                ])
        self.logger.info(f"Viz datasource report written to {report_path} ({len(self.datasources)} entries)")

    def load_report(self, delimiter: str = ","):
        """Apply the passwords of a filled-in CSV report to the catalog.

        Rows whose name still starts with '#' or that lack a username or
        password are skipped. Any other row must be complete and must match
        exactly one catalog entry by (name, server, username).
        """
        self.logger.debug(f"Loading viz datasource report {self.config.report_output_path}")
        if not Path(self.config.report_output_path).is_file():
            raise CredentialStoreError(f"Viz datasource report not found: {self.config.report_output_path}; "
                                       f"run produce-report first")
        with open(self.config.report_output_path, 'r', encoding='utf-8', newline='') as f:
            reader = csv.DictReader(f, delimiter=delimiter)
            for row in reader:
                row_number = reader.line_num
                name = self.get_valid_name(row.get('Name') or '')
                server = row.get('Server') or ''
                username = row.get('Username') or ''
                password = row.get('Password') or ''
                has_embedded_password = (row.get('HasEmbeddedPassword') or '').strip().lower() == 'true'

                if name.startswith('#') or _is_blank(username) or _is_blank(password):
                    continue

                if _is_blank(name) or _is_blank(server) or not has_embedded_password:
                    raise CredentialStoreError(f"Invalid record on line {row_number}: {row}")

                matches = [
                    d for d in self.datasources
                    if equals_ignore_case(d.name, name.strip())
                    and equals_ignore_case((d.connection_detail.server_name or ''), server.strip())
                    and equals_ignore_case((d.connection_detail.username or ''), username.strip())
                ]
                if len(matches) != 1:
                    raise CredentialStoreError(
                        f"{len(matches)} datasources match line {row_number}: {row}"
                    )
                matches[0].connection_detail.password = password

        if any(_is_blank(d.connection_detail.password) for d in self.datasources):
            self.logger.warning("Datasources without passwords still present after load")

    def find_password(self, username: Optional[str]) -> Optional[str]:
        """Password stored for a database username, None when there is none"""
        passwords = {
            d.connection_detail.password for d in self.datasources
            if equals_ignore_case(d.connection_detail.username or '', username or '')
            and not _is_blank(d.connection_detail.password)
        }
        if len(passwords) > 1:
            raise AmbiguousPasswordError(f"{len(passwords)} different passwords stored for {username}")
        return next(iter(passwords), None)

    def get_viz_datasource(self, name: Optional[str]) -> Optional[VizDatasource]:
        """Catalog entry with the given name"""
        matches = [d for d in self.datasources if equals_ignore_case(d.name, name or '')]
        if len(matches) > 1:
            raise CredentialStoreError(f"{len(matches)} viz datasources named '{name}' found")
        return matches[0] if matches else None

    def get_viz_datasource_file(self, name: str) -> Optional[FileBytes]:
        """Downloaded .tds file of a datasource, found anywhere under the files path"""
        file_name = f"{name}.tds"
        self.logger.debug(f"Searching for viz datasource file '{file_name}'")
        root = Path(self.config.datasource_files_path)
        files = [p for p in root.rglob('*') if p.is_file() and p.name == file_name] if root.is_dir() else []
        if not files:
            self.logger.debug(f"Viz datasource file '{file_name}' not found")
            return None
        if len(files) != 1:
            self.logger.debug(f"{len(files)} matching viz datasource files '{file_name}' found")
            return None
        return FileBytes(
            name=str(files[0]),
            content=files[0].read_bytes(),
            content_type=TDS_CONTENT_TYPE,
            part_name='tableau_datasource'
        )

    def download_viz_datasource_files(self) -> List[Path]:
        """Download every catalog entry's content through the web UI"""
        if self.client is None:
            raise CredentialStoreError("A source client is required to download datasource files")
        if not self.config.base_url:
            raise CredentialStoreError("Viz datasource base url required")

        files_path = self.config.datasource_files_path
        if files_path:
            os.makedirs(files_path, exist_ok=True)

        headers = {'User-Agent': BROWSER_USER_AGENT, 'Accept': '*/*'}
        if self.config.cookie:
            headers['Cookie'] = self.config.cookie

        saved = []
        for datasource in self.datasources:
            self.logger.debug(f"Downloading viz datasource {datasource.name}")
            url = append_uri(self.config.base_url, datasource.download_url or '')
            try:
                content = self.client.raw_request('GET', url, headers=headers)
            except Exception as e:
                log_error(f"Error downloading viz datasource {datasource.name}", e)
                continue
            if not content:
                log_error(f"Error downloading viz datasource file {datasource.name}, no data returned")
                continue
            self.logger.debug(f"Downloaded viz datasource, {len(content)} bytes")

            extension = os.path.splitext(unquote(urlparse(url).path.rstrip('/').split('/')[-1]))[1]
            target = Path(files_path) / f"{datasource.name}{extension}"
            target.write_bytes(content)
            log_file_downloaded(str(target), datasource.name)
            saved.append(target)
        return saved
