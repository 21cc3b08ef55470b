"""Rewrite of the server addresses in a Tableau Workbook (.twb) document.

Only datasource connection elements are visited:
    - <workbook>/<datasources>/<datasource>/<connection>
    - the named connections nested in a federated connection

A ``server`` attribute equal (case-insensitively) to the source host or to
``localhost`` is replaced with the destination host. Every other element and
attribute is left as it was.
"""
import xml.etree.ElementTree as Et
from typing import Iterable, List, Tuple

from .common.helpers import equals_ignore_case

__all__ = ['rewrite_connection_servers', 'find_connection_elements']

# Prefix used by Tableau for user-defined attributes, kept on serialization
Et.register_namespace('user', 'http://www.tableausoftware.com/xml/user')

CONNECTION_XPATH = './datasources/datasource/connection'
NAMED_CONNECTION_XPATH = './named-connections/named-connection/connection'


def find_connection_elements(root: Et.Element) -> List[Et.Element]:
    """Datasource connection elements of a workbook root, named connections included."""
    elements = []
    for connection in root.findall(CONNECTION_XPATH):
        elements.append(connection)
        elements.extend(connection.findall(NAMED_CONNECTION_XPATH))
    return elements


def rewrite_connection_servers(content: bytes, source_server: str, destination_server: str,
                               extra_sources: Iterable[str] = ('localhost',)) -> Tuple[bytes, int]:
    """Point the workbook's datasource connections at the destination server.

    Args:
        content: Workbook document bytes
        source_server: Host name used by the source site
        destination_server: Host name that replaces it
        extra_sources: Other host names that are also replaced

    Returns:
        The serialized document and the number of replaced attributes
    """
    parser = Et.XMLParser(target=Et.TreeBuilder(insert_comments=True))
    root = Et.fromstring(content, parser=parser)

    sources = [s for s in [source_server, *extra_sources] if s]
    replaced = 0
    for connection in find_connection_elements(root):
        server = connection.get('server')
        if server is not None and any(equals_ignore_case(server, s) for s in sources):
            connection.set('server', destination_server)
            replaced += 1

    return Et.tostring(root, encoding='utf-8', xml_declaration=True), replaced
