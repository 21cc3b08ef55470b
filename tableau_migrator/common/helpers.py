import json
from typing import Dict, Any, Optional, Tuple

import yaml

# Characters rejected in file names on any platform the staging directory may live on
INVALID_FILE_NAME_CHARS = frozenset('<>:"/\\|?*' + ''.join(chr(i) for i in range(32)))


def load_config(path: str) -> Dict[str, Any]:
    """Load configuration from YAML or JSON file."""
    with open(path, 'r', encoding='utf-8') as f:
        if path.endswith('.yaml') or path.endswith('.yml'):
            return yaml.safe_load(f) or {}
        return json.load(f)


def get_valid_file_name(name: Optional[str]) -> str:
    """Drop characters that cannot appear in a file name."""
    return ''.join(c for c in (name or '') if c not in INVALID_FILE_NAME_CHARS)


def equals_ignore_case(left: Optional[str], right: Optional[str]) -> bool:
    if left is None or right is None:
        return left is right
    return left.casefold() == right.casefold()


def append_uri(base: str, path: str) -> str:
    """Join a base url and a relative path with exactly one slash between them."""
    if not path:
        return base
    if not base:
        return path
    return base.rstrip('/') + '/' + path.lstrip('/')


def split_identity(identity: Optional[str]) -> Tuple[str, str]:
    """Split ``user@domain`` or ``domain\\user`` into (name, domain).

    A bare name yields an empty domain.
    """
    identity = (identity or '').strip()
    if '@' in identity:
        name, _, domain = identity.partition('@')
        return name, domain
    if '\\' in identity:
        domain, _, name = identity.rpartition('\\')
        return name, domain
    return identity, ''
