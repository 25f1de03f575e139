import base64
import dataclasses
from enum import Enum
import json
from pathlib import Path
import re
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def clamp(value, min, max):
    return sorted((min, value, max))[1]


def resolve(*tiers: Any, default: Any = None) -> Any:
    """
    Pick the first configured value.

    Tiers are given from most to least specific, e.g. call-site value, then
    instance default, then process configuration. `None` means "not set" at
    every tier; `False` and `0` are real values.
    """
    for value in tiers:
        if value is not None:
            return value
    return default


def normalize_url(url: str) -> str:
    parts = urlsplit(url.strip())
    path = re.sub(r'/{2,}', '/', parts.path)
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, parts.fragment))


def strip_scheme(url: str) -> str:
    return re.sub(r'^https?://', '', url, flags=re.IGNORECASE)


def hostname(url: str) -> Optional[str]:
    return urlsplit(url).hostname


def add_query_params(url: str, params: Mapping[str, Any]) -> str:
    if not params:
        return url
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((name, '' if value is None else str(value)) for name, value in params.items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class DataclassJSONEncoder(json.JSONEncoder):
    def default(self, o):
        if dataclasses.is_dataclass(o):
            return dataclasses.asdict(o)
        if isinstance(o, Enum):
            return o.value
        if isinstance(o, (bytes, bytearray)):
            return base64.b64encode(bytes(o)).decode('ascii')
        if isinstance(o, Path):
            return str(o)
        if isinstance(o, Mapping):
            return dict(o)
        return super().default(o)
