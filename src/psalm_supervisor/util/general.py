import logging
import os
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

from psalm_supervisor.constants import FILE_ENCODING

log = logging.getLogger(__name__)


def _create_yaml(preserve_comments: bool = False) -> YAML:
    typ = None if preserve_comments else "safe"
    result = YAML(typ=typ)
    result.default_flow_style = False
    return result


def load_yaml(path: str, preserve_comments: bool = False) -> Any:
    """Load a YAML file.

    :param path: the file to read
    :param preserve_comments: whether to round-trip comments (returns a ``CommentedMap`` for mappings)
    :return: the parsed document, or an empty mapping if the file is empty
    """
    with open(path, encoding=FILE_ENCODING) as f:
        data = _create_yaml(preserve_comments).load(f)
    if data is None:
        return CommentedMap() if preserve_comments else {}
    return data


def save_yaml(path: str, data: Any, preserve_comments: bool = False) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding=FILE_ENCODING) as f:
        _create_yaml(preserve_comments).dump(data, f)
    log.debug("Wrote %s", path)
