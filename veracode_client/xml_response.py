"""
XML response decoding.

Veracode answers every call with an XML document. Elements are folded into
nested dictionaries: attributes go under ``_attributes``, non-blank text
under ``_text`` and each child under its tag name. Sibling elements sharing
a tag name are collected into a list in document order, so nothing is
dropped when the service repeats an element (``<file>`` entries of a
``filelist`` for instance).
"""

import xml.etree.ElementTree as ET
from typing import Any, Dict, Iterator, Optional, Union

from .exceptions import EmptyResponseError, MalformedResponseError
from .models import ParsedResponse

ATTRIBUTES_KEY = "_attributes"
TEXT_KEY = "_text"
ERROR_TAG = "error"


def _local_name(tag: str) -> str:
    # Veracode documents declare a default namespace on the root element
    return tag.rpartition("}")[2]


def _element_to_node(element: ET.Element) -> Dict[str, Any]:
    node: Dict[str, Any] = {}
    if element.attrib:
        node[ATTRIBUTES_KEY] = {
            _local_name(name): value for name, value in element.attrib.items()
        }

    text = (element.text or "").strip()
    if text:
        node[TEXT_KEY] = text

    for child in element:
        name = _local_name(child.tag)
        child_node = _element_to_node(child)
        if name not in node:
            node[name] = child_node
        elif isinstance(node[name], list):
            node[name].append(child_node)
        else:
            node[name] = [node[name], child_node]

    return node


def parse_response(body: Union[str, bytes], endpoint: Optional[str] = None) -> ParsedResponse:
    """Decode an XML body into a ParsedResponse tree.

    Bytes are decoded by the parser using the document's XML declaration
    (UTF-8 when there is none).
    """
    if body is None or not body.strip():
        raise EmptyResponseError("Empty response body", endpoint=endpoint, body=body)

    try:
        root = ET.fromstring(body.strip())
    except ET.ParseError as e:
        raise MalformedResponseError(
            f"Response is not valid XML: {e}", endpoint=endpoint, body=body[:200]
        ) from e

    return {_local_name(root.tag): _element_to_node(root)}


def iter_nodes(tree: Any, tag: str) -> Iterator[Dict[str, Any]]:
    """Yield every node named ``tag`` anywhere in the tree, depth first."""
    if isinstance(tree, list):
        for item in tree:
            yield from iter_nodes(item, tag)
        return
    if not isinstance(tree, dict):
        return

    for key, value in tree.items():
        if key in (ATTRIBUTES_KEY, TEXT_KEY):
            continue
        if key == tag:
            if isinstance(value, list):
                yield from value
            else:
                yield value
        yield from iter_nodes(value, tag)


def find_error(tree: ParsedResponse) -> Optional[str]:
    """Return the text of the first ``error`` element, or None."""
    for node in iter_nodes(tree, ERROR_TAG):
        return node.get(TEXT_KEY, "")
    return None


def attributes(node: Optional[Dict[str, Any]]) -> Dict[str, str]:
    if not node:
        return {}
    return node.get(ATTRIBUTES_KEY, {})


def as_list(value: Any) -> list:
    """Normalise a child that may be absent, single or repeated."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
