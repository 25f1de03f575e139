"""
Sniffs the format of a response payload and decodes it.
"""

import json
from typing import Any, Optional, Union
from xml.etree.ElementTree import Element, ParseError

import defusedxml.ElementTree as DefusedET
from defusedxml import DefusedXmlException

ATTRIBUTES_KEY = '@attributes'


def _as_text(payload: Union[str, bytes, None]) -> Optional[str]:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode('utf-8', errors='replace')
    if isinstance(payload, str):
        return payload
    return None


def is_json(payload: Any) -> bool:
    text = _as_text(payload)
    if text is None or not text.strip():
        return False
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def _parse_xml(text: str) -> Element:
    return DefusedET.fromstring(text.strip())


def is_xml(payload: Any) -> bool:
    text = _as_text(payload)
    if text is None or not text.strip():
        return False
    try:
        _parse_xml(text)
    except (ParseError, DefusedXmlException):
        return False
    return True


def _element_to_structured(element: Element) -> Any:
    children = list(element)
    if not children and not element.attrib:
        return (element.text or '').strip()

    result = {}
    if element.attrib:
        result[ATTRIBUTES_KEY] = dict(element.attrib)
    for child in children:
        value = _element_to_structured(child)
        if child.tag in result:
            existing = result[child.tag]
            if not isinstance(existing, list):
                result[child.tag] = existing = [existing]
            existing.append(value)
        else:
            result[child.tag] = value
    if not children:
        text = (element.text or '').strip()
        if text:
            result['#text'] = text
    return result


def xml_to_structured(payload: Union[str, bytes]) -> Any:
    """
    Convert an XML document into nested dicts.

    The root element is dropped, leaves become their stripped text, repeated
    tags become lists and attributes are kept under "@attributes". So
    `<root><x>1</x></root>` becomes `{'x': '1'}`.
    """
    root = _parse_xml(_as_text(payload))
    structured = _element_to_structured(root)
    if isinstance(structured, str):
        return {} if not structured else {'#text': structured}
    return structured


def decode_json(payload: Any, decode: bool) -> Any:
    """
    The JSON-only decoding used by the lightweight `data()` accessor.
    """
    if decode and is_json(payload):
        return json.loads(_as_text(payload))
    return payload


def interpret(payload: Any, content_type: Optional[str], decode: bool) -> Any:
    content_type = (content_type or '').lower()

    if content_type.startswith('application/json') or (decode and is_json(payload)):
        text = _as_text(payload)
        if text is not None:
            try:
                return json.loads(text)
            except ValueError:
                return payload
        return payload

    if ('/xml' in content_type or '+xml' in content_type) or (decode and is_xml(payload)):
        if _as_text(payload) is not None:
            try:
                return xml_to_structured(payload)
            except (ParseError, DefusedXmlException):
                return payload
        return payload

    return payload
