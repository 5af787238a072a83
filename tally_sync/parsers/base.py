"""
Base utilities for XML parsing.

Provides common functions for parsing Tally XML responses including:
- XML sanitization
- Safe element text extraction
- Well-formedness checks that raise ProtocolError
"""
from __future__ import annotations
import re
from lxml import etree

from ..errors import ProtocolError


def sanitize_xml(xml_text: str) -> str:
    """
    Remove invalid XML characters and fix common issues.

    Tally sometimes produces XML with control characters or invalid
    character references (``&#4;`` and friends) that libxml2 rejects.
    """
    if not xml_text:
        return xml_text

    xml_text = xml_text.replace("\x00", "")

    # Numeric references to control chars, except tab, newline, CR
    xml_text = re.sub(r"&#([0-8]|1[0-2]|1[4-9]|2[0-9]|3[01]);", "", xml_text)
    xml_text = re.sub(r"&#x([0-8bBcCeEfF]|1[0-9a-fA-F]);", "", xml_text)

    # XML 1.0 only allows #x9 | #xA | #xD | [#x20-#xD7FF] | [#xE000-#xFFFD]
    xml_text = "".join(
        c if (
            c in "\t\n\r" or
            0x20 <= ord(c) <= 0xD7FF or
            0xE000 <= ord(c) <= 0xFFFD
        ) else ""
        for c in xml_text
    )

    # Replace unescaped ampersands (but not valid entities)
    xml_text = re.sub(r"&(?!(amp|lt|gt|apos|quot|#\d+|#x[\da-fA-F]+);)", "&amp;", xml_text)

    return xml_text


def parse_xml(xml_text: str) -> etree._Element:
    """
    Parse a Tally response into an element tree.

    Raises:
        ProtocolError: If the response is empty or not well-formed XML
    """
    if not xml_text or not xml_text.strip():
        raise ProtocolError("Empty response from Tally")
    try:
        return etree.fromstring(sanitize_xml(xml_text).encode("utf-8"))
    except etree.XMLSyntaxError as e:
        raise ProtocolError(f"Invalid XML from Tally: {e}") from e


def text(element: etree._Element | None, tag: str, default: str | None = None) -> str | None:
    """
    Safely extract text from XML element.

    Args:
        element: Parent XML element
        tag: Child tag name to find
        default: Default value if not found

    Returns:
        Stripped text content or default
    """
    if element is None:
        return default

    child = element.find(tag)
    if child is None or child.text is None:
        return default

    return child.text.strip() or default
