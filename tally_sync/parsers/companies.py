"""
Parsers for company listings and record counts.
"""
from __future__ import annotations
from loguru import logger
from pydantic import BaseModel

from .base import parse_xml, text


class Company(BaseModel):
    name: str
    guid: str = ""


def parse_company_list(xml_text: str) -> list[Company]:
    """
    Parse a ListOfCompanies response.

    Companies are returned in document order. Elements without a NAME child
    are skipped; a missing GUID becomes an empty string.

    Raises:
        ProtocolError: If the response is not well-formed XML
    """
    root = parse_xml(xml_text)
    companies = []
    for element in root.iter("COMPANY"):
        name = text(element, "NAME")
        if not name:
            logger.debug("Skipping COMPANY element without NAME")
            continue
        companies.append(Company(name=name, guid=text(element, "GUID", "")))
    return companies


def count_records(xml_text: str, collection_type: str) -> int:
    """
    Count descendant elements named after the collection type.

    Tally upper-cases object tags (``<LEDGER>`` for type ``Ledger``), so the
    comparison ignores case. Diagnostic only.
    """
    root = parse_xml(xml_text)
    wanted = collection_type.upper()
    return sum(
        1 for el in root.iter()
        if isinstance(el.tag, str) and el.tag.upper() == wanted
    )
