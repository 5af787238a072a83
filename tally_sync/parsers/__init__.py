"""
XML parsers for Tally responses.
"""

from .base import sanitize_xml, parse_xml, text
from .companies import Company, parse_company_list, count_records

__all__ = [
    "sanitize_xml",
    "parse_xml",
    "text",
    "Company",
    "parse_company_list",
    "count_records",
]
