"""
XML request templates for the Tally API.

Templates are Jinja2 files that render XML envelopes for the Tally HTTP
API. Every collection template extends ``_envelope.xml.j2``, which owns the
static variables (active company, date range).
"""
from __future__ import annotations
from datetime import date
from pathlib import Path
from typing import Optional
from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

# Template directory
TEMPLATE_DIR = Path(__file__).parent

COMPANY_LIST_TEMPLATE = "company_list.xml.j2"
PING_TEMPLATE = "ping.xml.j2"

# Tally static variables expect yyyyMMdd
TALLY_DATE_FORMAT = "%Y%m%d"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("xml.j2",), default=True),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def format_tally_date(d: Optional[date]) -> Optional[str]:
    return d.strftime(TALLY_DATE_FORMAT) if d else None


def render_request(
    template_name: str,
    company: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> str:
    """
    Render a request template.

    The date range is only emitted when both ends are given; a half-open
    range renders neither variable.
    """
    context = {
        "company": company or None,
        "from_date": None,
        "to_date": None,
    }
    if from_date and to_date:
        context["from_date"] = format_tally_date(from_date)
        context["to_date"] = format_tally_date(to_date)

    return _env.get_template(template_name).render(**context)


def load_template(name: str) -> str:
    """Load template source, for debugging."""
    return (TEMPLATE_DIR / name).read_text(encoding="utf-8")
