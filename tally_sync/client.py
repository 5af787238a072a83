"""
Tally HTTP Client.

Renders collection-export requests, posts them to the Tally XML interface
and hands back the raw response.
"""
from __future__ import annotations
import re
from datetime import date
from typing import Optional
import requests
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type
from loguru import logger

from .config import SyncConfig
from .errors import (
    TallyConnectionError,
    ConnectionTimeout,
    ConnectionRefused,
    TallyResponseError,
)
from .parsers import Company, parse_company_list, count_records
from .requests import COMPANY_LIST_TEMPLATE, PING_TEMPLATE, render_request
from .tables import TableDescriptor, TableKind, available_tables, resolve_table

DEFAULT_HEADERS = {
    "Content-Type": "text/xml; charset=utf-8",
    "Accept": "text/xml",
    "User-Agent": "tally-sync/1.0",
}

CONNECTION_TEST_TIMEOUT = 10


class TallyClient:
    """
    HTTP client for the Tally XML API.

    Features:
    - Automatic retry with exponential backoff for exports
    - Connection pooling via requests.Session
    - Per-call timeouts (10s for the connection test)
    - Runtime selection of the active company
    """

    def __init__(self, config: Optional[SyncConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or SyncConfig.from_env()
        self.base_url = self.config.tally_url.rstrip("/")
        self._active_company = self.config.tally_company
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)

    @property
    def active_company(self) -> Optional[str]:
        return self._active_company

    def set_active_company(self, company_name: Optional[str]) -> None:
        self._active_company = company_name or None
        logger.info(f"Active company set to: {company_name}")

    def _post(self, xml: str, timeout: int) -> str:
        """Single POST to Tally; maps transport failures onto our error kinds."""
        try:
            r = self.session.post(self.base_url, data=xml.encode("utf-8"), timeout=timeout)
            r.raise_for_status()
        except requests.Timeout as e:
            raise ConnectionTimeout(f"Tally at {self.base_url} did not respond within {timeout}s") from e
        except requests.ConnectionError as e:
            raise ConnectionRefused(f"Cannot connect to Tally at {self.base_url}: {e}") from e
        except requests.RequestException as e:
            raise TallyConnectionError(f"Request failed: {e}") from e
        return r.text

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(TallyConnectionError),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            f"Retrying Tally request (attempt {retry_state.attempt_number})..."
        ),
    )
    def post_xml(self, xml: str, timeout: Optional[int] = None) -> str:
        """
        Post XML to Tally and return response.

        Args:
            xml: XML request string
            timeout: Request timeout in seconds (uses config default if not specified)

        Returns:
            XML response string

        Raises:
            TallyConnectionError: If connection fails after retries
            TallyResponseError: If Tally returns an error envelope
        """
        timeout = timeout or self.config.request_timeout
        text = self._post(xml, timeout)

        # Be specific to avoid false positives on data that mentions errors
        is_error = (
            "<STATUS>0</STATUS>" in text
            or "<LINEERROR>" in text
            or "<ERRORMSG>" in text
            or ("Could not find" in text and "Report" in text)
        )
        if is_error:
            error_msg = self._extract_error(text)
            if error_msg:
                raise TallyResponseError(f"Tally error: {error_msg}")

        return text

    def _extract_error(self, text: str) -> Optional[str]:
        """Extract error message from Tally response."""
        patterns = [
            r"<LINEERROR>(.*?)</LINEERROR>",
            r"<ERROR>(.*?)</ERROR>",
            r"<ERRORMSG>(.*?)</ERRORMSG>",
        ]
        for pattern in patterns:
            match = re.search(pattern, text, re.IGNORECASE | re.DOTALL)
            if match:
                msg = match.group(1).strip()
                msg = msg.replace("&apos;", "'").replace("&quot;", '"')
                msg = msg.replace("&lt;", "<").replace("&gt;", ">")
                msg = msg.replace("&amp;", "&")
                return msg

        if "Could not find" in text:
            match = re.search(r"(Could not find[^<]+)", text)
            if match:
                return match.group(1).strip().replace("&apos;", "'")

        return None

    def test_connection(self) -> bool:
        """
        Ping Tally with a minimal export envelope.

        Returns True for any 2xx answer within 10 seconds. The failure kind
        is only visible in the logs.
        """
        logger.info(f"Attempting to connect to Tally at {self.base_url}...")
        try:
            self._post(render_request(PING_TEMPLATE), timeout=CONNECTION_TEST_TIMEOUT)
        except ConnectionTimeout:
            logger.error(
                f"Tally connection timeout - server at {self.base_url} is not responding. "
                "Ensure Tally is running and accessible."
            )
            return False
        except ConnectionRefused:
            logger.error(
                f"Tally connection failed - unable to reach {self.base_url}. "
                "Check if Tally server is running."
            )
            return False
        except TallyConnectionError as e:
            logger.error(f"Unexpected error checking Tally connection: {e}")
            return False

        logger.info("Tally connection successful")
        return True

    def list_companies(self) -> list[Company]:
        """
        List the companies loaded in Tally.

        Raises:
            TallyConnectionError: If Tally cannot be reached
            ProtocolError: If the response is not well-formed XML
        """
        xml_response = self.post_xml(render_request(COMPANY_LIST_TEMPLATE))
        companies = parse_company_list(xml_response)
        logger.info(f"Found {len(companies)} companies in Tally")
        return companies

    def available_tables(self) -> list[TableDescriptor]:
        tables = available_tables()
        logger.debug(f"Retrieved {len(tables)} available tables")
        return tables

    def build_request(
        self,
        table: TableKind | TableDescriptor | str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        company: Optional[str] = None,
    ) -> str:
        """Render the export envelope for a table without sending it."""
        descriptor = resolve_table(table)
        return render_request(
            descriptor.template,
            company=company or self._active_company,
            from_date=from_date,
            to_date=to_date,
        )

    def fetch_table(
        self,
        table: TableKind | TableDescriptor | str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        company: Optional[str] = None,
    ) -> str:
        """
        Export a table and return the raw XML response.

        Args:
            table: Catalog entry or table name (e.g. 'Ledgers')
            from_date: Start of the SVFROMDATE/SVTODATE window
            to_date: End of the window; both ends are required for the window to apply
            company: Overrides the active company for this request

        Raises:
            UnknownTableError: For a name outside the catalog (before any I/O)
            TallyConnectionError: If Tally cannot be reached
            TallyResponseError: If Tally returns an error envelope
        """
        descriptor = resolve_table(table)
        xml_request = self.build_request(descriptor, from_date, to_date, company)
        xml_response = self.post_xml(xml_request)

        date_info = f" (From: {from_date}, To: {to_date})" if from_date or to_date else ""
        active = company or self._active_company
        company_info = f" [Company: {active}]" if active else ""
        logger.info(
            f"Fetched {descriptor.name}{date_info}{company_info}, size: {len(xml_response)} bytes"
        )
        return xml_response

    def count_records(self, xml_text: str, table: TableKind | TableDescriptor | str) -> int:
        return count_records(xml_text, resolve_table(table).collection_type)

    def close(self):
        """Close the session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
