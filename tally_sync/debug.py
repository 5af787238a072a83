"""
Debugging and diagnostic utilities for Tally Sync.

Provides tools for:
- Testing Tally connectivity and listing companies
- Inspecting raw XML responses with record counts
- Showing the rendered request for a table
"""
from __future__ import annotations
from datetime import date
from pathlib import Path
from typing import Optional
from loguru import logger

from .client import TallyClient
from .config import SyncConfig
from .errors import ProtocolError, TallySyncError
from .tables import resolve_table


class TallyDebugger:
    """
    Debugging utilities for Tally Sync.

    Usage:
        debugger = TallyDebugger()

        # Test connection
        debugger.test_connection()

        # Fetch and display raw XML
        debugger.fetch_raw_xml('Ledgers')
    """

    def __init__(self, config: Optional[SyncConfig] = None, client: Optional[TallyClient] = None):
        self.config = config or SyncConfig.from_env()
        self.client = client or TallyClient(self.config)

    def test_connection(self, verbose: bool = True) -> dict:
        """Test connection to Tally and list its companies."""
        result = {
            "url": self.client.base_url,
            "connected": self.client.test_connection(),
            "companies": [],
        }
        if result["connected"]:
            try:
                result["companies"] = [c.name for c in self.client.list_companies()]
            except TallySyncError as e:
                result["error"] = str(e)

        if verbose:
            print("\n=== Tally Connection Test ===")
            print(f"URL: {result['url']}")
            print(f"Status: {'connected' if result['connected'] else 'failed'}")
            for name in result["companies"]:
                print(f"  • {name}")
            if "error" in result:
                print(f"Error: {result['error']}")

        return result

    def show_request(
        self,
        table_name: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> str:
        """Render the XML request for a table without sending it."""
        xml_request = self.client.build_request(table_name, from_date, to_date)
        print(xml_request)
        return xml_request

    def fetch_raw_xml(
        self,
        table_name: str,
        save_to_file: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> str:
        """
        Fetch raw XML response from Tally and log its record count.

        Args:
            table_name: Table to fetch (e.g., 'Ledgers', 'Vouchers')
            save_to_file: Optional path to save XML
            from_date: Start date
            to_date: End date

        Returns:
            Raw XML string
        """
        descriptor = resolve_table(table_name)
        xml_response = self.client.fetch_table(descriptor, from_date, to_date)

        logger.debug("=== Raw XML Response ===")
        logger.debug(xml_response)
        try:
            records = self.client.count_records(xml_response, descriptor)
            logger.info(f"Found {records} records for {descriptor.name}")
        except ProtocolError as e:
            logger.warning(f"Response for {descriptor.name} is not parseable: {e}")

        print(f"Response size: {len(xml_response)} bytes")
        if save_to_file:
            Path(save_to_file).write_text(xml_response, encoding="utf-8")
            print(f"Saved to: {save_to_file}")

        return xml_response
