"""
Tests for the Tally HTTP client (mocked session).
"""
import pytest
import requests
from unittest.mock import Mock

from tally_sync.client import CONNECTION_TEST_TIMEOUT, TallyClient
from tally_sync.config import SyncConfig
from tally_sync.errors import ProtocolError, TallyResponseError


def make_client(**session_kwargs):
    session = Mock(**session_kwargs)
    config = SyncConfig(tally_server="localhost", tally_port=9000, tally_company=None)
    return TallyClient(config, session=session), session


def ok(text="<ENVELOPE><HEADER><STATUS>1</STATUS></HEADER></ENVELOPE>"):
    return Mock(status_code=200, text=text)


class TestConnection:
    """Tests for test_connection."""

    def test_success(self):
        client, session = make_client()
        session.post.return_value = ok()

        assert client.test_connection() is True
        args, kwargs = session.post.call_args
        assert args[0] == "http://localhost:9000"
        assert kwargs["timeout"] == CONNECTION_TEST_TIMEOUT
        assert b"<TALLYREQUEST>Export</TALLYREQUEST>" in kwargs["data"]

    @pytest.mark.parametrize("error", [
        requests.Timeout("slow"),
        requests.ConnectionError("refused"),
        requests.RequestException("other"),
    ])
    def test_failures_return_false(self, error):
        client, session = make_client()
        session.post.side_effect = error
        assert client.test_connection() is False
        # No retries for the connection test
        assert session.post.call_count == 1

    def test_http_error_status(self):
        client, session = make_client()
        response = Mock(status_code=503, text="busy")
        response.raise_for_status.side_effect = requests.HTTPError("503")
        session.post.return_value = response
        assert client.test_connection() is False


class TestListCompanies:
    """Tests for list_companies."""

    def test_parses_companies(self):
        client, session = make_client()
        session.post.return_value = ok(
            "<ENVELOPE><BODY><DATA><COLLECTION>"
            "<COMPANY><NAME>Acme</NAME><GUID>g1</GUID></COMPANY>"
            "<COMPANY><NAME>Beta</NAME></COMPANY>"
            "</COLLECTION></DATA></BODY></ENVELOPE>"
        )
        companies = client.list_companies()
        assert [(c.name, c.guid) for c in companies] == [("Acme", "g1"), ("Beta", "")]
        assert b"ListOfCompanies" in session.post.call_args.kwargs["data"]

    def test_malformed_response(self):
        client, session = make_client()
        session.post.return_value = ok("Tally is starting up")
        with pytest.raises(ProtocolError):
            client.list_companies()


class TestPostXml:
    """Tests for Tally error envelopes."""

    def test_line_error_raises(self):
        client, session = make_client()
        session.post.return_value = ok(
            "<ENVELOPE><LINEERROR>Could not set &apos;SVCurrentCompany&apos;</LINEERROR></ENVELOPE>"
        )
        with pytest.raises(TallyResponseError, match="Could not set 'SVCurrentCompany'"):
            client.fetch_table("Ledgers")

    def test_response_error_is_protocol_error(self):
        assert issubclass(TallyResponseError, ProtocolError)

    def test_uses_config_timeout(self):
        client, session = make_client()
        session.post.return_value = ok()
        client.post_xml("<ENVELOPE/>")
        assert session.post.call_args.kwargs["timeout"] == client.config.request_timeout

    def test_active_company_defaults_to_config(self):
        config = SyncConfig(tally_company="Acme")
        client = TallyClient(config, session=Mock())
        assert client.active_company == "Acme"
        client.set_active_company("")
        assert client.active_company is None
