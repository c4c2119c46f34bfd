"""Tests for the HTTP executor."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from apiman.executor import TransportError, execute_request
from apiman.resolver import ResolvedRequest


def _response(status=200, text='{"ok": true}', headers=None, reason="OK", chunks=None):
    resp = MagicMock()
    resp.status_code = status
    resp.reason = reason
    resp.encoding = "utf-8"
    resp.iter_content.return_value = chunks if chunks is not None else [text.encode()]
    resp.headers = headers or {"Content-Type": "application/json"}
    return resp


def _request(**overrides):
    fields = {
        "method": "post",
        "url": "http://host/users",
        "headers": {"Content-Type": "application/json"},
        "cookies": {"session": "abc"},
        "body": '{"name": "ü"}',
        "timeout": 7,
    }
    fields.update(overrides)
    return ResolvedRequest(**fields)


class TestExecuteRequest:
    @patch("apiman.executor.requests.request")
    def test_builds_single_call(self, mock_request):
        mock_request.return_value = _response()
        execute_request(_request())
        mock_request.assert_called_once()
        _, kwargs = mock_request.call_args
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == "http://host/users"
        assert kwargs["headers"]["content-type"] == "application/json"
        assert kwargs["cookies"] == {"session": "abc"}
        assert kwargs["data"] == '{"name": "ü"}'.encode()
        assert kwargs["timeout"] == 7
        assert kwargs["stream"] is True

    @patch("apiman.executor.requests.request")
    def test_empty_body_sends_no_data(self, mock_request):
        mock_request.return_value = _response()
        execute_request(_request(method="GET", body="", cookies={}))
        _, kwargs = mock_request.call_args
        assert kwargs["data"] is None
        assert kwargs["cookies"] is None

    @patch("apiman.executor.requests.request")
    def test_returns_raw_response(self, mock_request):
        mock_request.return_value = _response(status=201, text='{"id":1}', reason="Created")
        result = execute_request(_request())
        assert result.status_code == 201
        assert result.reason == "Created"
        assert result.text == '{"id":1}'
        assert result.content == b'{"id":1}'
        assert result.headers == {"Content-Type": "application/json"}
        assert result.json() == {"id": 1}
        assert result.elapsed_ms >= 0

    @patch("apiman.executor.requests.request")
    def test_non_json_body(self, mock_request):
        mock_request.return_value = _response(text="plain")
        assert execute_request(_request()).json() is None

    @patch("apiman.executor.requests.request")
    def test_timeout(self, mock_request):
        mock_request.side_effect = requests.exceptions.ReadTimeout("slow")
        with pytest.raises(TransportError, match="timed out after 7s"):
            execute_request(_request())
        assert mock_request.call_count == 1

    @patch("apiman.executor.requests.request")
    def test_connection_error(self, mock_request):
        mock_request.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(TransportError, match="Connection error: refused"):
            execute_request(_request())

    @patch("apiman.executor.requests.request")
    def test_other_request_failure(self, mock_request):
        mock_request.side_effect = requests.exceptions.InvalidURL("bad url")
        with pytest.raises(TransportError, match="Request failed: bad url"):
            execute_request(_request())

    def test_unencodable_header_is_transport_error(self):
        request = _request(url="http://127.0.0.1:9/x", headers={"X-Name": "café ☕"}, body="")
        with pytest.raises(TransportError):
            execute_request(request)

    @patch("apiman.executor.requests.request")
    def test_unexpected_error_is_transport_error(self, mock_request):
        mock_request.side_effect = ValueError("Attempted to set connect timeout to -5")
        with pytest.raises(TransportError, match="Request failed: Attempted to set"):
            execute_request(_request())

    @patch("apiman.executor.requests.request")
    def test_chunked_body_joined_and_decoded(self, mock_request):
        resp = _response(chunks=[b'{"name": "Z', "oë\"}".encode()])
        resp.encoding = "utf-8"
        mock_request.return_value = resp
        result = execute_request(_request())
        assert result.json() == {"name": "Zoë"}
        resp.close.assert_called_once()

    @patch("apiman.executor.requests.request")
    def test_unknown_charset_falls_back_to_utf8(self, mock_request):
        resp = _response(text="ok")
        resp.encoding = "no-such-codec"
        mock_request.return_value = resp
        assert execute_request(_request()).text == "ok"


class TestWallClockDeadline:
    @patch("apiman.executor.time")
    @patch("apiman.executor.requests.request")
    def test_trickling_body_times_out(self, mock_request, mock_time):
        resp = _response(chunks=[b"a", b"b", b"c"])
        mock_request.return_value = resp
        mock_time.monotonic.side_effect = [0.0, 1.0, 8.0]
        with pytest.raises(TransportError, match="timed out after 7s"):
            execute_request(_request())
        resp.close.assert_called_once()

    @patch("apiman.executor.requests.request")
    def test_connection_drop_while_streaming(self, mock_request):
        resp = _response()
        resp.iter_content.side_effect = requests.exceptions.ConnectionError("reset")
        mock_request.return_value = resp
        with pytest.raises(TransportError, match="Connection error: reset"):
            execute_request(_request())
