"""Tests for coursecompare.query - fetch and one-call extraction."""

from __future__ import annotations

import gzip
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from coursecompare.errors import ExtractionFailure
from coursecompare.items import ProgramRecord
from coursecompare.query import FetchError, extract_html, extract_url, fetch_html


def _make_mock_response(body: bytes, charset: str = "utf-8", encoding: str = "") -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = body
    resp.headers.get.side_effect = lambda name, default=None: (
        encoding if name == "Content-Encoding" else default
    )
    resp.headers.get_content_charset.return_value = charset
    resp.__enter__ = lambda s: s
    resp.__exit__ = MagicMock(return_value=False)
    return resp


class TestFetchHtml:
    def test_returns_string(self):
        mock_resp = _make_mock_response(b"<html><body><p>Hello</p></body></html>")
        with patch("urllib.request.urlopen", return_value=mock_resp):
            result = fetch_html("https://www.example.edu/msc")
        assert "Hello" in result

    def test_gzip_body(self):
        body = gzip.compress(b"<p>Compressed</p>")
        mock_resp = _make_mock_response(body, encoding="gzip")
        with patch("urllib.request.urlopen", return_value=mock_resp):
            assert fetch_html("https://www.example.edu/msc") == "<p>Compressed</p>"

    def test_http_error_raises_fetch_error(self):
        with patch(
            "urllib.request.urlopen",
            side_effect=urllib.error.HTTPError("https://www.example.edu", 404, "Not Found", {}, None),
        ), pytest.raises(FetchError) as exc_info:
            fetch_html("https://www.example.edu/missing")
        assert exc_info.value.status == 404

    def test_retries_server_errors(self):
        mock_resp = _make_mock_response(b"<p>ok</p>")
        error = urllib.error.HTTPError("https://www.example.edu", 503, "Unavailable", {}, None)
        with patch("urllib.request.urlopen", side_effect=[error, mock_resp]) as mock_urlopen, \
             patch("coursecompare.query.time.sleep") as mock_sleep:
            assert fetch_html("https://www.example.edu/msc") == "<p>ok</p>"
        assert mock_urlopen.call_count == 2
        mock_sleep.assert_called_once()

    def test_url_error_after_retries(self):
        with patch(
            "urllib.request.urlopen",
            side_effect=urllib.error.URLError("Connection refused"),
        ) as mock_urlopen, patch("coursecompare.query.time.sleep"), pytest.raises(FetchError):
            fetch_html("https://www.example.edu/msc", max_retries=2)
        assert mock_urlopen.call_count == 3

    def test_invalid_scheme(self):
        with pytest.raises(FetchError) as exc_info:
            fetch_html("ftp://example.edu/file.txt")
        assert "scheme" in str(exc_info.value).lower()


class TestExtractHtml:
    def test_returns_record(self, program_html):
        record = extract_html(program_html, url="https://www.example.edu/msc")
        assert isinstance(record, ProgramRecord)
        assert record.title == "Master of Science in Data Science"

    def test_failure_propagates(self, bare_html):
        with pytest.raises(ExtractionFailure):
            extract_html(bare_html)


class TestExtractUrl:
    def test_fetches_then_extracts(self, program_html):
        with patch("coursecompare.query.fetch_html", return_value=program_html) as mock_fetch:
            record = extract_url("https://www.example.edu/msc")
        mock_fetch.assert_called_once()
        assert record.source_url == "https://www.example.edu/msc"

    def test_fetch_error_propagates(self):
        with patch(
            "coursecompare.query.fetch_html",
            side_effect=FetchError("boom", url="https://www.example.edu/msc"),
        ), pytest.raises(FetchError):
            extract_url("https://www.example.edu/msc")
