"""Tests for HTTP client implementations."""

from unittest.mock import MagicMock

import pytest
import requests

from pagecollator import BearerTokenHttpClient, HttpClient
from pagecollator._cancellation import CancellationToken, OperationCancelledError


def make_session() -> MagicMock:
    session = MagicMock(spec=requests.Session)
    session.get.return_value = MagicMock(spec=requests.Response, status_code=200)
    return session


class TestHttpClientAbstract:

    def test_cannot_instantiate_abstract_class(self):
        with pytest.raises(TypeError):
            HttpClient()  # type: ignore


class TestBearerTokenHttpClientInit:

    def test_fails_when_token_is_empty(self):
        with pytest.raises(AssertionError, match="Bearer token cannot be empty"):
            BearerTokenHttpClient(token="")

    def test_creates_its_own_session_by_default(self):
        client = BearerTokenHttpClient(token="secret")

        assert isinstance(client._session, requests.Session)


class TestBearerTokenHttpClientGet:

    def test_sends_bearer_authorization_header(self):
        session = make_session()
        client = BearerTokenHttpClient(token="secret", session=session)

        response = client.get("https://api.example.com/page/1", timeout=300)

        assert response is session.get.return_value
        session.get.assert_called_once_with(
            "https://api.example.com/page/1",
            headers={"Authorization": "Bearer secret"},
            timeout=300,
        )

    def test_merges_additional_headers(self):
        session = make_session()
        client = BearerTokenHttpClient(token="secret", session=session)

        client.get("https://api.example.com/page/1", headers={"Accept": "application/json"})

        _, kwargs = session.get.call_args
        assert kwargs["headers"] == {"Authorization": "Bearer secret", "Accept": "application/json"}

    def test_fails_when_url_is_empty(self):
        client = BearerTokenHttpClient(token="secret", session=make_session())

        with pytest.raises(AssertionError, match="URL cannot be empty"):
            client.get("")

    def test_fails_when_timeout_is_not_positive(self):
        client = BearerTokenHttpClient(token="secret", session=make_session())

        with pytest.raises(AssertionError, match="Timeout must be greater than 0"):
            client.get("https://api.example.com/page/1", timeout=0)

    def test_does_not_send_request_when_cancelled(self):
        session = make_session()
        client = BearerTokenHttpClient(token="secret", session=session)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            client.get("https://api.example.com/page/1", cancellation=token)

        session.get.assert_not_called()

    def test_propagates_request_exceptions(self):
        session = make_session()
        session.get.side_effect = requests.ConnectionError("refused")
        client = BearerTokenHttpClient(token="secret", session=session)

        with pytest.raises(requests.ConnectionError):
            client.get("https://api.example.com/page/1")

    def test_close_closes_session(self):
        session = make_session()
        client = BearerTokenHttpClient(token="secret", session=session)

        client.close()

        session.close.assert_called_once()
