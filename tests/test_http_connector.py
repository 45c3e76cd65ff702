"""Tests for the generic JSON REST connector."""

from unittest.mock import MagicMock

import pytest
import requests

from conduit.connectors.http import HttpConnector
from conduit.exceptions import ConfigurationError, SourceUnavailable, TargetRejected, TargetUnavailable
from conduit.models.definition import SourceConfig

URL = "https://crm.example.com/api/contacts"


def _response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = str(payload)
    return response


@pytest.fixture
def session():
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def connector(session):
    return HttpConnector(session=session)


def _fetch(connector, **options):
    source_config = SourceConfig.model_validate({"type": "http", "url": URL, **options})
    return list(connector.fetch(source_config, source_config.options(), timeout=5))


class TestFetch:
    def test_single_list_response(self, connector, session):
        session.get.return_value = _response(payload=[{"id": 1, "name": "Ada"}, {"id": 2, "name": "Alan"}])

        objects = _fetch(connector)

        assert [obj.origin_id for obj in objects] == ["1", "2"]
        assert objects[0].payload == {"id": 1, "name": "Ada"}
        session.get.assert_called_once_with(URL, headers={}, params={}, timeout=5)

    def test_page_number_pagination(self, connector, session):
        session.get.side_effect = [
            _response(payload={"results": [{"id": 1}, {"id": 2}]}),
            _response(payload={"results": [{"id": 3}]}),
        ]

        objects = _fetch(connector, results_key="results", page_param="page",
                         page_size_param="per_page", page_size=2)

        assert [obj.origin_id for obj in objects] == ["1", "2", "3"]
        assert session.get.call_count == 2
        assert session.get.call_args.kwargs["params"] == {"page": 2, "per_page": 2}

    def test_link_pagination(self, connector, session):
        session.get.side_effect = [
            _response(payload={"items": [{"id": "a"}], "next": f"{URL}?cursor=2"}),
            _response(payload={"items": [{"id": "b"}], "next": None}),
        ]

        objects = _fetch(connector, results_key="items", next_key="next")

        assert [obj.origin_id for obj in objects] == ["a", "b"]
        assert session.get.call_args.args[0] == f"{URL}?cursor=2"

    def test_custom_origin_id_field(self, connector, session):
        session.get.return_value = _response(payload=[{"uid": "x1"}, {"name": "no id"}])

        objects = _fetch(connector, originIdField="uid")

        assert [obj.origin_id for obj in objects] == ["x1", None]

    def test_server_error_is_source_unavailable(self, connector, session):
        session.get.return_value = _response(503, {"error": "maintenance"})

        with pytest.raises(SourceUnavailable, match="HTTP 503"):
            _fetch(connector)

    def test_connection_error_is_source_unavailable(self, connector, session):
        session.get.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(SourceUnavailable, match="refused"):
            _fetch(connector)

    def test_unexpected_body_is_source_unavailable(self, connector, session):
        session.get.return_value = _response(payload={"not": "a list"})

        with pytest.raises(SourceUnavailable, match="Expected a list"):
            _fetch(connector)

    def test_api_key_header(self, connector, session):
        session.get.return_value = _response(payload=[])

        _fetch(connector, api_key="k-123")

        assert session.get.call_args.kwargs["headers"] == {"Authorization": "Bearer k-123"}

    def test_missing_url(self, connector):
        source_config = SourceConfig(type="http")
        with pytest.raises(ConfigurationError):
            list(connector.fetch(source_config, source_config.options(), timeout=5))


class TestWrite:
    def test_create_returns_new_id(self, connector, session):
        session.request.return_value = _response(201, {"id": 42})

        target_id = connector.write({"url": URL}, {"name": "Ada"}, timeout=5)

        assert target_id == "42"
        session.request.assert_called_once_with("POST", URL, headers={}, timeout=5, json={"name": "Ada"})

    def test_update_uses_existing_id(self, connector, session):
        session.request.return_value = _response(200, {})

        target_id = connector.write({"url": URL}, {"name": "Ada"}, existing_target_id="42", timeout=5)

        assert target_id == "42"
        assert session.request.call_args.args[:2] == ("PUT", f"{URL}/42")

    def test_create_without_id_in_response_is_rejected(self, connector, session):
        session.request.return_value = _response(201, {"ok": True})

        with pytest.raises(TargetRejected, match="did not contain 'id'"):
            connector.write({"url": URL}, {"name": "Ada"})

    @pytest.mark.parametrize("status_code, error", [
        (400, TargetRejected),
        (422, TargetRejected),
        (408, TargetUnavailable),
        (429, TargetUnavailable),
        (502, TargetUnavailable),
    ])
    def test_status_codes(self, connector, session, status_code, error):
        session.request.return_value = _response(status_code, {"message": "nope"})

        with pytest.raises(error):
            connector.write({"url": URL}, {"name": "Ada"})

    def test_timeout_is_target_unavailable(self, connector, session):
        session.request.side_effect = requests.exceptions.Timeout("read timed out")

        with pytest.raises(TargetUnavailable, match="read timed out"):
            connector.write({"url": URL}, {"name": "Ada"})


class TestDelete:
    def test_delete(self, connector, session):
        session.request.return_value = _response(204)

        connector.delete({"url": URL}, "42")

        assert session.request.call_args.args[:2] == ("DELETE", f"{URL}/42")

    @pytest.mark.parametrize("status_code", [404, 410])
    def test_already_deleted_is_not_an_error(self, connector, session, status_code):
        session.request.return_value = _response(status_code, {"message": "gone"})

        connector.delete({"url": URL}, "42")


def test_connection_check(connector, session):
    session.get.return_value = _response(200, [])
    assert connector.test_connection({"url": URL}) is True

    session.get.side_effect = requests.exceptions.ConnectionError("refused")
    assert connector.test_connection({"url": URL}) is False
