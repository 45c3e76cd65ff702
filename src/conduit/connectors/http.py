"""
Generic JSON REST connector.

Options:
    url: Collection endpoint, e.g. ``https://api.example.com/v1/contacts``
    headers: Extra request headers
    api_key / api_key_header: Sent as ``{api_key_header}: {api_key}``
        (header defaults to ``Authorization`` with a ``Bearer`` prefix)
    results_key: Key holding the list of objects in a list response;
        omit when the response body is the list itself
    page_param / page_size_param / page_size: Page-number pagination
    next_key: Key holding the URL of the next page (link pagination)
    id_field: Field of a write response holding the new object id
"""

import logging
from typing import Dict, Iterator, List, Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..exceptions import ConfigurationError, SourceUnavailable, TargetRejected, TargetUnavailable
from .base import BaseConnector, ConnectorCapability

logger = logging.getLogger(__name__)

# Client errors that say nothing about the object itself
TRANSIENT_STATUS_CODES = {408, 429}

MAX_PAGES = 10000


class HttpConnector(BaseConnector):
    """
    Connector for JSON REST APIs exposing a collection endpoint.
    """

    def __init__(self, session: Optional[requests.Session] = None):
        super().__init__()

        if session is None:
            # Configure session with retries
            session = requests.Session()
            retry_strategy = Retry(
                total=3,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["GET", "PUT", "DELETE"],
                backoff_factor=1
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)

        self.session = session
        self.session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'User-Agent': 'Conduit-Sync/1.0'
        })

    def get_capabilities(self) -> ConnectorCapability:
        return ConnectorCapability(can_read=True, can_write=True, can_delete=True)

    def test_connection(self, options: Dict[str, Any], timeout: float = 10) -> bool:
        """Test connection to the collection endpoint."""
        try:
            response = self.session.get(
                self._url(options),
                headers=self._headers(options),
                timeout=timeout
            )
            return response.status_code < 400
        except requests.exceptions.RequestException as e:
            logger.error(f"HTTP connection test failed: {e}")
            return False

    # Request helpers

    @staticmethod
    def _url(options: Dict[str, Any], target_id: Optional[str] = None) -> str:
        url = options.get("url")
        if not url:
            raise ConfigurationError("HTTP connector requires a 'url' option")
        url = url.rstrip("/")
        return f"{url}/{target_id}" if target_id else url

    @staticmethod
    def _headers(options: Dict[str, Any]) -> Dict[str, str]:
        headers = dict(options.get("headers") or {})
        api_key = options.get("api_key")
        if api_key:
            header = options.get("api_key_header", "Authorization")
            headers[header] = f"Bearer {api_key}" if header == "Authorization" else api_key
        return headers

    @staticmethod
    def _describe_error(response: requests.Response) -> str:
        try:
            return f"HTTP {response.status_code}: {response.json()}"
        except ValueError:
            return f"HTTP {response.status_code}: {response.text}"

    # Source

    def _fetch(self, options: Dict[str, Any], timeout: float) -> Iterator[Dict[str, Any]]:
        url: Optional[str] = self._url(options)
        headers = self._headers(options)
        params: Dict[str, Any] = dict(options.get("params") or {})

        page_param = options.get("page_param")
        page_size_param = options.get("page_size_param")
        page_size = options.get("page_size")
        next_key = options.get("next_key")

        page = 1
        for _ in range(MAX_PAGES):
            if page_param:
                params[page_param] = page
            if page_size_param and page_size:
                params[page_size_param] = page_size

            logger.info(f"Fetching {url} page {page}")
            data = self._get_json(url, headers, params, timeout)
            items = self._extract_items(data, options.get("results_key"))

            for item in items:
                yield item

            if next_key and isinstance(data, dict):
                url = data.get(next_key)
                params = {}
                if not url:
                    return
            elif page_param and items and (not page_size or len(items) >= int(page_size)):
                page += 1
            else:
                return

        logger.warning(f"Stopped fetching {options.get('url')} after {MAX_PAGES} pages")

    def _get_json(self, url: str, headers: Dict[str, str], params: Dict[str, Any], timeout: float) -> Any:
        try:
            response = self.session.get(url, headers=headers, params=params, timeout=timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Source request to {url} failed: {e}")
            raise SourceUnavailable(f"Request to {url} failed: {e}") from e

        if response.status_code >= 400:
            raise SourceUnavailable(self._describe_error(response))

        try:
            return response.json()
        except ValueError as e:
            raise SourceUnavailable(f"Invalid JSON from {url}: {e}") from e

    @staticmethod
    def _extract_items(data: Any, results_key: Optional[str]) -> List[Dict[str, Any]]:
        if results_key:
            if not isinstance(data, dict):
                raise SourceUnavailable(f"Expected an object holding '{results_key}'")
            data = data.get(results_key) or []
        if not isinstance(data, list):
            raise SourceUnavailable(f"Expected a list of objects, got {type(data).__name__}")
        return [item for item in data if isinstance(item, dict)]

    # Target

    def _write(
        self,
        options: Dict[str, Any],
        payload: Dict[str, Any],
        existing_target_id: Optional[str],
        timeout: float
    ) -> str:
        method = "PUT" if existing_target_id else "POST"
        url = self._url(options, existing_target_id)
        response = self._send(method, url, options, timeout, json=payload)

        if existing_target_id:
            return existing_target_id

        id_field = options.get("id_field", "id")
        try:
            target_id = response.json().get(id_field)
        except (ValueError, AttributeError):
            target_id = None
        if target_id in (None, ""):
            raise TargetRejected(f"Response from {url} did not contain '{id_field}'")
        return str(target_id)

    def _delete(self, options: Dict[str, Any], target_id: str, timeout: float) -> None:
        url = self._url(options, target_id)
        try:
            self._send("DELETE", url, options, timeout)
        except TargetRejected as e:
            if "HTTP 404" in str(e) or "HTTP 410" in str(e):
                logger.info(f"Target {target_id} already deleted")
                return
            raise

    def _send(self, method: str, url: str, options: Dict[str, Any], timeout: float, **kwargs) -> requests.Response:
        try:
            logger.debug(f"Making {method} request to {url}")
            response = self.session.request(method, url, headers=self._headers(options), timeout=timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"Target request {method} {url} failed: {e}")
            raise TargetUnavailable(f"{method} {url} failed: {e}") from e

        if response.status_code >= 500 or response.status_code in TRANSIENT_STATUS_CODES:
            raise TargetUnavailable(self._describe_error(response))
        if response.status_code >= 400:
            raise TargetRejected(self._describe_error(response))
        return response
