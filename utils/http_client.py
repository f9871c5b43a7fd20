"""HTTP client with retries for upstream metric sources and event feeds."""
import time
import logging
import requests

from __version__ import __version__

logger = logging.getLogger("opswatch.http")


class APIError(Exception):
    """Upstream request error with status code and response body."""
    def __init__(self, message, status_code=None, response_body=None, source=None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.source = source


class HTTPClient:
    """JSON-over-HTTP client with bounded retries and optional bearer auth."""

    RETRYABLE_STATUS = {429, 500, 502, 503, 504}
    NON_RETRYABLE_STATUS = {400, 401, 403, 404}

    def __init__(self, base_url, timeout=10, max_retries=2, token=None, backoff=0.5):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": f"opswatch/{__version__}"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def get(self, path="", params=None):
        """GET a JSON document, retrying transient failures."""
        return self._request("GET", path, params=params)

    def post(self, path="", payload=None):
        return self._request("POST", path, json=payload)

    def _url(self, path):
        return f"{self.base_url}/{path.lstrip('/')}" if path else self.base_url

    def _request(self, method, path, **kwargs):
        url = self._url(path)
        last_error = None
        for attempt in range(self.max_retries + 1):
            try:
                start = time.time()
                resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
                latency = int((time.time() - start) * 1000)
                logger.debug(f"{method} {url} → {resp.status_code} ({latency}ms)")

                if 200 <= resp.status_code < 300:
                    try:
                        return resp.json()
                    except ValueError:
                        return resp.text

                if resp.status_code in self.NON_RETRYABLE_STATUS:
                    raise APIError(
                        f"HTTP {resp.status_code} from {url}",
                        status_code=resp.status_code,
                        response_body=resp.text,
                        source=self.base_url,
                    )

                if resp.status_code in self.RETRYABLE_STATUS:
                    last_error = APIError(f"HTTP {resp.status_code}", status_code=resp.status_code,
                                          source=self.base_url)
                    logger.warning(f"Retryable {resp.status_code} from {url} (attempt {attempt + 1})")
                else:
                    raise APIError(f"Unexpected HTTP {resp.status_code}", status_code=resp.status_code,
                                   source=self.base_url)

            except requests.exceptions.RequestException as e:
                logger.warning(f"Request error for {url}: {e} (attempt {attempt + 1})")
                last_error = APIError(str(e), source=self.base_url)

            if attempt < self.max_retries:
                time.sleep(self.backoff * (2 ** attempt))

        raise last_error or APIError(f"Max retries exceeded for {url}", source=self.base_url)
