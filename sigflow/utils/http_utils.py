import logging
import ssl
from typing import Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from sigflow.configs import settings

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    def __init__(self, status_code, message, retryable=True):
        self.status_code = status_code
        self.message = message
        self.retryable = retryable
        super().__init__(message)


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, DownloadError) and error.retryable


def build_default_ssl_context() -> ssl.SSLContext:
    """
    Build the default SSL context using the system trust store.
    """
    return ssl.create_default_context()


DEFAULT_SSL_CONTEXT = build_default_ssl_context()


def create_httpx_client(
    follow_redirects: bool = True, ssl_context: Optional[ssl.SSLContext] = None, **kwargs
) -> httpx.AsyncClient:
    """
    Create an HTTPX AsyncClient using the configured transport mounts and timeout.

    Args:
        follow_redirects (bool): Whether to follow 3xx redirects automatically.
        ssl_context (ssl.SSLContext | None): Explicit SSLContext to use. Defaults to the system trust store.
        **kwargs: Additional AsyncClient keyword arguments.

    Returns:
        httpx.AsyncClient: Configured client.
    """
    mounts = settings.transport_config.get_mounts()
    kwargs.setdefault("timeout", settings.transport_config.timeout)
    kwargs.setdefault("headers", {"user-agent": settings.user_agent})
    return httpx.AsyncClient(
        mounts=mounts,
        follow_redirects=follow_redirects,
        verify=ssl_context or DEFAULT_SSL_CONTEXT,
        **kwargs,
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=4, max=10),
    retry=retry_if_exception(is_retryable),
    reraise=True,
)
async def fetch_with_retry(client, method, url, headers=None, follow_redirects=True, **kwargs):
    """
    Fetch a URL with retry logic.

    Args:
        client (httpx.AsyncClient): HTTP client to use for the request.
        method (str): HTTP method (e.g., GET, POST).
        url (str): Target URL.
        headers (dict): Request headers.
        follow_redirects (bool): Whether to follow redirects.
        **kwargs: Additional request arguments.

    Returns:
        httpx.Response: HTTP response.

    Raises:
        DownloadError: If the request fails after retries, or at once for client errors.
    """
    try:
        response = await client.request(method, url, headers=headers, follow_redirects=follow_redirects, **kwargs)
        response.raise_for_status()
        return response
    except httpx.TimeoutException:
        logger.warning(f"Timeout while downloading {url}")
        raise DownloadError(409, f"Timeout while downloading {url}")
    except httpx.HTTPStatusError as e:
        status_code = e.response.status_code
        logger.error(f"HTTP error {status_code} while downloading {url}")
        # 408 and 429 are the only client errors that are retried
        retryable = not (400 <= status_code < 500) or status_code in (408, 429)
        raise DownloadError(status_code, f"HTTP error {status_code} while downloading {url}", retryable=retryable)
    except httpx.RequestError as e:
        logger.error(f"Error downloading {url}: {e}")
        raise DownloadError(502, f"Error downloading {url}: {e}")


async def download_text_with_retry(url: str, headers: Optional[dict] = None, client: Optional[httpx.AsyncClient] = None) -> str:
    """
    Download a text document (watch page, player script, manifest) with retry logic.

    Args:
        url (str): Document URL.
        headers (dict): Request headers.
        client (httpx.AsyncClient, optional): Client to reuse. A short-lived one is created when omitted.

    Returns:
        str: The decoded response body.

    Raises:
        DownloadError: If the download fails after retries.
    """
    try:
        if client is not None:
            response = await fetch_with_retry(client, "GET", url, headers)
            return response.text
        async with create_httpx_client() as own_client:
            response = await fetch_with_retry(own_client, "GET", url, headers)
            return response.text
    except DownloadError as e:
        logger.error(f"Failed to download {url}: {e}")
        raise
