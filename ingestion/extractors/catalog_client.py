"""
HTTP client for the external vehicle catalog feed.

This module provides:
- Single-page fetches with pagination metadata
- Exponential backoff retry logic for transient failures
- Circuit breaker pattern shared across page fetches and lookups
- Point lookups by license plate or origin code, implemented as a bounded
  page scan because the feed has no search endpoint
"""

import httpx
import asyncio
from typing import Dict, Any, Optional, Callable
from datetime import datetime, timedelta
from core.config import settings
from core.exceptions import (
    CatalogRequestError,
    CatalogResponseError,
    CatalogLookupError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
)
from schemas.catalog import CatalogPage, CatalogVehicle
import logging

logger = logging.getLogger(__name__)

USER_AGENT = "catalog-sync/1.0"


class CatalogClient:
    """
    Read-only access to the paginated catalog feed.

    Attributes:
        page_size: Records per page for the sync pass (default: 10)
        max_retries: Attempts per page fetch (default: 3)
        retry_delay: Initial retry delay in seconds (default: 1.0)
        timeout: Request timeout in seconds (default: 60.0)
        search_page_size: Records per page while scanning for a lookup (default: 100)
        search_max_pages: Pages a lookup scans before giving up (default: 500)
        max_consecutive_errors: Failed pages in a row that abort a lookup (default: 3)
        circuit_breaker_threshold: Failures before circuit opens (default: 5)
        circuit_breaker_timeout: Seconds before circuit reset (default: 60)
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        page_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        page_delay: Optional[float] = None,
        search_page_size: Optional[int] = None,
        search_max_pages: Optional[int] = None,
        max_consecutive_errors: Optional[int] = None,
    ):
        self.api_url = api_url or settings.CATALOG_API_URL
        self.api_key = api_key if api_key is not None else settings.CATALOG_API_KEY
        self.page_size = page_size or settings.CATALOG_PAGE_SIZE
        self.max_retries = max_retries or settings.CATALOG_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.CATALOG_RETRY_DELAY
        self.timeout = timeout or settings.CATALOG_TIMEOUT
        self.page_delay = page_delay if page_delay is not None else settings.CATALOG_PAGE_DELAY
        self.error_delay = self.page_delay * 2.5
        self.search_page_size = search_page_size or settings.CATALOG_SEARCH_PAGE_SIZE
        self.search_max_pages = search_max_pages or settings.CATALOG_SEARCH_MAX_PAGES
        self.max_consecutive_errors = max_consecutive_errors or settings.CATALOG_SEARCH_MAX_CONSECUTIVE_ERRORS

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = 5
        self._circuit_breaker_open_until: Optional[datetime] = None
        self._circuit_breaker_timeout = 60  # seconds

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False

        if datetime.utcnow() >= self._circuit_breaker_open_until:
            logger.info("Circuit breaker reset for catalog feed")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        """Record a failure and potentially open circuit breaker."""
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = datetime.utcnow() + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened for catalog feed. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        """Record a successful request."""
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise AuthenticationError(
                "Catalog API key is not configured",
                context={"api_url": self.api_url}
            )
        return {
            "x-api-key": self.api_key,
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    def _page_params(self, page: int, per_page: int) -> Dict[str, Any]:
        return {
            "page": page,
            "per_page": per_page,
            "include_stock_info": "true",
            "include_images": "true",
        }

    async def _make_request_with_retry(
        self,
        client: httpx.AsyncClient,
        params: Dict[str, Any],
        attempts: Optional[int] = None
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic and exponential backoff.

        Raises:
            CatalogRequestError: circuit open or unexpected failure
            AuthenticationError / ResourceNotFoundError: not retried
            NetworkError / RateLimitError: after the last attempt
        """
        if self._is_circuit_open():
            raise CatalogRequestError(
                "Circuit breaker is open for catalog feed",
                context={
                    "api_url": self.api_url,
                    "page": params.get("page"),
                    "open_until": self._circuit_breaker_open_until.isoformat()
                }
            )

        headers = self._headers()
        max_attempts = attempts or self.max_retries
        last_exception = None

        for attempt in range(max_attempts):
            try:
                logger.debug(f"Request attempt {attempt + 1}/{max_attempts} for page {params.get('page')}")

                response = await client.get(
                    self.api_url,
                    headers=headers,
                    params=params,
                    timeout=self.timeout
                )

                if response.status_code == 401 or response.status_code == 403:
                    self._record_failure()
                    raise AuthenticationError(
                        f"Authentication failed for {self.api_url}",
                        context={"status_code": response.status_code, "api_url": self.api_url}
                    )

                if response.status_code == 404:
                    raise ResourceNotFoundError(
                        f"Page not found: {params.get('page')}",
                        context={"status_code": 404, "api_url": self.api_url, "page": params.get("page")}
                    )

                if response.status_code == 429:
                    retry_after = self._retry_after(response, attempt)
                    logger.warning(f"Rate limited. Retrying after {retry_after} seconds")

                    if attempt < max_attempts - 1:
                        await asyncio.sleep(retry_after)
                        continue
                    self._record_failure()
                    raise RateLimitError(
                        f"Rate limit exceeded for {self.api_url}",
                        context={
                            "status_code": 429,
                            "api_url": self.api_url,
                            "page": params.get("page"),
                            "retry_count": attempt + 1
                        },
                        retry_after=retry_after
                    )

                if response.status_code >= 500:
                    if attempt < max_attempts - 1:
                        delay = self.retry_delay * (2 ** attempt)
                        logger.warning(
                            f"Server error {response.status_code}. "
                            f"Retrying in {delay} seconds (attempt {attempt + 1}/{max_attempts})"
                        )
                        await asyncio.sleep(delay)
                        continue
                    self._record_failure()
                    raise NetworkError(
                        f"Server error after {max_attempts} attempts",
                        context={
                            "status_code": response.status_code,
                            "api_url": self.api_url,
                            "page": params.get("page"),
                            "retry_count": attempt + 1,
                            "response_body": response.text[:500]
                        }
                    )

                if response.status_code >= 400:
                    self._record_failure()
                    raise CatalogRequestError(
                        f"Unexpected status {response.status_code} from catalog feed",
                        context={"api_url": self.api_url, "page": params.get("page"), "status_code": response.status_code}
                    )

                self._record_success()
                return response

            except httpx.TransportError as e:
                last_exception = e
                if isinstance(e, httpx.TimeoutException):
                    kind = "timeout"
                elif isinstance(e, httpx.NetworkError):
                    kind = "network error"
                else:
                    kind = f"transport error ({type(e).__name__})"
                if attempt < max_attempts - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Request {kind}. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                else:
                    self._record_failure()
                    raise NetworkError(
                        f"Request {kind} after {max_attempts} attempts",
                        context={
                            "api_url": self.api_url,
                            "page": params.get("page"),
                            "timeout": self.timeout,
                            "retry_count": attempt + 1
                        },
                        original_exception=e
                    )

            except CatalogRequestError:
                raise

            except (httpx.HTTPError, httpx.InvalidURL) as e:
                # Decoding errors, redirect loops, a malformed api_url: retrying won't help
                self._record_failure()
                raise CatalogRequestError(
                    f"Request failed: {type(e).__name__}",
                    context={"api_url": self.api_url, "page": params.get("page"), "retry_count": attempt + 1},
                    original_exception=e
                )

        raise CatalogRequestError(
            "Max retries exceeded",
            context={"api_url": self.api_url, "page": params.get("page")},
            original_exception=last_exception
        )

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        default = self.retry_delay * (2 ** attempt)
        try:
            return float(response.headers.get("Retry-After", default))
        except (TypeError, ValueError):
            return default

    @staticmethod
    def _parse_page(page: int, response: httpx.Response) -> CatalogPage:
        try:
            payload = response.json()
        except ValueError as e:
            raise CatalogResponseError(
                "Failed to parse JSON response",
                context={"page": page, "reason": "invalid json", "response_body": response.text[:500]},
                original_exception=e
            )

        if isinstance(payload, list):
            payload = {"data": payload}
        if not isinstance(payload, dict):
            raise CatalogResponseError(
                "Unexpected response shape",
                context={"page": page, "reason": f"top-level {type(payload).__name__}"}
            )
        return CatalogPage.from_payload(page, payload)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_page(self, page: int, per_page: Optional[int] = None) -> CatalogPage:
        """Fetch one page of the feed (1-indexed)."""
        per_page = per_page or self.page_size
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await self._make_request_with_retry(client, self._page_params(page, per_page))
        result = self._parse_page(page, response)
        logger.debug(
            f"Fetched page {page}: {len(result.records)} records "
            f"(meta {result.meta.current_page}/{result.meta.total_pages})"
        )
        return result

    async def find_by_license_plate(self, license_plate: str) -> Optional[CatalogVehicle]:
        """Scan the feed for a record with this license plate."""
        target = (license_plate or "").strip().upper()
        if not target:
            return None
        return await self._scan(
            "license_plate",
            target,
            lambda record: (record.license_plate or "").strip().upper() == target,
        )

    async def find_by_origin(self, origin: str) -> Optional[CatalogVehicle]:
        """Scan the feed for a record with this origin code."""
        target = (origin or "").strip().upper()
        if not target:
            return None
        return await self._scan(
            "origin",
            target,
            lambda record: (record.origin or "").strip().upper() == target,
        )

    async def _scan(
        self,
        key_type: str,
        key: str,
        matches: Callable[[CatalogVehicle], bool]
    ) -> Optional[CatalogVehicle]:
        """
        Page through the feed until a record matches.

        Returns None when every page up to the end of the feed (or the page
        ceiling) was read without a match. Raises CatalogLookupError when the
        circuit breaker is open, when too many pages in a row fail, or when
        any page was skipped, since "not found" would then be a guess.
        """
        if self._is_circuit_open():
            raise CatalogLookupError(
                f"Circuit breaker is open; cannot look up {key_type} {key}",
                context={"key_type": key_type, "key": key, "pages_scanned": 0}
            )

        consecutive_errors = 0
        pages_scanned = 0
        failed_pages = []
        page = 1

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            while page <= self.search_max_pages:
                try:
                    response = await self._make_request_with_retry(
                        client, self._page_params(page, self.search_page_size), attempts=1
                    )
                    result = self._parse_page(page, response)
                except (AuthenticationError, ResourceNotFoundError) as e:
                    if isinstance(e, ResourceNotFoundError) and pages_scanned > 0:
                        # Walked past the last page
                        break
                    raise CatalogLookupError(
                        f"Lookup of {key_type} {key} failed: {e.message}",
                        context={"key_type": key_type, "key": key, "pages_scanned": pages_scanned},
                        original_exception=e
                    )
                except (CatalogRequestError, CatalogResponseError) as e:
                    consecutive_errors += 1
                    failed_pages.append(page)
                    logger.warning(
                        f"Lookup page {page} failed ({consecutive_errors}/{self.max_consecutive_errors}): {e.message}"
                    )
                    if consecutive_errors >= self.max_consecutive_errors:
                        raise CatalogLookupError(
                            f"Lookup of {key_type} {key} aborted after {consecutive_errors} consecutive errors",
                            context={"key_type": key_type, "key": key, "pages_scanned": pages_scanned},
                            original_exception=e
                        )
                    page += 1
                    await asyncio.sleep(self.error_delay)
                    continue

                consecutive_errors = 0
                pages_scanned += 1

                for record in result.records:
                    if matches(record):
                        logger.info(f"Found {key_type} {key} on page {page} (record {record.external_id})")
                        return record

                if not result.records or not result.has_more:
                    break

                page += 1
                await asyncio.sleep(self.page_delay)

        if failed_pages:
            raise CatalogLookupError(
                f"Lookup of {key_type} {key} inconclusive: pages {failed_pages} could not be read",
                context={"key_type": key_type, "key": key, "pages_scanned": pages_scanned, "failed_pages": failed_pages}
            )

        logger.info(f"No record with {key_type} {key} after scanning {pages_scanned} pages")
        return None
