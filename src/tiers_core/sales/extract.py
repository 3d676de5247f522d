"""Extract orders from the Shopify Admin GraphQL API.

This module fetches the order/line-item/refund payloads the aggregator
needs for a window, and converts them into OrderRecord objects.

Resiliency happens at two levels:
- Transport: a requests Session with urllib3 Retry for 5xx responses and a
  default timeout (``make_session``).
- API: GraphQL cost throttling (HTTP 429 or a THROTTLED error) is retried
  with exponential backoff plus jitter, capped at 8 seconds.

Environment:
    SHOPIFY_STORE_DOMAIN: Shop domain, e.g. "my-shop.myshopify.com" (required)
    SHOPIFY_ADMIN_TOKEN: Admin API access token (required)
    SHOPIFY_GQL_RETRY_MAX: Throttle retry attempts (default 6)
    SHOPIFY_GQL_MIN_DELAY_MS: Base backoff delay in ms (default 300, min 50)
    SHOPIFY_GQL_INTER_DELAY_MS: Pause after each successful call (default 0)
    SHOPIFY_TIMEOUT: Request timeout in seconds (default 60)
"""

from __future__ import annotations

import logging
import os
import random
import time
from collections.abc import Callable, Iterator
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from tiers_core.config import AccountingPolicy
from tiers_core.exceptions import ConfigError, ExtractionError
from tiers_core.sales.models import OrderRecord, SalesWindow
from tiers_core.sales.transform import parse_order_node

logger = logging.getLogger(__name__)

API_VERSION = "2024-07"
MAX_BACKOFF_SECONDS = 8.0
PAGE_SIZE = 100

DEFAULT_TIMEOUT = float(os.environ.get("SHOPIFY_TIMEOUT", "60"))
DEFAULT_RETRIES = 3

ORDERS_QUERY = """
query Orders($first: Int!, $after: String, $query: String!) {
  orders(first: $first, after: $after, query: $query) {
    edges {
      cursor
      node {
        id
        createdAt
        processedAt
        taxesIncluded
        app { name }
        lineItems(first: 250) {
          edges {
            node {
              quantity
              discountedTotalSet { shopMoney { amount } }
              taxLines { priceSet { shopMoney { amount } } }
              variant { id sku title product { id title } }
            }
          }
        }
        refunds {
          createdAt
          refundLineItems(first: 250) {
            edges {
              node {
                quantity
                lineItem { variant { id sku title product { id title } } }
              }
            }
          }
        }
      }
    }
    pageInfo { hasNextPage }
  }
}
"""


def make_session(
    timeout: float = DEFAULT_TIMEOUT, retries: int = DEFAULT_RETRIES
) -> requests.Session:
    """Create a requests Session with retry logic and default timeout.

    Configures the session with:
    - Retry adapter for HTTPS with exponential backoff on 500, 502, 503, 504
    - Default timeout for all requests

    HTTP 429 is left to the caller, which applies GraphQL-aware backoff.

    Args:
        timeout: Default timeout in seconds for all requests.
        retries: Number of transport-level retry attempts.

    Returns:
        Configured requests.Session object.
    """
    s = requests.Session()
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=0.8,  # 0.8, 1.6, 3.2, ...
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=frozenset({"GET", "POST"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    orig_request = s.request

    def timed_request(method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", timeout)
        return orig_request(method, url, **kwargs)

    s.request = timed_request  # type: ignore[method-assign,assignment]
    return s


def backoff_delay(
    attempt: int,
    base_delay: float,
    jitter: Callable[[], float] = random.random,
) -> float:
    """Seconds to wait before retry ``attempt`` (1-based).

    ``base_delay * 2**(attempt - 1)`` plus up to 200 ms of jitter, capped
    at MAX_BACKOFF_SECONDS.
    """
    return min(MAX_BACKOFF_SECONDS, base_delay * 2 ** (attempt - 1) + 0.2 * jitter())


def is_throttled(status_code: int, errors: list[dict[str, Any]]) -> bool:
    """Return True for HTTP 429 or a GraphQL THROTTLED error."""
    if status_code == 429:
        return True
    for error in errors:
        code = ((error or {}).get("extensions") or {}).get("code")
        if code == "THROTTLED" or "throttled" in str((error or {}).get("message", "")).lower():
            return True
    return False


def build_search_query(window: SalesWindow, policy: AccountingPolicy) -> str:
    """Build the Shopify order search string for a window.

    Examples:
        >>> build_search_query(window, AccountingPolicy(extra_query=""))
        'processed_at:>=2025-01-01T00:00:00+00:00 processed_at:<2025-02-01T00:00:00+00:00'
    """
    start, end = window.to_iso()
    field = policy.time_field
    query = f"{field}:>={start} {field}:<{end}"
    extra = (policy.extra_query or "").strip()
    return f"{query} {extra}" if extra else query


class ShopifyOrdersClient:
    """Fetch orders from the Shopify Admin GraphQL API.

    Example:
        >>> client = ShopifyOrdersClient.from_env()
        >>> orders = client.fetch_orders(window, AccountingPolicy.from_env())
    """

    def __init__(
        self,
        store_domain: str,
        access_token: str,
        *,
        api_version: str = API_VERSION,
        session: requests.Session | None = None,
        max_attempts: int = 6,
        base_delay: float = 0.3,
        inter_delay: float = 0.0,
        page_size: int = PAGE_SIZE,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not store_domain or not access_token:
            raise ConfigError("Shopify store domain and admin token are required")
        self.store_domain = store_domain.strip().rstrip("/")
        self.access_token = access_token
        self.api_version = api_version
        self.session = session or make_session()
        self.max_attempts = max(1, max_attempts)
        self.base_delay = max(0.05, base_delay)
        self.inter_delay = max(0.0, inter_delay)
        self.page_size = page_size
        self._sleep = sleep

    @classmethod
    def from_env(cls) -> ShopifyOrdersClient:
        """Create a client from SHOPIFY_* environment variables.

        Raises:
            ConfigError: If SHOPIFY_STORE_DOMAIN or SHOPIFY_ADMIN_TOKEN is unset.
        """
        domain = os.environ.get("SHOPIFY_STORE_DOMAIN", "")
        token = os.environ.get("SHOPIFY_ADMIN_TOKEN", "")
        if not (domain and token):
            raise ConfigError("SHOPIFY_STORE_DOMAIN and SHOPIFY_ADMIN_TOKEN must be set")
        return cls(
            domain,
            token,
            max_attempts=int(os.environ.get("SHOPIFY_GQL_RETRY_MAX", "6")),
            base_delay=float(os.environ.get("SHOPIFY_GQL_MIN_DELAY_MS", "300")) / 1000,
            inter_delay=float(os.environ.get("SHOPIFY_GQL_INTER_DELAY_MS", "0")) / 1000,
        )

    @property
    def url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}/graphql.json"

    def execute(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Run one GraphQL request, retrying on throttling and network errors.

        Raises:
            ExtractionError: On a non-throttle GraphQL/HTTP error, or when all
                attempts are exhausted.
        """
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = self.session.post(
                    self.url,
                    json={"query": query, "variables": variables},
                    headers={
                        "Content-Type": "application/json",
                        "X-Shopify-Access-Token": self.access_token,
                    },
                )
            except requests.RequestException as e:
                last_error = e
                delay = backoff_delay(attempt, self.base_delay)
                logger.warning(
                    "Shopify request failed (attempt %d/%d): %s; retrying in %.2fs",
                    attempt,
                    self.max_attempts,
                    e,
                    delay,
                )
                self._sleep(delay)
                continue

            try:
                data = resp.json() if resp.content else {}
            except ValueError:
                data = {}
            if not isinstance(data, dict):
                data = {}
            errors = data.get("errors") if isinstance(data.get("errors"), list) else []

            if is_throttled(resp.status_code, errors):
                delay = backoff_delay(attempt, self.base_delay)
                logger.info(
                    "Shopify throttled (attempt %d/%d); retrying in %.2fs",
                    attempt,
                    self.max_attempts,
                    delay,
                )
                last_error = ExtractionError(f"Throttled: HTTP {resp.status_code}")
                self._sleep(delay)
                continue

            if not (200 <= resp.status_code < 300) or errors:
                detail = errors if errors else resp.text[:200]
                raise ExtractionError(
                    f"Shopify GraphQL error: HTTP {resp.status_code}: {detail}"
                )

            if self.inter_delay:
                self._sleep(self.inter_delay)
            return data

        raise ExtractionError(
            f"Shopify GraphQL failed after {self.max_attempts} attempts"
        ) from last_error

    def paginate(
        self, query: str, path: str, variables: dict[str, Any]
    ) -> Iterator[dict[str, Any]]:
        """Yield every node of a cursor-paginated connection.

        Args:
            query: GraphQL query taking ``$after``.
            path: Dotted path to the connection under ``data`` (e.g. "orders").
            variables: Query variables other than ``after``.
        """
        after: str | None = None
        page = 1
        while True:
            data = self.execute(query, {**variables, "after": after})
            root: Any = data.get("data") or {}
            for key in path.split("."):
                root = (root or {}).get(key)
            edges = (root or {}).get("edges") or []
            logger.debug("Fetched %s page %d: %d nodes", path, page, len(edges))
            for edge in edges:
                yield edge.get("node") or {}
            if not ((root or {}).get("pageInfo") or {}).get("hasNextPage"):
                break
            after = edges[-1].get("cursor") if edges else None
            if not after:
                break
            page += 1

    def fetch_order_nodes(
        self, window: SalesWindow, policy: AccountingPolicy
    ) -> list[dict[str, Any]]:
        search = build_search_query(window, policy)
        logger.info("Fetching Shopify orders: %s", search)
        nodes = list(
            self.paginate(ORDERS_QUERY, "orders", {"first": self.page_size, "query": search})
        )
        logger.info("Fetched %d Shopify orders", len(nodes))
        return nodes

    def fetch_orders(self, window: SalesWindow, policy: AccountingPolicy) -> list[OrderRecord]:
        """Fetch and parse all orders in ``window`` selected by ``policy``."""
        return [parse_order_node(node) for node in self.fetch_order_nodes(window, policy)]
