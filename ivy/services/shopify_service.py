"""
Shopify Admin API client - authenticated REST and GraphQL requests.
Uses the configured API version (2024-01 by default). Never expose access_token to frontend.

Products are paginated with cursor links (Link header, rel="next"). Inventory items and
inventory levels are fetched in batches of 50 ids, one batch at a time, with the 429 backoff
from http_client. A failing batch is reported and skipped; the other batches still run.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Iterable, NamedTuple, Optional

import httpx

from ivy.config import settings
from ivy.services.credentials import decrypt_token
from ivy.services.http_client import get_with_backoff, request_with_backoff
from ivy.services.progress import ProgressReporter

logger = logging.getLogger(__name__)

VARIANT_GID_PREFIX = "gid://shopify/ProductVariant/"
GRAPHQL_NODE_BATCH = 250

VARIANT_METAFIELDS_QUERY = """
query GetVariantMetafields($ids: [ID!]!) {
  nodes(ids: $ids) {
    ... on ProductVariant {
      id
      sku
      metafields(first: 50) {
        edges {
          node {
            namespace
            key
            value
          }
        }
      }
    }
  }
}
"""

_LINK_NEXT_RE = re.compile(r'<([^>]+)>;\s*rel="?next"?', re.IGNORECASE)


def _parse_link_next(link_header: Optional[str]) -> Optional[str]:
    """Parse Link header; return URL for rel=next if present."""
    if not link_header:
        return None
    # Format: <url>; rel="previous", <url>; rel="next"
    for part in link_header.split(","):
        match = _LINK_NEXT_RE.search(part.strip())
        if match:
            return match.group(1).strip()
    return None


def _log_shopify_response(method: str, url: str, status: int, body_preview: str = "") -> None:
    """Log every Shopify API call for debugging. No sensitive data."""
    if status >= 400:
        logger.warning("Shopify API %s %s -> %s %s", method, url, status, body_preview[:200] if body_preview else "")
    else:
        logger.info("Shopify API %s %s -> %s", method, url, status)


def _base_url(shop_domain: str) -> str:
    shop = shop_domain.lower().strip()
    if not shop.endswith(".myshopify.com"):
        shop = f"{shop}.myshopify.com" if "." not in shop else shop
    return f"https://{shop}/admin/api/{settings.SHOPIFY_API_VERSION}"


def _headers(access_token: str) -> dict:
    return {
        "X-Shopify-Access-Token": access_token,
        "Content-Type": "application/json",
    }


def _report(reporter: Optional[ProgressReporter], message: str, type: str = "info") -> None:
    if reporter is not None:
        reporter.send(message, type)


def _unique_ids(ids: Iterable[Any]) -> list[str]:
    seen: dict[str, None] = {}
    for i in ids:
        if i is None or i == "":
            continue
        seen.setdefault(str(i), None)
    return list(seen)


def _chunks(items: list, size: int) -> Iterable[list]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def to_decimal(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


class InventoryLevelRow(NamedTuple):
    inventory_item_id: str
    location_id: str
    quantity: int


@dataclass
class BatchOutcome:
    """Result of a batched fetch: accumulated data plus retry / failure counters."""
    data: Any
    batches: int = 0
    retries: int = 0
    failed_batches: int = 0

    @property
    def complete(self) -> bool:
        return self.failed_batches == 0


def filter_configured_metafields(
    raw: dict[str, dict[tuple[str, str], str]],
    configs: Iterable[Any],
) -> dict[str, dict[str, str]]:
    """
    Keep only configured namespace.key pairs (case-insensitive exact match) and key them
    by the config's display name (falls back to "namespace.key").
    """
    configured: dict[str, Any] = {}
    for c in configs:
        namespace = getattr(c, "namespace", None) if not isinstance(c, dict) else c.get("namespace")
        key = getattr(c, "key", None) if not isinstance(c, dict) else c.get("key")
        display = getattr(c, "display_name", None) if not isinstance(c, dict) else c.get("display_name")
        if namespace and key:
            configured[f"{namespace}.{key}".lower()] = display

    result: dict[str, dict[str, str]] = {}
    for shopify_id, fields in raw.items():
        out: dict[str, str] = {}
        for (namespace, key), value in fields.items():
            if not value:
                continue
            full_key = f"{namespace}.{key}"
            if full_key.lower() not in configured:
                continue
            out[configured[full_key.lower()] or full_key] = value
        result[shopify_id] = out
    return result


class ShopifyClient:
    """Per-shop Shopify Admin API client. All batches run sequentially."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=asyncio.sleep,
        timeout: float = None,
        batch_size: int = None,
        max_retries: int = None,
    ):
        self.shop = shop_domain
        self.base_url = _base_url(shop_domain)
        self.headers = _headers(access_token)
        self.transport = transport
        self.sleep = sleep
        self.timeout = timeout if timeout is not None else settings.SHOPIFY_TIMEOUT
        self.batch_size = batch_size or settings.SHOPIFY_BATCH_SIZE
        self.max_retries = max_retries if max_retries is not None else settings.SHOPIFY_MAX_RETRIES

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(headers=self.headers, timeout=self.timeout, transport=self.transport)

    async def iter_active_products(
        self,
        product_type: Optional[str] = None,
        reporter: Optional[ProgressReporter] = None,
    ) -> AsyncIterator[dict]:
        """
        Yield active products page by page (250 per page), following rel=next links.
        A failed page is reported and ends the sequence.
        """
        url: Optional[str] = f"{self.base_url}/products.json"
        params: Optional[dict] = {"status": "active", "limit": settings.SHOPIFY_PAGE_LIMIT}
        if product_type:
            params["product_type"] = product_type
        page = 0
        async with self._client() as client:
            while url:
                page += 1
                try:
                    response = await client.get(url, params=params)
                except httpx.HTTPError as e:
                    logger.warning("Shopify products page %s failed: %s", page, e)
                    _report(reporter, f"❌ Erreur réseau Shopify (page {page}): {e}", "error")
                    return
                _log_shopify_response("GET", url, response.status_code, response.text[:300] if response.text else "")
                if not response.is_success:
                    _report(reporter, f"❌ Erreur API Shopify (page {page})", "error")
                    return
                products = response.json().get("products") or []
                _report(reporter, f"  └─ Page {page}: {len(products)} produits", "progress")
                for product in products:
                    yield product
                url = _parse_link_next(response.headers.get("link"))
                params = None  # page_info URL already carries its params

    async def _fetch_batched(
        self,
        path: str,
        id_param: str,
        ids: Iterable[Any],
        handle_batch,
        reporter: Optional[ProgressReporter],
        outcome: BatchOutcome,
    ) -> BatchOutcome:
        url = f"{self.base_url}/{path}"
        batches = list(_chunks(_unique_ids(ids), self.batch_size))
        total = len(batches)

        def on_rate_limited(retry: int, max_retries: int) -> None:
            _report(reporter, f"    ⏳ Rate limit, retry {retry}/{max_retries}...", "warning")

        async with self._client() as client:
            for num, batch in enumerate(batches, start=1):
                outcome.batches += 1
                _report(reporter, f"  └─ Batch {num}/{total} ({len(batch)} items)...", "progress")
                try:
                    result = await get_with_backoff(
                        client,
                        url,
                        params={id_param: ",".join(batch)},
                        max_retries=self.max_retries,
                        sleep=self.sleep,
                        on_rate_limited=on_rate_limited,
                    )
                except httpx.HTTPError as e:
                    outcome.failed_batches += 1
                    logger.warning("Shopify %s batch %s/%s failed: %s", path, num, total, e)
                    _report(reporter, f"    ❌ Erreur batch {num}: {e}", "error")
                    continue
                outcome.retries += result.retries
                status = result.response.status_code
                _log_shopify_response("GET", url, status, result.response.text[:300] if result.response.text else "")
                if result.ok:
                    try:
                        handle_batch(batch, result.response.json())
                    except ValueError as e:
                        outcome.failed_batches += 1
                        _report(reporter, f"    ❌ Réponse invalide batch {num}: {e}", "error")
                elif result.rate_limited:
                    outcome.failed_batches += 1
                    _report(reporter, f"    ❌ Batch {num}: rate limit après {self.max_retries} retries", "error")
                else:
                    outcome.failed_batches += 1
                    _report(reporter, f"    ❌ Erreur batch {num}: {status}", "error")
        return outcome

    async def fetch_inventory_item_costs(
        self,
        ids: Iterable[Any],
        reporter: Optional[ProgressReporter] = None,
    ) -> BatchOutcome:
        """Map inventory_item_id -> unit cost (Decimal, 0 when Shopify has none)."""
        costs: dict[str, Decimal] = {}
        counts = {"with_cost": 0, "without_cost": 0}

        def handle(batch: list[str], payload: dict) -> None:
            items = payload.get("inventory_items") or []
            for item in items:
                cost = to_decimal(item.get("cost"))
                costs[str(item.get("id"))] = cost
                counts["with_cost" if cost > 0 else "without_cost"] += 1
            if len(items) < len(batch):
                _report(reporter, f"    ⚠️ Reçu {len(items)}/{len(batch)} items", "warning")

        outcome = await self._fetch_batched(
            "inventory_items.json", "ids", ids, handle, reporter, BatchOutcome(data=costs)
        )
        _report(
            reporter,
            f"  └─ Total: {counts['with_cost']} avec coût, {counts['without_cost']} sans coût",
            "progress",
        )
        return outcome

    async def fetch_inventory_levels(
        self,
        ids: Iterable[Any],
        reporter: Optional[ProgressReporter] = None,
    ) -> BatchOutcome:
        """List (inventory_item_id, location_id, quantity) for the given inventory items."""
        rows: list[InventoryLevelRow] = []

        def handle(batch: list[str], payload: dict) -> None:
            for level in payload.get("inventory_levels") or []:
                if level.get("inventory_item_id") is None or level.get("location_id") is None:
                    continue
                rows.append(InventoryLevelRow(
                    inventory_item_id=str(level["inventory_item_id"]),
                    location_id=str(level["location_id"]),
                    quantity=int(level.get("available") or 0),
                ))

        return await self._fetch_batched(
            "inventory_levels.json", "inventory_item_ids", ids, handle, reporter, BatchOutcome(data=rows)
        )

    async def fetch_raw_variant_metafields(self, variant_ids: Iterable[Any]) -> dict[str, dict[tuple[str, str], str]]:
        """
        All metafields of the given variants via one GraphQL nodes() query per 250 ids.
        Returns {variant shopify_id: {(namespace, key): value}}. Errors give an empty result for the batch.
        """
        ids = _unique_ids(variant_ids)
        result: dict[str, dict[tuple[str, str], str]] = {}
        if not ids:
            return result
        url = f"{self.base_url}/graphql.json"
        async with self._client() as client:
            for batch in _chunks(ids, GRAPHQL_NODE_BATCH):
                gids = [f"{VARIANT_GID_PREFIX}{i}" for i in batch]
                try:
                    response = await client.post(
                        url,
                        json={"query": VARIANT_METAFIELDS_QUERY, "variables": {"ids": gids}},
                    )
                except httpx.HTTPError as e:
                    logger.warning("Shopify GraphQL metafields request failed: %s", e)
                    continue
                _log_shopify_response("POST", url, response.status_code, response.text[:300] if response.text else "")
                if not response.is_success:
                    continue
                try:
                    payload = response.json()
                except ValueError:
                    logger.warning("Shopify GraphQL metafields: response is not JSON, batch skipped")
                    continue
                if not isinstance(payload, dict):
                    continue
                if payload.get("errors"):
                    logger.warning("Shopify GraphQL errors: %s", payload["errors"])
                    continue
                for node in (payload.get("data") or {}).get("nodes") or []:
                    if not node or not node.get("id"):
                        continue
                    shopify_id = str(node["id"]).replace(VARIANT_GID_PREFIX, "")
                    fields = result.setdefault(shopify_id, {})
                    for edge in (node.get("metafields") or {}).get("edges") or []:
                        mf = (edge or {}).get("node") or {}
                        if mf.get("value"):
                            fields[(mf.get("namespace") or "", mf.get("key") or "")] = mf["value"]
        return result

    async def fetch_variant_metafields(
        self,
        variant_ids: Iterable[Any],
        configs: Iterable[Any],
    ) -> dict[str, dict[str, str]]:
        """Configured metafields only, keyed by display name: {variant shopify_id: {display name: value}}."""
        configs = list(configs)
        if not configs:
            return {}
        raw = await self.fetch_raw_variant_metafields(variant_ids)
        return filter_configured_metafields(raw, configs)

    async def update_inventory_item_costs(
        self,
        costs: dict[str, Decimal],
        reporter: Optional[ProgressReporter] = None,
    ) -> BatchOutcome:
        """PUT the unit cost of each inventory item, progress reported per batch of 50."""
        updated: set[str] = set()
        outcome = BatchOutcome(data=updated)
        items = [(str(k), v) for k, v in costs.items() if k]
        batches = list(_chunks(items, self.batch_size))
        total = len(batches)

        def on_rate_limited(retry: int, max_retries: int) -> None:
            _report(reporter, f"    ⏳ Rate limit, retry {retry}/{max_retries}...", "warning")

        async with self._client() as client:
            for num, batch in enumerate(batches, start=1):
                outcome.batches += 1
                _report(reporter, f"  └─ Batch {num}/{total} ({len(batch)} variantes)...", "progress")
                failures = 0
                for inventory_item_id, cost in batch:
                    url = f"{self.base_url}/inventory_items/{inventory_item_id}.json"
                    try:
                        result = await request_with_backoff(
                            client,
                            "PUT",
                            url,
                            json={"inventory_item": {"id": int(inventory_item_id), "cost": f"{cost:.2f}"}},
                            max_retries=self.max_retries,
                            sleep=self.sleep,
                            on_rate_limited=on_rate_limited,
                        )
                    except (httpx.HTTPError, ValueError) as e:
                        failures += 1
                        logger.warning("Shopify cost update %s failed: %s", inventory_item_id, e)
                        continue
                    outcome.retries += result.retries
                    _log_shopify_response("PUT", url, result.response.status_code)
                    if result.ok:
                        updated.add(inventory_item_id)
                    else:
                        failures += 1
                if failures:
                    outcome.failed_batches += 1
                    _report(reporter, f"    ❌ Batch {num}: {failures} échec(s)", "error")
        return outcome


def client_for_shop(shop, **kwargs) -> ShopifyClient:
    """Build a client from a Shop row (token stored encrypted)."""
    return ShopifyClient(shop.shopify_url, decrypt_token(shop.shopify_token), **kwargs)
