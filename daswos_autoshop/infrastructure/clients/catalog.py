"""Catalog API HTTP client for product queries"""

import httpx
from typing import Any, Dict, List, Optional
from daswos_autoshop.domain.models import Product
from daswos_autoshop.domain.exceptions import CatalogUnavailableError
from daswos_autoshop.infrastructure.observability.metrics import catalog_failures_counter
from daswos_autoshop.config import settings


def _parse_product(data: Dict[str, Any]) -> Product:
    return Product(
        id=str(data["id"]),
        title=data["title"],
        price=int(data["price"]),
        trust_score=int(data.get("trust_score") or 0),
        tags=frozenset(data.get("tags") or ()),
        category=data.get("category"),
        description=data.get("description") or "",
    )


class CatalogClient:
    """Client for the read-only product catalog service"""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.catalog_api_base
        self.timeout = timeout or settings.http_timeout_seconds

    async def query_products(
        self,
        sphere: str,
        text_query: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[Product]:
        """
        Fetch products in a trust sphere, optionally narrowed by text and category.

        Raises:
            CatalogUnavailableError: On timeout, HTTP errors, or invalid response
        """
        params = {"sphere": sphere}
        if text_query:
            params["q"] = text_query
        if category:
            params["category"] = category

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.get(f"{self.base_url}/catalog/products", params=params)
                response.raise_for_status()
                data = response.json()
                return [_parse_product(item) for item in data.get("products", [])]

            except httpx.TimeoutException as e:
                catalog_failures_counter.inc()
                raise CatalogUnavailableError(f"Catalog API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                catalog_failures_counter.inc()
                raise CatalogUnavailableError(f"Catalog API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                catalog_failures_counter.inc()
                raise CatalogUnavailableError(f"Catalog API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                catalog_failures_counter.inc()
                raise CatalogUnavailableError(f"Invalid product data from catalog: {e}") from e

    async def get_product(self, product_id: str) -> Optional[Product]:
        """Fetch a single product; None when the catalog does not know it"""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.get(f"{self.base_url}/catalog/products/{product_id}")
                if response.status_code == 404:
                    return None
                response.raise_for_status()
                return _parse_product(response.json())

            except httpx.TimeoutException as e:
                catalog_failures_counter.inc()
                raise CatalogUnavailableError(f"Catalog API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                catalog_failures_counter.inc()
                raise CatalogUnavailableError(f"Catalog API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                catalog_failures_counter.inc()
                raise CatalogUnavailableError(f"Catalog API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                catalog_failures_counter.inc()
                raise CatalogUnavailableError(f"Invalid product data from catalog: {e}") from e
