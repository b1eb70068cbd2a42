"""
Keepa integration for catalog lookups.

Wraps the two Keepa endpoints the correlation pipeline needs:
product lookup by ASIN and Product Finder search by brand + root category.
"""

import json
from typing import Any, Optional
import httpx
import structlog

from config import settings
from exceptions import ExternalServiceError
from models.product import ProductDescriptor
from utils.asin_utils import normalize_asin

logger = structlog.get_logger(__name__)


IMAGE_BASE_URL = "https://m.media-amazon.com/images/I/"

# Keepa domain id -> Amazon storefront host
DOMAIN_HOSTS = {
    1: "www.amazon.com",
    2: "www.amazon.co.uk",
    3: "www.amazon.de",
    4: "www.amazon.fr",
    5: "www.amazon.co.jp",
    6: "www.amazon.ca",
    8: "www.amazon.it",
    9: "www.amazon.es",
    10: "www.amazon.in",
    11: "www.amazon.com.mx",
}

# Keepa accepts at most 100 ASINs per product request
MAX_ASINS_PER_REQUEST = 100


def get_image_url(product: dict) -> str:
    """
    First product image as a full URL.

    Newer responses carry an images list of {l, m} names; older ones only
    the comma-separated imagesCSV.
    """
    images = product.get("images") or []
    if images:
        name = images[0].get("l") or images[0].get("m") or ""
        if name:
            return f"{IMAGE_BASE_URL}{name}"

    images_csv = product.get("imagesCSV") or ""
    first = images_csv.split(",")[0].strip()
    return f"{IMAGE_BASE_URL}{first}" if first else ""


def get_product_url(asin: str, domain: int = 1) -> str:
    """Product page URL on the storefront for this domain."""
    host = DOMAIN_HOSTS.get(domain, DOMAIN_HOSTS[1])
    return f"https://{host}/dp/{asin}"


def parse_keepa_product(product: dict, domain: int = 1) -> Optional[ProductDescriptor]:
    """
    Build a ProductDescriptor from a Keepa product object.

    Args:
        product: One entry of the Keepa "products" array
        domain: Keepa domain id used for the lookup

    Returns:
        ProductDescriptor, or None if the entry has no ASIN
    """
    asin = normalize_asin(product.get("asin"))
    if not asin:
        return None

    variation_asins = []
    for variation in product.get("variations") or []:
        variation_asin = normalize_asin(variation.get("asin"))
        if variation_asin and variation_asin != asin:
            variation_asins.append(variation_asin)

    return ProductDescriptor(
        identifier=asin,
        title=product.get("title") or "Unknown",
        brand=product.get("brand") or None,
        image_url=get_image_url(product),
        source_url=get_product_url(asin, domain),
        category_id=product.get("rootCategory") or None,
        variation_identifiers=tuple(dict.fromkeys(variation_asins))
    )


class KeepaClient:
    """
    Async Keepa API client.

    One short-lived httpx client per request; tests pass a transport
    (httpx.MockTransport) to stub the API.
    """

    SERVICE = "keepa"

    def __init__(
        self,
        api_key: Optional[str] = None,
        domain: Optional[int] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key if api_key is not None else settings.keepa_api_key
        self.domain = domain or settings.keepa_domain
        self.base_url = (base_url or settings.keepa_base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.keepa_timeout_seconds
        self._transport = transport

    async def _get(self, endpoint: str, params: dict[str, Any]) -> dict:
        """
        Call a Keepa endpoint and return the decoded body.

        Raises:
            ExternalServiceError: Missing key, transport failure, non-200
                status, undecodable body or a Keepa error object in the body
        """
        if not self.api_key:
            raise ExternalServiceError(self.SERVICE, "Keepa API key not configured")

        query = {"key": self.api_key, "domain": self.domain, **params}
        url = f"{self.base_url}/{endpoint}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport
            ) as client:
                response = await client.get(url, params=query)
        except httpx.HTTPError as e:
            logger.error("keepa_request_failed", endpoint=endpoint, error=str(e))
            raise ExternalServiceError(
                self.SERVICE,
                f"Keepa request failed: {e}",
                details={"endpoint": endpoint}
            ) from e

        if response.status_code != 200:
            logger.error(
                "keepa_api_error",
                endpoint=endpoint,
                status_code=response.status_code,
                body=response.text[:300]
            )
            raise ExternalServiceError(
                self.SERVICE,
                f"Keepa API error: {response.status_code}",
                details={"endpoint": endpoint, "status_code": response.status_code}
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(
                "keepa_invalid_body",
                endpoint=endpoint,
                body=response.text[:300]
            )
            raise ExternalServiceError(
                self.SERVICE,
                "Keepa returned a non-JSON response",
                details={"endpoint": endpoint}
            ) from e

        if not isinstance(data, dict):
            raise ExternalServiceError(
                self.SERVICE,
                "Keepa returned an unexpected response",
                details={"endpoint": endpoint}
            )

        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.error("keepa_error_response", endpoint=endpoint, error=message)
            raise ExternalServiceError(
                self.SERVICE,
                f"Keepa error: {message}",
                details={"endpoint": endpoint}
            )

        logger.debug(
            "keepa_call_complete",
            endpoint=endpoint,
            tokens_left=data.get("tokensLeft")
        )
        return data

    async def lookup_by_ids(self, asins: list[str]) -> list[ProductDescriptor]:
        """
        Look up products by ASIN.

        Args:
            asins: Up to 100 ASINs (callers batch larger lists)

        Returns:
            Descriptors for the products Keepa returned, in response order
        """
        if not asins:
            return []
        if len(asins) > MAX_ASINS_PER_REQUEST:
            raise ValueError(f"Keepa accepts at most {MAX_ASINS_PER_REQUEST} ASINs per request")

        logger.info("keepa_lookup", count=len(asins), first=asins[0])

        data = await self._get("product", {"asin": ",".join(asins), "history": 0})

        descriptors = []
        for product in data.get("products") or []:
            descriptor = parse_keepa_product(product, self.domain)
            if descriptor:
                descriptors.append(descriptor)

        logger.info("keepa_lookup_complete", requested=len(asins), returned=len(descriptors))
        return descriptors

    async def search_by_attributes(
        self,
        brand: str,
        category_id: int,
        limit: int = 50
    ) -> list[str]:
        """
        Product Finder query for the same brand and root category.

        Args:
            brand: Brand name as Keepa reports it
            category_id: Keepa root category id
            limit: Results per page (Keepa minimum is 50)

        Returns:
            ASINs in Keepa's order, at most limit
        """
        selection = {
            "brand": [brand],
            "rootCategory": [category_id],
            "perPage": limit,
            "page": 0,
        }

        logger.info("keepa_search", brand=brand, category_id=category_id, limit=limit)

        data = await self._get("query", {"selection": json.dumps(selection)})
        asins = [a for a in (data.get("asinList") or []) if a][:limit]

        logger.info("keepa_search_complete", brand=brand, count=len(asins))
        return asins


_keepa_client: Optional[KeepaClient] = None


def get_keepa_client() -> KeepaClient:
    """Get or create KeepaClient instance."""
    global _keepa_client
    if _keepa_client is None:
        _keepa_client = KeepaClient()
    return _keepa_client
