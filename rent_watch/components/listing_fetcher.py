"""
Listing source client for the Rent Watch system.

Queries an Apify actor that scrapes rental listings and maps the returned
dataset items onto ``Listing`` objects. The client is blocking; callers on
the event loop run it in an executor.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..exceptions import FetchFailure
from ..models.config import ListingSourceConfig
from ..models.listing import MAX_PHOTOS, Listing
from ..models.search import SearchCriteria

logger = logging.getLogger(__name__)

_NUMERIC_SEGMENT = re.compile(r"^\d+$")


def filter_by_districts(
    listings: Iterable[Listing], districts: Optional[List[str]]
) -> List[Listing]:
    """
    Keep listings whose district matches one of the requested districts.

    Matching is a case-insensitive substring test. An empty request keeps
    everything, including listings without a district; otherwise listings
    without a district are dropped.
    """
    listings = list(listings)
    if not districts:
        return listings

    wanted = [d.lower() for d in districts if d]
    matched = []
    for listing in listings:
        if not listing.district:
            continue
        district = listing.district.lower()
        if any(w in district for w in wanted):
            matched.append(listing)
    return matched


def extract_id_from_url(url: str) -> Optional[str]:
    """Return the last all-digit path segment of a listing URL."""
    for part in reversed(url.split("/")):
        if part and _NUMERIC_SEGMENT.match(part):
            return part
    return None


class ApifyListingFetcher:
    """Fetches rental listings through the Apify run-sync API."""

    def __init__(self, config: ListingSourceConfig, max_retries: int = 2):
        """
        Initialize the fetcher.

        Args:
            config: Listing source configuration
            max_retries: HTTP-level retries for transient status codes
        """
        self.config = config
        self.max_retries = max_retries
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry configuration."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    @property
    def endpoint(self) -> str:
        return (
            f"{self.config.base_url.rstrip('/')}/acts/"
            f"{self.config.actor_id}/run-sync-get-dataset-items"
        )

    def build_request(self, criteria: SearchCriteria) -> Dict[str, Any]:
        """Build the actor input for a search."""
        request: Dict[str, Any] = {
            "operation": "rent",
            "propertyType": "homes",
            "locationId": self.config.location_id,
            "maxItems": self.config.max_items,
            "includeImages": True,
        }

        if criteria.min_price is not None:
            request["minPrice"] = str(criteria.min_price)
        if criteria.max_price is not None:
            request["maxPrice"] = str(criteria.max_price)
        if criteria.num_rooms is not None:
            request["bedrooms"] = [str(criteria.num_rooms)]

        return request

    def search(self, criteria: SearchCriteria) -> List[Listing]:
        """
        Query the listing source.

        Returns:
            Listings matching the price and room criteria. District filtering
            is left to the caller.

        Raises:
            FetchFailure: If the provider cannot be reached or answers badly.
        """
        payload = self.build_request(criteria)
        logger.info(
            f"Searching listings: min_price={criteria.min_price}, "
            f"max_price={criteria.max_price}, rooms={criteria.num_rooms}"
        )

        try:
            response = self.session.post(
                self.endpoint,
                params={"token": self.config.api_token, "timeout": self.config.timeout},
                json=payload,
                timeout=self.config.timeout + 10,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise FetchFailure(f"Listing source request failed: {e}", e) from e
        except ValueError as e:
            raise FetchFailure(f"Listing source returned invalid JSON: {e}", e) from e

        listings = self.parse_response(data)
        logger.info(f"Listing source returned {len(listings)} listings")
        return listings

    def parse_response(self, data: Any) -> List[Listing]:
        """Map a dataset response to listings, skipping unusable items."""
        if isinstance(data, dict):
            items = data.get("items")
            if items is None:
                raise FetchFailure("Listing source response has no items array")
        elif isinstance(data, list):
            items = data
        else:
            raise FetchFailure(
                f"Unexpected listing source response type: {type(data).__name__}"
            )

        listings = []
        for item in items:
            listing = self._map_item(item)
            if listing is not None:
                listings.append(listing)
        return listings

    def _map_item(self, item: Any) -> Optional[Listing]:
        if not isinstance(item, dict):
            return None

        url = item.get("url")
        if not url:
            return None

        external_id = item.get("propertyCode")
        external_id = str(external_id) if external_id else extract_id_from_url(url)
        if not external_id:
            logger.debug(f"No numeric id in listing URL, keying it by URL: {url}")
            external_id = url

        listing = Listing(
            external_id=external_id,
            url=url,
            price=_to_int(item.get("price")),
            rooms=_to_int(item.get("rooms")),
            district=item.get("district") or item.get("neighborhood") or None,
            description=item.get("description") or None,
            photo_urls=_image_urls(item.get("images")),
        )

        try:
            listing.validate()
        except ValueError as e:
            logger.warning(f"Skipping invalid listing {external_id}: {e}")
            return None
        return listing

    def close(self) -> None:
        self.session.close()


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _image_urls(images: Any) -> List[str]:
    if not isinstance(images, list):
        return []

    urls = []
    for image in images:
        if isinstance(image, dict):
            image = image.get("url")
        if isinstance(image, str) and image:
            urls.append(image)
        if len(urls) >= MAX_PHOTOS:
            break
    return urls
