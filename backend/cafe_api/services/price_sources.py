"""
External market price sources.

Each source exposes ``fetch(name, category, unit) -> PriceFetchResult``
and never raises for expected failures: network errors, timeouts, non-200
responses and pages without a usable price all come back as a failed
result carrying the reason.

Sources, in the order the fetcher tries them:
- AGMARKNET (data.gov.in daily mandi prices) for vegetables, grains, spices
- BigBasket search page scraping for everything else and as fallback
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from .. import config
from ..exceptions import ParseFailure, SourceUnavailable
from ..models import PriceFetchResult, PriceSource


logger = logging.getLogger(__name__)


# HTTP Headers
AGMARKNET_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36',
    'Accept': 'application/json',
}

BIGBASKET_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36',
    'Accept': 'text/html,application/xhtml+xml',
}

# Mandi prices are quoted in Rs. per quintal
KG_PER_QUINTAL = Decimal("100")

PRICE_PATTERN = re.compile(r'(?:₹|Rs\.?|INR)\s*([\d,]+(?:\.\d+)?)', re.IGNORECASE)

PRICE_PLACES = Decimal("0.01")


# Mapping of ingredient names to AGMARKNET commodity names
AGRI_COMMODITY_MAPPING = {
    # Vegetables
    'onion': 'Onion',
    'tomato': 'Tomato',
    'potato': 'Potato',
    'capsicum': 'Capsicum',
    'carrot': 'Carrot',
    'cabbage': 'Cabbage',
    'cauliflower': 'Cauliflower',
    'brinjal': 'Brinjal',
    'eggplant': 'Brinjal',
    'ladyfinger': 'Bhindi(Ladies Finger)',
    'okra': 'Bhindi(Ladies Finger)',

    # Grains & Pulses
    'rice': 'Rice',
    'wheat': 'Wheat',
    'dal': 'Bengal Gram Dal (Chana Dal)',
    'moong dal': 'Green Gram Dal (Moong Dal)',
    'toor dal': 'Arhar Dal(Tur Dal)',
    'chana': 'Bengal Gram Dal (Chana Dal)',

    # Others
    'ginger': 'Ginger(Green)',
    'garlic': 'Garlic',
    'green chilli': 'Green Chilli',
}

AGMARKNET_CATEGORIES = {'vegetables', 'grains', 'spices'}


# =============================================================================
# Helpers
# =============================================================================

def convert_to_unit(price_per_base: Decimal, unit: str) -> Decimal:
    """
    Convert a per-kg (or per-litre) price to the ingredient's unit.

    gm and ml are thousandths of the base; kg, ltr, pc and unknown units
    keep the base price.
    """
    unit = (unit or '').strip().lower()
    if unit in ('gm', 'g', 'ml'):
        return price_per_base / 1000
    return price_per_base


def parse_price(raw: Any, source: str) -> Decimal:
    """
    Parse a price value or price text into a positive Decimal.

    Raises:
        ParseFailure: if nothing numeric is found or the price is not positive.
    """
    if raw is None:
        raise ParseFailure(source, "No price in response")

    if isinstance(raw, (int, float, Decimal)):
        text = str(raw)
    else:
        text = str(raw).strip()
        match = PRICE_PATTERN.search(text)
        if match:
            text = match.group(1)
        text = text.replace(',', '')

    try:
        price = Decimal(text)
    except InvalidOperation:
        raise ParseFailure(source, f"Unparseable price: {str(raw)[:50]}")

    if not price.is_finite() or price <= 0:
        raise ParseFailure(source, f"Non-positive price: {price}")
    return price


def http_get(source: str, url: str, params: Optional[Dict[str, Any]] = None,
             headers: Optional[Dict[str, str]] = None,
             timeout: Optional[int] = None) -> requests.Response:
    """
    GET with the configured timeout.

    Raises:
        SourceUnavailable: on connection errors, timeouts and non-200 responses.
    """
    try:
        response = requests.get(url, params=params, headers=headers,
                                timeout=timeout or config.PRICE_FETCH_TIMEOUT)
    except requests.Timeout:
        raise SourceUnavailable(source, "Request timed out")
    except requests.RequestException as e:
        raise SourceUnavailable(source, f"Request failed: {e}")

    if response.status_code != 200:
        raise SourceUnavailable(source, f"HTTP {response.status_code}")
    return response


def find_commodity(ingredient_name: str) -> Optional[str]:
    """Exact lookup first, then the first partial match either way round."""
    normalized = ingredient_name.lower().strip()
    if normalized in AGRI_COMMODITY_MAPPING:
        return AGRI_COMMODITY_MAPPING[normalized]
    for key, commodity in AGRI_COMMODITY_MAPPING.items():
        if key in normalized or normalized in key:
            return commodity
    return None


# =============================================================================
# AGMARKNET
# =============================================================================

class AgmarknetSource:
    """Daily modal mandi prices from the AGMARKNET open data API."""

    source_id = PriceSource.AGMARKNET

    def __init__(self, api_key: Optional[str] = None, resource_url: Optional[str] = None,
                 timeout: Optional[int] = None):
        self.api_key = api_key if api_key is not None else config.AGMARKNET_API_KEY
        self.resource_url = resource_url or config.AGMARKNET_RESOURCE_URL
        self.timeout = timeout or config.PRICE_FETCH_TIMEOUT

    def fetch(self, name: str, category: str, unit: str) -> PriceFetchResult:
        if (category or '').lower() not in AGMARKNET_CATEGORIES:
            return PriceFetchResult.failure(
                name, f"Category '{category}' not covered by AGMARKNET", self.source_id)

        commodity = find_commodity(name)
        if commodity is None:
            return PriceFetchResult.failure(
                name, "Ingredient not found in AGMARKNET mapping", self.source_id)

        if not self.api_key:
            return PriceFetchResult.failure(
                name, "AGMARKNET API key not configured", self.source_id)

        try:
            price_per_kg, market = self._lookup(commodity)
        except (SourceUnavailable, ParseFailure) as e:
            logger.debug("AGMARKNET lookup failed for %s: %s", name, e)
            return PriceFetchResult.failure(name, str(e), self.source_id)

        price = convert_to_unit(price_per_kg, unit).quantize(PRICE_PLACES)
        return PriceFetchResult.ok(name, price, self.source_id, market)

    def _lookup(self, commodity: str) -> Tuple[Decimal, Optional[str]]:
        params = {
            'api-key': self.api_key,
            'format': 'json',
            'filters[commodity]': commodity,
            'limit': 1,
        }
        response = http_get(self.source_id, self.resource_url, params=params,
                            headers=AGMARKNET_HEADERS, timeout=self.timeout)
        try:
            data = response.json()
        except ValueError:
            raise ParseFailure(self.source_id, "Response was not JSON")

        records = data.get('records') or []
        if not records:
            raise ParseFailure(self.source_id, f"No records for {commodity}")

        record = records[0]
        per_quintal = parse_price(record.get('modal_price'), self.source_id)
        market = record.get('market')
        if market and record.get('state'):
            market = f"{market}, {record['state']}"
        return per_quintal / KG_PER_QUINTAL, market


# =============================================================================
# BigBasket scraping
# =============================================================================

class WebScrapeSource:
    """First listed price on the BigBasket search results page."""

    source_id = PriceSource.SCRAPED
    market_name = "BigBasket"

    def __init__(self, search_url: Optional[str] = None, timeout: Optional[int] = None):
        self.search_url = search_url or config.BIGBASKET_SEARCH_URL
        self.timeout = timeout or config.PRICE_FETCH_TIMEOUT

    def fetch(self, name: str, category: str, unit: str) -> PriceFetchResult:
        try:
            response = http_get(self.source_id, self.search_url, params={'q': name},
                                headers=BIGBASKET_HEADERS, timeout=self.timeout)
            price = self.extract_price(response.text)
        except (SourceUnavailable, ParseFailure) as e:
            logger.debug("Scrape failed for %s: %s", name, e)
            return PriceFetchResult.failure(name, str(e), self.source_id)

        # Listed prices are per kg / litre pack
        price = convert_to_unit(price, unit).quantize(PRICE_PLACES)
        return PriceFetchResult.ok(name, price, self.source_id, self.market_name)

    def extract_price(self, html: str) -> Decimal:
        """Find the first rupee amount, preferring elements styled as prices."""
        soup = BeautifulSoup(html, 'html.parser')

        for elem in soup.find_all(class_=re.compile('price', re.IGNORECASE)):
            match = PRICE_PATTERN.search(elem.get_text(" ", strip=True))
            if match:
                return parse_price(match.group(0), self.source_id)

        match = PRICE_PATTERN.search(soup.get_text(" ", strip=True))
        if not match:
            raise ParseFailure(self.source_id, "No price found on page")
        return parse_price(match.group(0), self.source_id)


def default_sources():
    """Sources in priority order."""
    return [AgmarknetSource(), WebScrapeSource()]
