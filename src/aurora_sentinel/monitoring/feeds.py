"""
Upstream Feeds
==============

Fetch the raw JSON of every upstream feed, each independently.

A feed that fails (network error, HTTP error, bad JSON) is retried with
linear backoff and then reported as unavailable for this cycle. One feed
failing never blocks the others; partial failure is normal operation.
"""

import json
import logging
import time
from http.client import HTTPException
from typing import Callable, Optional
from urllib.error import HTTPError
from urllib.request import Request, urlopen

from aurora_sentinel.config import (
    API_TIMEOUT_SEC,
    USER_AGENT,
    NOAA_PLASMA_URL,
    NOAA_MAG_URL,
    GOES_PRIMARY_MAG_URL,
    GOES_SECONDARY_MAG_URL,
    GOES_XRAY_URL,
    Settings,
)
from aurora_sentinel.errors import UpstreamUnavailable
from .constants import FETCH_RETRIES, FETCH_BACKOFF_SEC

log = logging.getLogger('aurora_sentinel.feeds')


class Feed:
    """Feed names used as FusionContext / snapshot keys."""
    PLASMA = 'plasma'
    MAG = 'mag'
    GOES_PRIMARY = 'goes_primary'
    GOES_SECONDARY = 'goes_secondary'
    XRAY = 'xray'
    FORECAST = 'forecast'
    IPS = 'ips'
    GROUND_MAG = 'ground_mag'


def feed_urls(settings: Settings) -> dict:
    """Feed name -> URL; feeds without a configured URL are left out."""
    urls = {
        Feed.PLASMA: NOAA_PLASMA_URL,
        Feed.MAG: NOAA_MAG_URL,
        Feed.GOES_PRIMARY: GOES_PRIMARY_MAG_URL,
        Feed.GOES_SECONDARY: GOES_SECONDARY_MAG_URL,
        Feed.XRAY: GOES_XRAY_URL,
        Feed.FORECAST: settings.forecast_url,
        Feed.IPS: settings.ips_url,
        Feed.GROUND_MAG: settings.ground_mag_url,
    }
    return {name: url for name, url in urls.items() if url}


def fetch_json(url: str, feed: str = 'feed', timeout: int = API_TIMEOUT_SEC,
               retries: int = FETCH_RETRIES, backoff: float = FETCH_BACKOFF_SEC,
               sleep: Callable[[float], None] = time.sleep):
    """
    Fetch JSON from URL, retrying up to `retries` times.

    Backoff is linear: attempt n waits n * backoff seconds before retrying.

    Raises:
        UpstreamUnavailable: after the last failed attempt
    """
    last_error = None
    for attempt in range(1, retries + 1):
        try:
            req = Request(url, headers={'User-Agent': USER_AGENT, 'Cache-Control': 'no-cache'})
            with urlopen(req, timeout=timeout) as response:
                return json.loads(response.read().decode())
        except HTTPError as e:
            last_error = f"HTTP {e.code}"
        except (OSError, HTTPException) as e:
            # URLError, timeouts and dropped connections mid-response
            last_error = f"Network error: {e}"
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            last_error = f"JSON parse error: {e}"

        log.warning(f"{feed}: attempt {attempt}/{retries} failed ({last_error})")
        if attempt < retries:
            sleep(attempt * backoff)

    raise UpstreamUnavailable(feed, last_error or 'unknown error')


def fetch_all(settings: Settings, fetch: Optional[Callable] = None) -> dict:
    """
    Fetch every configured feed.

    Returns:
        dict feed -> raw JSON, or None for feeds that were unavailable
    """
    fetch = fetch or fetch_json
    results = {}
    for name, url in feed_urls(settings).items():
        try:
            results[name] = fetch(url, feed=name)
        except UpstreamUnavailable as e:
            log.error(f"Feed unavailable this cycle: {e}")
            results[name] = None
    available = sum(1 for v in results.values() if v is not None)
    log.info(f"Fetched {available}/{len(results)} feeds")
    return results
