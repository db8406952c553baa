"""NewsData.io client plus the pure helpers that turn a NewsData item into article fields."""

from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass
from typing import Any

import requests


logger = logging.getLogger(__name__)


class NewsDataError(RuntimeError):
    pass


SEARCH_QUERY = 'stocks OR investing OR "wall street" OR trading OR market'
LATEST_PATH = "/api/1/latest"


@dataclass(frozen=True)
class NewsDataClient:
    api_key: str
    base_url: str = "https://newsdata.io"
    timeout_seconds: int = 30

    def request_json(self, path: str, *, params: dict[str, Any], retries: int = 2) -> dict[str, Any]:
        if not self.api_key:
            raise NewsDataError("NEWSDATA_API_KEY is not configured")
        url = self.base_url.rstrip("/") + path
        logger.info("[NewsData] Fetching %s q=%s", url, params.get("q"))

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                resp = requests.get(
                    url,
                    params={"apikey": self.api_key, **params},
                    headers={"Accept": "application/json"},
                    timeout=self.timeout_seconds,
                )
            except requests.RequestException as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
                continue
            if resp.status_code == 429 and attempt < retries:
                last_err = NewsDataError("Rate limited (429)")
                time.sleep(min(2 * (attempt + 1), 10))
                continue
            if not resp.ok:
                raise NewsDataError(f"NewsData API error: {resp.status_code} - {resp.text[:300]}")
            try:
                return resp.json()
            except ValueError as e:
                raise NewsDataError("Invalid JSON from NewsData") from e
        raise NewsDataError(f"NewsData request failed after retries: {last_err}")

    def fetch_latest(self, *, query: str = SEARCH_QUERY, category: str = "business,politics,technology") -> list[dict[str, Any]]:
        """Latest US financial news, minus duplicates and items without title/description."""
        data = self.request_json(
            LATEST_PATH,
            params={"country": "us", "category": category, "language": "en", "q": query},
        )
        if data.get("status") != "success":
            raise NewsDataError(f"NewsData API returned status: {data.get('status')}")

        results = data.get("results") or []
        logger.info("[NewsData] Fetched %s articles (total: %s)", len(results), data.get("totalResults"))
        valid = []
        for item in results:
            if item.get("duplicate"):
                logger.info("[NewsData] Skipping duplicate: %s", item.get("article_id"))
                continue
            if not item.get("title") or not item.get("description"):
                logger.info("[NewsData] Skipping article without title/description: %s", item.get("article_id"))
                continue
            valid.append(item)
        logger.info("[NewsData] %s valid articles after filtering", len(valid))
        return valid


def client_from_config(config) -> NewsDataClient:
    return NewsDataClient(
        api_key=config.get("NEWSDATA_API_KEY") or "",
        base_url=config.get("NEWSDATA_BASE_URL") or "https://newsdata.io",
    )


WORDS_PER_MINUTE = 200


def estimate_read_time(content: str | None) -> int:
    if not content:
        return 3
    return max(1, math.ceil(len(content.split()) / WORDS_PER_MINUTE))


def convert_to_content_blocks(content: str | None, description: str | None) -> list[dict[str, str]]:
    if not content and description:
        return [{"type": "paragraph", "content": description}]
    blocks = [
        {"type": "paragraph", "content": p.strip()}
        for p in re.split(r"\n\n+", content or description or "")
        if p.strip()
    ]
    if not blocks and description:
        blocks.append({"type": "paragraph", "content": description})
    return blocks


CATEGORY_MAP = {
    "business": "markets",
    "politics": "economy",
    "technology": "tech",
    "world": "economy",
    "top": "markets",
}


def map_category(categories: list[str] | None) -> str:
    for cat in categories or []:
        mapped = CATEGORY_MAP.get(cat.lower())
        if mapped:
            return mapped
    return "markets"


TICKER_RE = re.compile(r"(?<![A-Za-z$])\$?([A-Z]{1,5})(?=\s|$|,|\.|')")
COMMON_WORDS = frozenset(
    "THE AND FOR ARE BUT NOT YOU ALL CAN HER WAS ONE OUR OUT HAS HIS HOW ITS MAY NEW NOW OLD "
    "SEE WAY WHO BOY DID GET HIM LET PUT SAY SHE TOO USE".split()
)
MAX_TICKERS = 10


def extract_tickers(content: str | None, title: str) -> list[str]:
    """Uppercase 2-5 letter tokens (optionally $-prefixed), common words removed."""
    text = f"{title} {content or ''}"
    seen: dict[str, None] = {}
    for m in TICKER_RE.finditer(text):
        t = m.group(1)
        if 2 <= len(t) <= 5 and t not in COMMON_WORDS:
            seen.setdefault(t, None)
    return list(seen)[:MAX_TICKERS]
