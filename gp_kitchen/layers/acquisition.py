"""
Layer 1 – Acquisition
HTTP access to the OSRS Wiki real-time prices API and the RuneLite item icon
cache. Every endpoint returns plain decoded JSON; failures surface as
AcquisitionError.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from gp_kitchen.config import settings

logger = logging.getLogger(__name__)

HISTORY_TIMESTEPS = ("5m", "1h", "6h", "24h")


class AcquisitionError(RuntimeError):
    """Upstream request failed or returned garbage"""


class AcquisitionLayer:
    """Prices API client sharing one requests.Session"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self._base_url = (base_url or settings.PRICES_API_BASE).rstrip("/")
        self._timeout = timeout or settings.HTTP_TIMEOUT
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": user_agent or settings.USER_AGENT})

    def _get(self, path: str, params: Optional[dict] = None, timeout: Optional[int] = None) -> Any:
        url = f"{self._base_url}/{path}"
        try:
            resp = self._session.get(url, params=params, timeout=timeout or self._timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as exc:
            raise AcquisitionError(f"GET {path} failed: {exc}") from exc
        except ValueError as exc:
            raise AcquisitionError(f"GET {path} returned invalid JSON: {exc}") from exc

    def _get_data(self, path: str, params: Optional[dict] = None) -> Dict[str, Any]:
        payload = self._get(path, params=params)
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise AcquisitionError(f"GET {path} returned no data")
        return data

    # ── Item metadata ─────────────────────────────────────

    def get_mapping(self) -> List[Dict[str, Any]]:
        """Item metadata for every tradeable item"""
        items = self._get("mapping")
        if not isinstance(items, list):
            raise AcquisitionError("GET mapping returned no item list")
        return items

    # ── Prices ────────────────────────────────────────────

    def get_latest(self) -> Dict[str, Dict[str, Any]]:
        """Last instant-buy / instant-sell price per item id"""
        return self._get_data("latest")

    def get_5m(self, timestamp: Optional[int] = None) -> Dict[str, Dict[str, Any]]:
        """5-minute averages and volumes"""
        params = {"timestamp": timestamp} if timestamp else None
        return self._get_data("5m", params=params)

    def get_1h(self, timestamp: Optional[int] = None) -> Dict[str, Dict[str, Any]]:
        """1-hour averages and volumes, timestamp must sit on an hour boundary"""
        params = {"timestamp": timestamp} if timestamp else None
        return self._get_data("1h", params=params)

    def get_timeseries(self, item_id: int, timestep: str) -> Dict[str, Any]:
        """Price history of one item"""
        if timestep not in HISTORY_TIMESTEPS:
            raise ValueError(f"Invalid timestep: {timestep}")
        payload = self._get(
            "timeseries",
            params={"id": item_id, "timestep": timestep},
            timeout=settings.HISTORY_TIMEOUT,
        )
        if not isinstance(payload, dict):
            raise AcquisitionError("GET timeseries returned invalid payload")
        return payload

    # ── Icons ─────────────────────────────────────────────

    def fetch_icon(self, item_id: int) -> bytes:
        """PNG icon of one item from the RuneLite cache"""
        url = f"{settings.ICON_BASE_URL.rstrip('/')}/{item_id}.png"
        try:
            resp = self._session.get(url, timeout=(5, 10))
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise AcquisitionError(f"icon {item_id} failed: {exc}") from exc
        return resp.content


# ── Module-level singleton ───────────────────────────────
_acquisition: Optional[AcquisitionLayer] = None


def get_acquisition_layer() -> AcquisitionLayer:
    global _acquisition
    if _acquisition is None:
        _acquisition = AcquisitionLayer()
    return _acquisition
