"""
Sports data collaborator: game outcomes, finished-game lists and market lines.

The grading job and the fraud odds-mismatch check depend only on the
SportsDataProvider protocol. HttpSportsDataClient is the production
implementation; tests pass in-memory fakes.

Market lines use American odds in the shape:
    {
        "moneyline": {"home": -150, "away": 130},
        "spread": {"home": -110, "away": -110, "line": -5.5},
        "total": {"over": -110, "under": -110, "line": 225.5},
    }
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from pick_integrity.core.config import settings
from pick_integrity.core.logging import get_logger
from pick_integrity.core.metrics import record_sports_api_request_success, record_sports_api_request_failure
from pick_integrity.services.circuit_breaker import sports_api_protected
from pick_integrity.utils.timezone import to_naive_utc

logger = get_logger(__name__)

FINAL_STATUSES = ("final", "finished", "completed", "closed")
VOID_STATUSES = ("cancelled", "canceled", "postponed", "abandoned")


@dataclass
class GameOutcome:
    """A game as reported by the provider."""
    game_id: str
    status: str
    home_team: str
    away_team: str
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    start_time: Optional[datetime] = None
    closing_lines: Optional[Dict[str, Any]] = None
    provider: str = "unknown"
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_final(self) -> bool:
        return (
            self.status.lower() in FINAL_STATUSES
            and self.home_score is not None
            and self.away_score is not None
        )

    @property
    def is_void(self) -> bool:
        """Game will not be played; wagers on it are void."""
        return self.status.lower() in VOID_STATUSES

    def evidence(self) -> Dict[str, Any]:
        """Verification evidence recorded on a graded pick."""
        return {
            "provider": self.provider,
            "game_id": self.game_id,
            "status": self.status,
            "final_score": {"home": self.home_score, "away": self.away_score},
            "home_team": self.home_team,
            "away_team": self.away_team,
        }


class SportsDataProvider(Protocol):
    """What the engine consumes from the sports data collaborator."""

    async def get_game(self, game_id: str) -> Optional[GameOutcome]:
        ...

    async def get_finished_games(self, start: datetime, end: datetime) -> List[str]:
        ...

    async def get_market_lines(self, game_id: str) -> Optional[Dict[str, Any]]:
        ...


def parse_game(payload: Dict[str, Any], provider: str) -> GameOutcome:
    """
    Build a GameOutcome from a provider game payload.

    Expected keys: id, status, home_team{name}, away_team{name},
    score{home, away}, start_time, closing_lines.
    """
    score = payload.get("score") or {}
    return GameOutcome(
        game_id=str(payload.get("id") or payload.get("game_id")),
        status=str(payload.get("status") or "scheduled"),
        home_team=(payload.get("home_team") or {}).get("name", ""),
        away_team=(payload.get("away_team") or {}).get("name", ""),
        home_score=score.get("home"),
        away_score=score.get("away"),
        start_time=to_naive_utc(payload.get("start_time")),
        closing_lines=payload.get("closing_lines"),
        provider=provider,
        raw=payload,
    )


class HttpSportsDataClient:
    """
    HTTP client for the sports data provider.

    Requests are retried with exponential backoff and guarded by the
    sports_api circuit breaker. Without an API key every call returns an
    empty result, so the grading job degrades to a no-op.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        provider_name: str = "sports_api",
    ):
        self.base_url = (base_url or settings.SPORTS_API_BASE_URL).rstrip("/")
        self.api_key = settings.SPORTS_API_KEY if api_key is None else api_key
        self.timeout = timeout or settings.SPORTS_API_TIMEOUT
        self.provider_name = provider_name

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _fetch_with_retry(self, client: httpx.AsyncClient, path: str, params: Dict[str, Any]) -> Any:
        response = await client.get(f"{self.base_url}{path}", params=params)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    @sports_api_protected()
    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        headers = {"X-API-Key": self.api_key}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as client:
                data = await self._fetch_with_retry(client, path, params or {})
        except httpx.HTTPStatusError as e:
            record_sports_api_request_failure(error_type=f"http_{e.response.status_code}")
            raise
        except httpx.HTTPError as e:
            record_sports_api_request_failure(error_type=type(e).__name__)
            raise
        record_sports_api_request_success()
        return data

    async def get_game(self, game_id: str) -> Optional[GameOutcome]:
        if not self.configured:
            logger.warning("Sports API not configured - cannot fetch game outcome")
            return None

        payload = await self._get(f"/games/{game_id}")
        if not payload:
            return None
        return parse_game(payload, self.provider_name)

    async def get_finished_games(self, start: datetime, end: datetime) -> List[str]:
        if not self.configured:
            logger.warning("Sports API not configured - no finished games reported")
            return []

        payload = await self._get(
            "/games",
            {"status": "final", "start": start.isoformat(), "end": end.isoformat()},
        )
        if not payload:
            return []
        return [str(game["id"]) for game in payload.get("games", []) if game.get("id") is not None]

    async def get_market_lines(self, game_id: str) -> Optional[Dict[str, Any]]:
        if not self.configured:
            return None
        return await self._get(f"/games/{game_id}/odds")
