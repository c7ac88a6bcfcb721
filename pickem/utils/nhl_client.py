import logging
import time
from datetime import date, datetime, timezone
from functools import wraps

import requests
from flask import current_app, has_app_context

from pickem.errors import UpstreamDataError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api-web.nhle.com/v1"

# NHL gameState -> local lifecycle status
GAME_STATE_MAP = {
    "FUT": "scheduled",
    "PRE": "scheduled",
    "LIVE": "in_progress",
    "CRIT": "in_progress",
    "FINAL": "final",
    "OFF": "final",
    "OFFICIAL": "final",
}


class NHLAPIError(UpstreamDataError):
    """Non-retryable HTTP error from the NHL API"""

    def __init__(self, message, status_code=None, endpoint=None):
        super().__init__(message, upstream_status=status_code, endpoint=endpoint)
        self.upstream_status = status_code
        self.endpoint = endpoint


class NHLNotFoundError(NHLAPIError):
    def __init__(self, message, endpoint=None):
        super().__init__(message, status_code=404, endpoint=endpoint)


class NHLNetworkError(UpstreamDataError):
    """Connection failures and timeouts that outlived the retries"""


def map_game_state(game_state):
    return GAME_STATE_MAP.get((game_state or "").upper(), "scheduled")


def rate_limit_decorator(max_retries=3, base_delay=1.0, backoff_factor=2.0):
    """
    Retry transient failures (429, 5xx, connection errors) with exponential
    backoff. Client errors are raised immediately.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            retries = getattr(self, "max_retries", None) or max_retries
            last_error = None

            for attempt in range(retries):
                delay = self.base_delay(base_delay) * (backoff_factor**attempt)
                try:
                    response = func(self, *args, **kwargs)
                except requests.exceptions.RequestException as e:
                    last_error = NHLNetworkError(f"Network error: {e}")
                    logger.warning(
                        f"Request failed: {e}. Waiting {delay}s before retry {attempt + 1}/{retries}"
                    )
                    if attempt < retries - 1:
                        time.sleep(delay)
                    continue

                if response.status_code == 429:  # Too Many Requests
                    retry_after = float(response.headers.get("Retry-After", delay))
                    logger.warning(
                        f"Rate limited. Waiting {retry_after}s before retry {attempt + 1}/{retries}"
                    )
                    last_error = NHLAPIError(
                        "Rate limited by NHL API", status_code=429, endpoint=response.url
                    )
                    if attempt < retries - 1:
                        time.sleep(retry_after)
                    continue
                if response.status_code >= 500:
                    logger.warning(
                        f"Server error {response.status_code}. Waiting {delay}s before retry {attempt + 1}/{retries}"
                    )
                    last_error = NHLAPIError(
                        f"API error: {response.status_code}",
                        status_code=response.status_code,
                        endpoint=response.url,
                    )
                    if attempt < retries - 1:
                        time.sleep(delay)
                    continue
                if response.status_code == 404:
                    raise NHLNotFoundError(f"Resource not found: {response.url}", endpoint=response.url)
                if response.status_code >= 400:
                    logger.error(f"HTTP error {response.status_code}: {response.url}")
                    raise NHLAPIError(
                        f"API error: {response.status_code}",
                        status_code=response.status_code,
                        endpoint=response.url,
                    )

                return response

            raise last_error or NHLAPIError(f"Max retries ({retries}) exceeded")

        return wrapper

    return decorator


class NHLClient:
    """
    Client for the NHL web API (api-web.nhle.com) with rate limiting and
    retries. This is the data source for box scores, game state, rosters and
    schedules; every fetch returns decoded JSON or raises an
    UpstreamDataError subclass.
    """

    def __init__(
        self,
        api_base_url=None,
        team_abbrev=None,
        team_id=None,
        timeout=None,
        max_retries=None,
        retry_delay=None,
    ):
        config = current_app.config if has_app_context() else {}
        self.api_base_url = (
            api_base_url or config.get("NHL_API_BASE_URL") or DEFAULT_API_BASE_URL
        ).rstrip("/")
        self.team_abbrev = (team_abbrev or config.get("NHL_TEAM_ABBREV") or "DET").upper()
        self.team_id = team_id or config.get("NHL_TEAM_ID", 17)
        self.timeout = timeout or config.get("NHL_REQUEST_TIMEOUT", 30)
        self.max_retries = max_retries or config.get("NHL_MAX_RETRIES", 3)
        self.retry_delay = retry_delay if retry_delay is not None else config.get(
            "NHL_RETRY_DELAY", None
        )

        self.session = requests.Session()
        self.session.headers.update(
            {"User-Agent": "NHL-Pickem-App/1.0", "Accept": "application/json"}
        )

        # Rate limiting configuration
        self.request_count = 0
        self.last_request_time = 0
        self.min_request_interval = 0.5  # Minimum 500ms between requests
        self.max_requests_per_minute = 60
        self.request_timestamps = []

    def base_delay(self, default):
        return self.retry_delay if self.retry_delay is not None else default

    def _enforce_rate_limit(self):
        """Enforce rate limiting before making requests"""
        current_time = time.time()

        # Remove timestamps older than 1 minute
        self.request_timestamps = [
            ts for ts in self.request_timestamps if current_time - ts < 60
        ]

        if len(self.request_timestamps) >= self.max_requests_per_minute:
            sleep_time = 60 - (current_time - self.request_timestamps[0])
            if sleep_time > 0:
                logger.info(f"Rate limit reached. Sleeping for {sleep_time:.1f}s")
                time.sleep(sleep_time)
                self.request_timestamps = []

        time_since_last = current_time - self.last_request_time
        if time_since_last < self.min_request_interval:
            time.sleep(self.min_request_interval - time_since_last)

        self.last_request_time = time.time()
        self.request_timestamps.append(self.last_request_time)
        self.request_count += 1

    @rate_limit_decorator(max_retries=3, base_delay=1.0)
    def _make_api_request(self, url, params=None):
        self._enforce_rate_limit()
        return self.session.get(url, params=params, timeout=self.timeout)

    def _get_json(self, path, params=None):
        url = f"{self.api_base_url}/{path.lstrip('/')}"
        logger.debug(f"GET {url}")
        response = self._make_api_request(url, params=params)
        try:
            return response.json()
        except ValueError:
            raise NHLAPIError(f"Invalid JSON from {url}", endpoint=url)

    def fetch_box_score(self, game_ref):
        """Raw gamecenter box score for one game"""
        try:
            return self._get_json(f"gamecenter/{game_ref}/boxscore")
        except NHLNotFoundError as e:
            raise NHLNotFoundError(f"Game {game_ref} not found", endpoint=e.endpoint)

    def fetch_scoring_summary(self, game_ref):
        """Landing payload; summary.scoring lists every goal with strength and modifiers"""
        return self._get_json(f"gamecenter/{game_ref}/landing")

    def fetch_game_state(self, game_ref):
        """Current lifecycle status and score: {status, home_score, away_score}"""
        data = self.fetch_box_score(game_ref)
        return {
            "status": map_game_state(data.get("gameState")),
            "home_score": (data.get("homeTeam") or {}).get("score"),
            "away_score": (data.get("awayTeam") or {}).get("score"),
        }

    def fetch_roster(self, season="current"):
        """Active roster as a flat list with a Forward/Defense/Goalie position"""
        data = self._get_json(f"roster/{self.team_abbrev}/{season}")
        players = []
        for group, position in (
            ("forwards", "Forward"),
            ("defensemen", "Defense"),
            ("goalies", "Goalie"),
        ):
            for entry in data.get(group) or []:
                first = (entry.get("firstName") or {}).get("default", "")
                last = (entry.get("lastName") or {}).get("default", "")
                players.append(
                    {
                        "nhl_player_id": entry.get("id"),
                        "name": f"{first} {last}".strip(),
                        "number": entry.get("sweaterNumber"),
                        "position": position,
                    }
                )

        logger.info(f"Fetched {len(players)} players from the {self.team_abbrev} roster")
        return players

    def fetch_schedule(self, on_date=None):
        """Games for the followed team in the schedule week containing on_date"""
        if on_date is None:
            on_date = datetime.now(timezone.utc).date()
        if isinstance(on_date, (date, datetime)):
            on_date = on_date.strftime("%Y-%m-%d")

        data = self._get_json(f"schedule/{on_date}")
        games = []
        for week in data.get("gameWeek") or []:
            for game in week.get("games") or []:
                home = game.get("homeTeam") or {}
                away = game.get("awayTeam") or {}
                if self.team_id not in (home.get("id"), away.get("id")):
                    continue
                is_home = home.get("id") == self.team_id
                opponent = away if is_home else home
                start = game.get("startTimeUTC")
                games.append(
                    {
                        "nhl_game_id": game.get("id"),
                        "is_home": is_home,
                        "opponent": (opponent.get("commonName") or {}).get("default")
                        or (opponent.get("placeName") or {}).get("default")
                        or opponent.get("abbrev", "Unknown Team"),
                        "game_time": (
                            datetime.fromisoformat(start.replace("Z", "+00:00"))
                            if start
                            else None
                        ),
                        "status": map_game_state(game.get("gameState")),
                        "home_score": home.get("score"),
                        "away_score": away.get("score"),
                    }
                )

        logger.info(f"Fetched {len(games)} {self.team_abbrev} games for week of {on_date}")
        return games
