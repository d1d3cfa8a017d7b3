import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, List, Optional

from dotenv import dotenv_values


DEFAULT_REDIRECT_URI = 'http://127.0.0.1:8888/callback'
DEFAULT_MARKET = 'US'
DEFAULT_REQUESTS_TIMEOUT = 15


class ConfigError(Exception):
    """Configuration error."""
    pass


def get_spotify_scopes() -> List[str]:
    """Get minimal required Spotify scopes."""
    return [
        'playlist-read-private',        # Read private playlists
        'playlist-read-collaborative',  # Read collaborative playlists
        'playlist-modify-public',       # Create/modify public playlists
        'playlist-modify-private',      # Create/modify private playlists
        'user-read-private',            # Read the user's market
    ]


def get_spotify_scope_string() -> str:
    """Get Spotify scopes as space-separated string."""
    return ' '.join(get_spotify_scopes())


def get_missing_spotify_scopes(scopes: str) -> List[str]:
    """Get list of missing required Spotify scopes."""
    provided_scopes = set((scopes or '').split())
    return [scope for scope in get_spotify_scopes() if scope not in provided_scopes]


@dataclass(frozen=True)
class AppSettings:
    """Runtime settings for the generator CLI."""

    client_id: Optional[str] = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    access_token: Optional[str] = None
    cache_path: Path = Path.home() / '.freshweekly' / 'token_cache'
    market_fallback: str = DEFAULT_MARKET
    requests_timeout: int = DEFAULT_REQUESTS_TIMEOUT

    def validate(self) -> None:
        """Validate that credentials can be obtained."""
        if not self.access_token and not self.client_id:
            raise ConfigError("SPOTIFY_CLIENT_ID not found in environment "
                              "(or set SPOTIFY_ACCESS_TOKEN)")
        if self.requests_timeout <= 0:
            raise ConfigError("FRESHWEEKLY_REQUESTS_TIMEOUT must be positive")

    def summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        return {
            'client_id_set': bool(self.client_id),
            'access_token_set': bool(self.access_token),
            'redirect_uri': self.redirect_uri,
            'cache_path': str(self.cache_path),
            'market_fallback': self.market_fallback,
            'requests_timeout': self.requests_timeout,
            'spotify_scopes': get_spotify_scopes(),
        }


def _read_int(values: Dict[str, Optional[str]], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def load_settings(env_file: Optional[str] = None) -> AppSettings:
    """Load settings from a .env file and the process environment.

    Values from the environment take precedence over the .env file.
    """
    values: Dict[str, Optional[str]] = {}
    if env_file:
        if not Path(env_file).exists():
            raise ConfigError(f"Env file not found: {env_file}")
        values.update(dotenv_values(env_file))
    elif Path('.env').exists():
        values.update(dotenv_values('.env'))
    values.update(os.environ)

    def _get(key: str) -> Optional[str]:
        value = values.get(key)
        if value is None or not str(value).strip():
            return None
        return str(value).strip()

    cache_path = _get('FRESHWEEKLY_CACHE_PATH')

    return AppSettings(
        client_id=_get('SPOTIFY_CLIENT_ID'),
        redirect_uri=_get('SPOTIFY_REDIRECT_URI') or DEFAULT_REDIRECT_URI,
        access_token=_get('SPOTIFY_ACCESS_TOKEN'),
        cache_path=Path(cache_path).expanduser() if cache_path else AppSettings.cache_path,
        market_fallback=(_get('FRESHWEEKLY_MARKET_FALLBACK') or DEFAULT_MARKET).upper(),
        requests_timeout=_read_int(values, 'FRESHWEEKLY_REQUESTS_TIMEOUT', DEFAULT_REQUESTS_TIMEOUT),
    )
