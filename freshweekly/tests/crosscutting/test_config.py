from pathlib import Path

import pytest

from freshweekly.crosscutting.config import (
    AppSettings, ConfigError, DEFAULT_REDIRECT_URI, get_missing_spotify_scopes,
    get_spotify_scope_string, get_spotify_scopes, load_settings,
)


class TestSpotifyScopes:
    """Tests for Spotify scope helpers."""

    def test_scopes_cover_read_and_modify(self):
        scopes = get_spotify_scopes()

        assert 'playlist-read-private' in scopes
        assert 'playlist-modify-public' in scopes
        assert 'playlist-modify-private' in scopes
        assert 'user-read-private' in scopes

    def test_scope_string(self):
        assert get_spotify_scope_string() == ' '.join(get_spotify_scopes())

    def test_missing_scopes(self):
        missing = get_missing_spotify_scopes('playlist-read-private user-read-private')

        assert 'playlist-modify-public' in missing
        assert 'playlist-read-private' not in missing

    def test_missing_scopes_from_empty_string(self):
        assert get_missing_spotify_scopes('') == get_spotify_scopes()


class TestAppSettings:
    """Tests for AppSettings validation."""

    def test_requires_client_id_or_token(self):
        with pytest.raises(ConfigError, match="SPOTIFY_CLIENT_ID"):
            AppSettings().validate()

    def test_token_alone_is_enough(self):
        AppSettings(access_token='token').validate()

    def test_timeout_must_be_positive(self):
        with pytest.raises(ConfigError):
            AppSettings(client_id='client', requests_timeout=0).validate()

    def test_summary_hides_credentials(self):
        summary = AppSettings(client_id='client-id-value', access_token='token-value').summary()

        assert summary['client_id_set'] is True
        assert summary['access_token_set'] is True
        assert 'client-id-value' not in str(summary)
        assert 'token-value' not in str(summary)


class TestLoadSettings:
    """Tests for loading settings from env files and the environment."""

    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        settings = load_settings()

        assert settings.client_id is None
        assert settings.redirect_uri == DEFAULT_REDIRECT_URI
        assert settings.market_fallback == 'US'
        assert settings.requests_timeout == 15

    def test_reads_env_file(self, tmp_path):
        env_file = tmp_path / 'custom.env'
        env_file.write_text(
            'SPOTIFY_CLIENT_ID=from_file\n'
            'FRESHWEEKLY_MARKET_FALLBACK=se\n'
            'FRESHWEEKLY_CACHE_PATH=' + str(tmp_path / 'cache') + '\n'
        )

        settings = load_settings(str(env_file))

        assert settings.client_id == 'from_file'
        assert settings.market_fallback == 'SE'
        assert settings.cache_path == Path(tmp_path / 'cache')

    def test_dotenv_in_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / '.env').write_text('SPOTIFY_ACCESS_TOKEN=local_token\n')
        monkeypatch.chdir(tmp_path)

        assert load_settings().access_token == 'local_token'

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / 'custom.env'
        env_file.write_text('SPOTIFY_CLIENT_ID=from_file\n')
        monkeypatch.setenv('SPOTIFY_CLIENT_ID', 'from_env')

        assert load_settings(str(env_file)).client_id == 'from_env'

    def test_missing_env_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(str(tmp_path / 'missing.env'))

    def test_invalid_timeout(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv('FRESHWEEKLY_REQUESTS_TIMEOUT', 'soon')

        with pytest.raises(ConfigError, match="integer"):
            load_settings()

    def test_blank_values_fall_back_to_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv('SPOTIFY_REDIRECT_URI', '  ')

        assert load_settings().redirect_uri == DEFAULT_REDIRECT_URI
