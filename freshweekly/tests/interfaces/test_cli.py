import argparse
import json
from unittest.mock import Mock, patch

import pytest
from spotipy.oauth2 import SpotifyOauthError

from freshweekly.crosscutting.config import AppSettings, ConfigError
from freshweekly.domain.entities import Playlist
from freshweekly.domain.errors import PermanentFailure
from freshweekly.interfaces.cli import CLI
from freshweekly.tests.fakes import FakeCatalog, make_track


def _fake_catalog():
    catalog = FakeCatalog()
    source = []
    for artist, n in (("A", 5), ("B", 3), ("C", 1)):
        source += [make_track(f"spotify:track:src_{artist}_{i}", artist) for i in range(n)]
        catalog.add_artist_catalog(artist, albums=2, tracks_per_album=3)
    catalog.playlist_tracks["source"] = source
    return catalog


class TestCLIParser:
    """Tests for argument parsing."""

    def setup_method(self):
        self.cli = CLI()

    def test_generate_defaults(self):
        args = self.cli.parser.parse_args(['generate', '--source', 'src'])

        assert args.command == 'generate'
        assert args.source == 'src'
        assert args.count == 30
        assert args.bias == 1.0
        assert args.max_per_artist == 2
        assert args.name == 'Fresh Weekly'
        assert args.dry_run is False
        assert args.seed is None
        assert args.log_level == 'WARNING'
        assert args.log_format == 'text'

    def test_generate_options(self):
        args = self.cli.parser.parse_args([
            '--env-file', 'custom.env', 'generate', '--source', 'src', '--count', '20',
            '--bias', '2.5', '--max-per-artist', '3', '--name', 'Mine', '--dry-run',
            '--seed', '7', '--log-format', 'json',
        ])

        assert args.env_file == 'custom.env'
        assert args.count == 20
        assert args.bias == 2.5
        assert args.max_per_artist == 3
        assert args.name == 'Mine'
        assert args.dry_run is True
        assert args.seed == 7
        assert args.log_format == 'json'

    def test_source_is_required(self):
        with pytest.raises(SystemExit):
            self.cli.parser.parse_args(['generate'])

    def test_build_config_validates(self):
        args = self.cli.parser.parse_args(['generate', '--source', 'src', '--bias', '4'])

        with pytest.raises(ConfigError, match="bias_exponent"):
            self.cli._build_config(args)


class TestCLIRun:
    """Tests for running CLI commands against an in-memory catalog."""

    @pytest.fixture(autouse=True)
    def _workspace(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv('SPOTIFY_ACCESS_TOKEN', 'test_access_token')
        self.tmp_path = tmp_path
        self.cli = CLI()
        self.catalog = _fake_catalog()

    def _run(self, argv):
        with patch.object(CLI, '_setup_signal_handlers'), \
                patch.object(CLI, '_create_catalog', return_value=self.catalog):
            self.cli.run(argv)

    def test_generate_creates_playlist(self, capsys):
        self._run(['generate', '--source', 'source', '--count', '10', '--seed', '1'])

        out = capsys.readouterr().out
        assert "Pulling tracks from your inspiration playlist..." in out
        assert "Created playlist: Fresh Weekly" in out
        assert "https://open.spotify.com/playlist/created_1" in out
        assert len(self.catalog.written["created_1"]) == 6

    def test_generate_updates_existing_playlist(self, capsys):
        self.catalog.library = [Playlist(id="mine", name="fresh weekly")]

        self._run(['generate', '--source', 'source', '--count', '10', '--seed', '1'])

        out = capsys.readouterr().out
        assert "Updating your existing playlist..." in out
        assert "Updated playlist: Fresh Weekly" in out
        assert self.catalog.calls_to("create_playlist") == []

    def test_dry_run(self, capsys):
        self._run(['generate', '--source', 'source', '--count', '10', '--dry-run'])

        out = capsys.readouterr().out
        assert "DRY-RUN: 6 tracks picked for 'Fresh Weekly'" in out
        assert self.catalog.written == {}

    def test_report_written(self):
        report_dir = self.tmp_path / 'reports'

        self._run(['generate', '--source', 'source', '--count', '10', '--dry-run',
                   '--report-path', str(report_dir)])

        reports = list(report_dir.glob('generation_report_fw_*.json'))
        assert len(reports) == 1
        data = json.loads(reports[0].read_text())
        assert data['dry_run'] is True
        assert len(data['tracks']) == 6
        assert data['metrics']['seed_count'] == 3

    def test_invalid_count_exits_with_error(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            self._run(['generate', '--source', 'source', '--count', '5'])

        assert exc_info.value.code == 1
        assert "Error: target_track_count" in capsys.readouterr().err
        assert self.catalog.calls == []

    def test_generation_failure_shows_last_status(self, capsys):
        self.catalog.playlist_tracks["source"] = []

        with pytest.raises(SystemExit) as exc_info:
            self._run(['generate', '--source', 'source', '--count', '10'])

        err = capsys.readouterr().err
        assert exc_info.value.code == 1
        assert "Pulling tracks from your inspiration playlist..." in err
        assert "Error: No artists found in that playlist." in err

    def test_missing_credentials(self, capsys, monkeypatch):
        monkeypatch.delenv('SPOTIFY_ACCESS_TOKEN')

        with pytest.raises(SystemExit):
            with patch.object(CLI, '_setup_signal_handlers'):
                self.cli.run(['generate', '--source', 'source', '--count', '10'])

        assert "SPOTIFY_CLIENT_ID" in capsys.readouterr().err

    def test_list_playlists(self, capsys):
        self.catalog.library = [Playlist(id="p1", name="Road trip", track_count=42)]

        self._run(['list'])

        out = capsys.readouterr().out
        assert "Your playlists:" in out
        assert "p1: Road trip (tracks: 42)" in out

    def test_list_provider_failure(self, capsys):
        self.catalog.failures["fetch_all_playlists"] = PermanentFailure("token expired")

        with pytest.raises(SystemExit):
            self._run(['list'])

        assert "Error: token expired" in capsys.readouterr().err

    def test_no_command_prints_help(self):
        with pytest.raises(SystemExit) as exc_info:
            self._run([])

        assert exc_info.value.code == 1

    def test_login_requires_client_id(self, capsys):
        with pytest.raises(SystemExit):
            self._run(['login'])

        assert "SPOTIFY_CLIENT_ID is required" in capsys.readouterr().err

    def test_login_caches_token(self, capsys, monkeypatch):
        monkeypatch.setenv('SPOTIFY_CLIENT_ID', 'client')
        monkeypatch.setenv('FRESHWEEKLY_CACHE_PATH', str(self.tmp_path / 'token'))
        auth_manager = Mock()

        with patch('freshweekly.interfaces.cli.build_auth_manager', return_value=auth_manager):
            self._run(['login'])

        auth_manager.get_access_token.assert_called_once()
        assert "Token cached at" in capsys.readouterr().out

    def test_login_denied_exits_with_error(self, capsys, monkeypatch):
        monkeypatch.setenv('SPOTIFY_CLIENT_ID', 'client')
        auth_manager = Mock()
        auth_manager.get_access_token.side_effect = SpotifyOauthError("access_denied")

        with patch('freshweekly.interfaces.cli.build_auth_manager', return_value=auth_manager):
            with pytest.raises(SystemExit) as exc_info:
                self._run(['login'])

        assert exc_info.value.code == 1
        output = capsys.readouterr()
        assert "Error: access_denied" in output.err
        assert "Token cached at" not in output.out


class TestCreateCatalog:
    """Tests for catalog construction from settings."""

    def test_uses_settings(self):
        settings = AppSettings(access_token='token')

        with patch('freshweekly.interfaces.cli.SpotifyCatalog') as catalog_cls:
            CLI()._create_catalog(settings)

        catalog_cls.from_settings.assert_called_once_with(settings)

    def test_load_settings_validates(self):
        cli = CLI()
        args = argparse.Namespace(env_file=None)

        with patch('freshweekly.interfaces.cli.load_settings', return_value=AppSettings(access_token='t')):
            assert cli._load_settings(args).access_token == 't'
