import argparse
import asyncio
import json
import logging
import os
import random
import signal
import sys
import time
from typing import List, Optional

from spotipy.oauth2 import SpotifyOauthError

from freshweekly.application.pipeline import GenerationConfig, GenerationPipeline
from freshweekly.crosscutting.config import AppSettings, ConfigError, load_settings
from freshweekly.crosscutting.logging import setup_logging
from freshweekly.domain.entities import GenerationResult
from freshweekly.domain.errors import GenerationError, ProviderError
from freshweekly.domain.normalization import DEFAULT_PLAYLIST_NAME
from freshweekly.infrastructure.providers.spotify import SpotifyCatalog, build_auth_manager


class CLI:
    """Command Line Interface for Fresh Weekly."""

    def __init__(self):
        """Initialize CLI."""
        self.parser = self._create_parser()
        self._start_time = None
        self._last_status: Optional[str] = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='freshweekly',
            description='Build a fresh playlist biased toward the artists of an inspiration playlist'
        )
        parser.add_argument(
            '--env-file',
            default=None,
            help='Path to a .env file with Spotify settings'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        generate_parser = subparsers.add_parser('generate', help='Generate a playlist')
        generate_parser.add_argument(
            '--source',
            required=True,
            help='ID of the inspiration playlist'
        )
        generate_parser.add_argument(
            '--count',
            type=int,
            default=30,
            help='Number of tracks in the new playlist, 10-50 (default: 30)'
        )
        generate_parser.add_argument(
            '--bias',
            type=float,
            default=1.0,
            help='Bias strength toward frequent artists, 1.0-3.0 (default: 1.0)'
        )
        generate_parser.add_argument(
            '--max-per-artist',
            type=int,
            default=2,
            help='Maximum tracks per artist, 1-5 (default: 2)'
        )
        generate_parser.add_argument(
            '--name',
            default=DEFAULT_PLAYLIST_NAME,
            help=f'Target playlist name (default: {DEFAULT_PLAYLIST_NAME})'
        )
        generate_parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Pick tracks without writing a playlist'
        )
        generate_parser.add_argument(
            '--seed',
            type=int,
            default=None,
            help='Random seed for reproducible runs'
        )
        generate_parser.add_argument(
            '--report-path',
            default=None,
            help='Directory to save a JSON run report'
        )
        self._add_logging_arguments(generate_parser)

        list_parser = subparsers.add_parser('list', help='List your playlists')
        self._add_logging_arguments(list_parser)

        login_parser = subparsers.add_parser('login', help='Authorize with Spotify and cache the token')
        self._add_logging_arguments(login_parser)

        return parser

    @staticmethod
    def _add_logging_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='WARNING',
            help='Set logging level'
        )
        parser.add_argument(
            '--log-format',
            choices=['text', 'json'],
            default='text',
            help='Log record format (default: text)'
        )

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            logger.warning(f"Received signal {signum}, shutting down...")
            self._cleanup_resources()
            sys.exit(130)  # Standard exit code for signal termination

        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        logger = logging.getLogger(__name__)
        if self._start_time:
            duration = time.time() - self._start_time
            logger.info(f"CLI execution time: {duration:.2f}s")

    def _setup_logging(self, level: str, log_format: str = 'text') -> None:
        setup_logging(level=level, json_format=(log_format == 'json'))

    def _load_settings(self, args: argparse.Namespace) -> AppSettings:
        settings = load_settings(getattr(args, 'env_file', None))
        settings.validate()
        return settings

    def _create_catalog(self, settings: AppSettings) -> SpotifyCatalog:
        """Create Spotify catalog provider."""
        return SpotifyCatalog.from_settings(settings)

    def _print_progress(self, label: str) -> None:
        self._last_status = label
        print(label)

    def _build_config(self, args: argparse.Namespace) -> GenerationConfig:
        config = GenerationConfig(
            source_playlist_id=args.source,
            target_track_count=args.count,
            bias_exponent=args.bias,
            max_tracks_per_artist=args.max_per_artist,
            playlist_name=args.name,
            dry_run=args.dry_run,
        )
        config.validate()
        return config

    def _generate(self, args: argparse.Namespace) -> None:
        """Generate a playlist from an inspiration playlist."""
        logger = logging.getLogger(__name__)

        try:
            config = self._build_config(args)
            settings = self._load_settings(args)
            catalog = self._create_catalog(settings)
            rng = random.Random(args.seed) if args.seed is not None else None
            pipeline = GenerationPipeline(catalog, rng=rng, market_fallback=settings.market_fallback)

            result = asyncio.run(pipeline.generate(config, progress=self._print_progress))
        except (GenerationError, ConfigError, ProviderError) as e:
            logger.error(f"Generation failed: {e}")
            if self._last_status:
                print(self._last_status, file=sys.stderr)
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        self._print_result(result)
        if args.report_path:
            self._write_report(result, args.report_path)

    def _print_result(self, result: GenerationResult) -> None:
        print("-" * 50)
        for index, track in enumerate(result.tracks, 1):
            artists = ", ".join(artist.name for artist in track.artists)
            print(f"{index:2d}. {track.name} - {artists}")
        print("-" * 50)
        if result.dry_run:
            print(f"DRY-RUN: {len(result.tracks)} tracks picked for '{result.playlist_name}'")
        else:
            action = "Updated" if result.reused_existing else "Created"
            print(f"{action} playlist: {result.playlist_name}")
            print(result.playlist_url)

    def _write_report(self, result: GenerationResult, report_path: str) -> Optional[str]:
        """Save a JSON report of the run."""
        logger = logging.getLogger(__name__)

        try:
            os.makedirs(report_path, exist_ok=True)
            run_id = result.metrics.get('run_id', 'run')
            report_data = {
                'playlist_id': result.playlist_id,
                'playlist_name': result.playlist_name,
                'reused_existing': result.reused_existing,
                'dry_run': result.dry_run,
                'seed_artist_ids': list(result.seed_artist_ids),
                'tracks': [
                    {
                        'uri': track.uri,
                        'name': track.name,
                        'artists': [artist.name for artist in track.artists],
                    }
                    for track in result.tracks
                ],
                'metrics': result.metrics,
            }

            report_file = os.path.join(report_path, f"generation_report_{run_id}.json")
            with open(report_file, 'w') as f:
                json.dump(report_data, f, indent=2, ensure_ascii=False)

            logger.info(f"Report saved to: {report_file}")
            return report_file

        except OSError as e:
            logger.error(f"Failed to write report: {e}")
            return None

    def _list_playlists(self, args: argparse.Namespace) -> None:
        """List the user's playlists."""
        logger = logging.getLogger(__name__)

        try:
            settings = self._load_settings(args)
            catalog = self._create_catalog(settings)
            playlists = asyncio.run(catalog.fetch_all_playlists())
        except (ConfigError, ProviderError) as e:
            logger.error(f"Failed to list playlists: {e}")
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        print("Your playlists:")
        print("-" * 50)
        for playlist in playlists:
            print(f"{playlist.id}: {playlist.name} (tracks: {playlist.track_count})")

    def _login(self, args: argparse.Namespace) -> None:
        """Run the PKCE authorization flow and cache the token."""
        try:
            settings = self._load_settings(args)
            if not settings.client_id:
                raise ConfigError("SPOTIFY_CLIENT_ID is required to log in")
            auth_manager = build_auth_manager(settings)
            auth_manager.get_access_token()
        except (ConfigError, SpotifyOauthError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Token cached at {settings.cache_path}")

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Run the CLI."""
        self._start_time = time.time()

        try:
            args = self.parser.parse_args(argv)

            if not args.command:
                self.parser.print_help()
                sys.exit(1)

            self._setup_logging(args.log_level, args.log_format)
            self._setup_signal_handlers()

            if args.command == 'generate':
                self._generate(args)
            elif args.command == 'list':
                self._list_playlists(args)
            elif args.command == 'login':
                self._login(args)
            else:
                self.parser.print_help()
                sys.exit(1)

        except KeyboardInterrupt:
            logger = logging.getLogger(__name__)
            logger.warning("Operation cancelled by user")
            sys.exit(130)
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    cli = CLI()
    cli.run()


if __name__ == '__main__':
    main()
