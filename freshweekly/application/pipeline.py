import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from freshweekly.application.accumulator import TrackAccumulator
from freshweekly.application.collector import (
    ALBUMS_PER_ARTIST, TRACKS_PER_ALBUM, CandidateCollector, gather_settled, shuffled,
)
from freshweekly.application.interleave import interleave
from freshweekly.application.sampling import build_artist_weights, weighted_sample
from freshweekly.crosscutting.config import ConfigError, DEFAULT_MARKET
from freshweekly.crosscutting.logging import (
    CorrelationContext, log_error, log_run_complete, log_run_start,
    log_tier_complete, set_stage,
)
from freshweekly.crosscutting.metrics import MetricsCollector
from freshweekly.domain.entities import (
    ArtistWeights, GenerationResult, Playlist, Track, UserProfile,
)
from freshweekly.domain.errors import (
    CollectorFetchError, EmptySourceError, NoCandidatesError, PlaylistWriteError, ProviderError,
)
from freshweekly.domain.normalization import (
    DEFAULT_PLAYLIST_NAME, build_artist_playlist_queries, find_playlist_by_name,
    normalize_playlist_name,
)
from freshweekly.domain.ports import CatalogProvider


logger = logging.getLogger(__name__)

SEED_ARTISTS = 8
TIER_BATCH_SIZE = 3
NEIGHBOR_PLAYLISTS_PER_ARTIST = 3
NEIGHBOR_TRACKS_PER_PLAYLIST = 50
SOURCE_TRACK_LIMIT = 300
WRITE_BATCH_SIZE = 100

PLAYLIST_DESCRIPTION = "Built by Fresh Weekly Builder. Bias-aware picks from your playlist."

ProgressCallback = Callable[[str], None]


class GenerationState(str, Enum):
    """States of a generation run."""

    IDLE = "idle"
    FETCHING_SOURCE = "fetching_source"
    SAMPLING_SEEDS = "sampling_seeds"
    COLLECTING_SEED_TIER = "collecting_seed_tier"
    COLLECTING_NEIGHBOR_TIER = "collecting_neighbor_tier"
    COLLECTING_FALLBACK_TIER = "collecting_fallback_tier"
    WRITING = "writing"
    DONE = "done"
    ERRORED = "errored"


PROGRESS_LABELS = {
    GenerationState.FETCHING_SOURCE: "Pulling tracks from your inspiration playlist...",
    GenerationState.SAMPLING_SEEDS: "Bias-sampling artists you play the most...",
    GenerationState.COLLECTING_SEED_TIER: "Collecting albums from your biased artists...",
    GenerationState.COLLECTING_NEIGHBOR_TIER: "Scanning playlists for neighboring artists...",
    GenerationState.COLLECTING_FALLBACK_TIER: "Padding with more artists from your playlist...",
    GenerationState.WRITING: "Saving tracks to Spotify...",
    GenerationState.DONE: "Done!",
}


@dataclass
class GenerationConfig:
    """User-facing knobs of one generation run."""

    source_playlist_id: str
    target_track_count: int = 30
    bias_exponent: float = 1.0
    max_tracks_per_artist: int = 2
    playlist_name: str = DEFAULT_PLAYLIST_NAME
    dry_run: bool = False

    def validate(self) -> None:
        """Reject values outside the supported ranges.

        Raises:
            ConfigError: If any value is out of range
        """
        if not self.source_playlist_id or not self.source_playlist_id.strip():
            raise ConfigError("source_playlist_id is required")
        if not 10 <= self.target_track_count <= 50:
            raise ConfigError(f"target_track_count must be between 10 and 50, got {self.target_track_count}")
        if not 1.0 <= self.bias_exponent <= 3.0:
            raise ConfigError(f"bias_exponent must be between 1.0 and 3.0, got {self.bias_exponent}")
        if not 1 <= self.max_tracks_per_artist <= 5:
            raise ConfigError(f"max_tracks_per_artist must be between 1 and 5, got {self.max_tracks_per_artist}")


class PlaylistWriter:
    """Writes a URI list to a playlist in request-sized batches."""

    def __init__(self, catalog: CatalogProvider, batch_size: int = WRITE_BATCH_SIZE):
        self.catalog = catalog
        self.batch_size = batch_size

    def split_into_batches(self, track_uris: List[str]) -> List[List[str]]:
        """Split track URIs into batches of at most batch_size."""
        batches = []
        for i in range(0, len(track_uris), self.batch_size):
            batches.append(track_uris[i:i + self.batch_size])
        return batches

    async def write(self, playlist_id: str, track_uris: List[str]) -> int:
        """Replace playlist contents with track_uris.

        The first batch replaces the current contents, the rest are appended.

        Returns:
            Number of write requests issued
        """
        batches = self.split_into_batches(track_uris) or [[]]
        for batch_index, batch in enumerate(batches):
            logger.info(f"Writing batch {batch_index} with {len(batch)} tracks to playlist {playlist_id}")
            if batch_index == 0:
                await self.catalog.replace_playlist_tracks(playlist_id, batch)
            else:
                await self.catalog.add_tracks_to_playlist(playlist_id, batch)
        return len(batches)


class GenerationPipeline:
    """Orchestrates a generation run from source playlist to written playlist."""

    def __init__(self,
                 catalog: CatalogProvider,
                 rng: Optional[random.Random] = None,
                 seed_artist_count: int = SEED_ARTISTS,
                 albums_per_artist: int = ALBUMS_PER_ARTIST,
                 tracks_per_album: int = TRACKS_PER_ALBUM,
                 tier_batch_size: int = TIER_BATCH_SIZE,
                 neighbor_playlists_per_artist: int = NEIGHBOR_PLAYLISTS_PER_ARTIST,
                 neighbor_tracks_per_playlist: int = NEIGHBOR_TRACKS_PER_PLAYLIST,
                 source_track_limit: int = SOURCE_TRACK_LIMIT,
                 market_fallback: str = DEFAULT_MARKET):
        """Initialize generation pipeline.

        Args:
            catalog: Authorized catalog provider
            rng: Random source shared by sampling, collection and filtering
            seed_artist_count: Number of seed artists to sample
            albums_per_artist: Album budget per artist in the collector
            tracks_per_album: Tracks kept per sampled album
            tier_batch_size: Artists per collector call in the neighbor and fallback tiers
            neighbor_playlists_per_artist: Playlists searched per seed artist
            neighbor_tracks_per_playlist: Tracks read from each neighboring playlist
            source_track_limit: Maximum tracks read from the source playlist
            market_fallback: Market used when the user profile has no country
        """
        self.catalog = catalog
        self.rng = rng or random.Random()
        self.seed_artist_count = seed_artist_count
        self.albums_per_artist = albums_per_artist
        self.tracks_per_album = tracks_per_album
        self.tier_batch_size = tier_batch_size
        self.neighbor_playlists_per_artist = neighbor_playlists_per_artist
        self.neighbor_tracks_per_playlist = neighbor_tracks_per_playlist
        self.source_track_limit = source_track_limit
        self.market_fallback = market_fallback
        self.writer = PlaylistWriter(catalog)
        self.last_metrics: Optional[MetricsCollector] = None
        self._state = GenerationState.IDLE
        self._running = False

    @property
    def state(self) -> GenerationState:
        return self._state

    def _transition(self, state: GenerationState, progress: Optional[ProgressCallback],
                    label: Optional[str] = None) -> None:
        self._state = state
        set_stage(state.value)
        label = label or PROGRESS_LABELS.get(state)
        logger.info(f"State -> {state.value}")
        if progress is not None and label:
            progress(label)

    async def generate(self, config: GenerationConfig,
                       progress: Optional[ProgressCallback] = None) -> GenerationResult:
        """Run one generation.

        Args:
            config: Generation settings
            progress: Optional callback receiving human-readable phase labels

        Returns:
            GenerationResult with the interleaved tracks and target playlist

        Raises:
            ConfigError: If config is out of range
            EmptySourceError: If the source playlist has no artist signal
            CollectorFetchError: If a catalog fetch fails during discovery
            NoCandidatesError: If no track survives filtering
            PlaylistWriteError: If the playlist cannot be created or written
        """
        if self._running:
            raise RuntimeError("A generation run is already in progress")
        config.validate()

        self._running = True
        run_id = f"fw_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"
        metrics = MetricsCollector(run_id, config.source_playlist_id)
        self.last_metrics = metrics
        self._state = GenerationState.IDLE

        try:
            with CorrelationContext(run_id=run_id, playlist_id=config.source_playlist_id):
                log_run_start(logger, run_id, config.source_playlist_id,
                              target_track_count=config.target_track_count,
                              bias_exponent=config.bias_exponent,
                              max_tracks_per_artist=config.max_tracks_per_artist,
                              dry_run=config.dry_run)
                metrics.start_run()
                try:
                    result = await self._run(config, progress, metrics)
                except Exception as e:
                    self._transition(GenerationState.ERRORED, None)
                    log_error(logger, "Generation failed", e, failed_run=run_id)
                    raise
                finally:
                    set_stage(None)
                log_run_complete(logger, run_id, len(result.tracks), result.playlist_id,
                                 reused_existing=result.reused_existing, dry_run=result.dry_run)
                return result
        finally:
            self._running = False

    async def _run(self, config: GenerationConfig, progress: Optional[ProgressCallback],
                   metrics: MetricsCollector) -> GenerationResult:
        self._transition(GenerationState.FETCHING_SOURCE, progress)
        profile, source_tracks = await self._fetch_source(config.source_playlist_id)
        weights = build_artist_weights(source_tracks)
        metrics.record_source(len(source_tracks), len(weights))
        if not len(weights):
            raise EmptySourceError("No artists found in that playlist.")

        self._transition(GenerationState.SAMPLING_SEEDS, progress)
        seeds = weighted_sample(
            weights.entries(),
            min(self.seed_artist_count, len(weights)),
            config.bias_exponent,
            rng=self.rng,
        )
        metrics.record_seeds(len(seeds))
        logger.info(f"Sampled {len(seeds)} seed artists from {len(weights)} distinct artists")

        collector = CandidateCollector(
            self.catalog,
            market=profile.country or self.market_fallback,
            rng=self.rng,
            albums_per_artist=self.albums_per_artist,
            tracks_per_album=self.tracks_per_album,
        )
        accumulator = TrackAccumulator(
            target_count=config.target_track_count,
            max_per_artist=config.max_tracks_per_artist,
            excluded_uris=(track.uri for track in source_tracks if track.uri),
            rng=self.rng,
        )

        self._transition(GenerationState.COLLECTING_SEED_TIER, progress)
        with metrics.tier_context("seed"):
            await self._collect_batch(seeds, collector, accumulator, metrics)
        log_tier_complete(logger, "seed", len(accumulator), config.target_track_count)

        if not accumulator.is_satisfied():
            self._transition(GenerationState.COLLECTING_NEIGHBOR_TIER, progress)
            with metrics.tier_context("neighbor"):
                neighbors = await self._discover_neighbor_artists(seeds, weights)
                await self._collect_in_batches(neighbors, collector, accumulator, metrics)
            log_tier_complete(logger, "neighbor", len(accumulator), config.target_track_count,
                              neighbor_artists=len(neighbors))

        if not accumulator.is_satisfied():
            self._transition(GenerationState.COLLECTING_FALLBACK_TIER, progress)
            remaining = shuffled([a for a in weights.artist_ids() if a not in seeds], self.rng)
            with metrics.tier_context("fallback"):
                await self._collect_in_batches(remaining, collector, accumulator, metrics)
            log_tier_complete(logger, "fallback", len(accumulator), config.target_track_count,
                              fallback_artists=len(remaining))

        if not len(accumulator):
            raise NoCandidatesError("No new tracks available after filtering.")

        ordered = interleave(accumulator.result())
        name = normalize_playlist_name(config.playlist_name)

        if config.dry_run:
            logger.info(f"DRY-RUN: Would write {len(ordered)} tracks to playlist '{name}'")
            self._transition(GenerationState.DONE, progress)
            metrics.end_run(len(ordered))
            return GenerationResult(
                tracks=tuple(ordered),
                playlist_id=None,
                playlist_name=name,
                seed_artist_ids=tuple(seeds),
                dry_run=True,
                metrics=metrics.to_dict(),
            )

        playlist_id, reused = await self._write_playlist(profile, name, ordered, progress)

        self._transition(GenerationState.DONE, progress)
        metrics.end_run(len(ordered))
        return GenerationResult(
            tracks=tuple(ordered),
            playlist_id=playlist_id,
            playlist_name=name,
            seed_artist_ids=tuple(seeds),
            reused_existing=reused,
            metrics=metrics.to_dict(),
        )

    async def _fetch_source(self, playlist_id: str) -> Tuple[UserProfile, List[Track]]:
        try:
            profile = await self.catalog.fetch_current_user_profile()
            tracks = await self.catalog.fetch_playlist_tracks(playlist_id, self.source_track_limit)
        except ProviderError as e:
            raise CollectorFetchError(f"Failed to fetch source playlist {playlist_id}: {e}") from e
        logger.info(f"Fetched {len(tracks)} source tracks")
        return profile, tracks

    async def _collect_batch(self, artist_ids: Sequence[str], collector: CandidateCollector,
                             accumulator: TrackAccumulator, metrics: MetricsCollector) -> None:
        candidates = await collector.collect(artist_ids)
        accepted = accumulator.add(candidates)
        metrics.record_batch(len(artist_ids), len(candidates), accepted)

    async def _collect_in_batches(self, artist_ids: Sequence[str], collector: CandidateCollector,
                                  accumulator: TrackAccumulator, metrics: MetricsCollector) -> None:
        for start in range(0, len(artist_ids), self.tier_batch_size):
            if accumulator.is_satisfied():
                break
            chunk = list(artist_ids[start:start + self.tier_batch_size])
            await self._collect_batch(chunk, collector, accumulator, metrics)

    async def _discover_neighbor_artists(self, seeds: Sequence[str],
                                         weights: ArtistWeights) -> List[str]:
        """Find artists appearing on public playlists that feature the seed artists."""
        queries = build_artist_playlist_queries(weights.name_of(artist_id) for artist_id in seeds)
        try:
            search_results = await gather_settled(
                self.catalog.search_playlists(query, self.neighbor_playlists_per_artist)
                for query in queries
            )
            playlist_ids = shuffled(
                [playlist.id for playlists in search_results for playlist in playlists],
                self.rng,
            )
            track_batches = await gather_settled(
                self.catalog.fetch_playlist_tracks(playlist_id, self.neighbor_tracks_per_playlist)
                for playlist_id in playlist_ids
            )
        except ProviderError as e:
            raise CollectorFetchError(f"Failed to scan neighboring playlists: {e}") from e

        seed_set = set(seeds)
        artist_ids = [
            artist.id
            for tracks in track_batches
            for track in tracks
            for artist in track.artists
            if artist.id and artist.id not in seed_set
        ]
        neighbors = []
        seen = set()
        for artist_id in shuffled(artist_ids, self.rng):
            if artist_id not in seen:
                seen.add(artist_id)
                neighbors.append(artist_id)

        logger.info(f"Found {len(neighbors)} neighbor artists on {len(playlist_ids)} playlists")
        return neighbors

    async def _write_playlist(self, profile: UserProfile, name: str, tracks: List[Track],
                              progress: Optional[ProgressCallback]) -> Tuple[str, bool]:
        try:
            existing = find_playlist_by_name(await self.catalog.fetch_all_playlists(), name)
            if existing is not None:
                self._transition(GenerationState.WRITING, progress, "Updating your existing playlist...")
                playlist_id = existing.id
                logger.info(f"Reusing existing playlist '{existing.name}' ({playlist_id})")
            else:
                self._transition(GenerationState.WRITING, progress, "Creating your playlist on Spotify...")
                created: Playlist = await self.catalog.create_playlist(
                    profile.id, name, PLAYLIST_DESCRIPTION, True)
                playlist_id = created.id if created else None
                logger.info(f"Created playlist '{name}' ({playlist_id})")

            if not playlist_id:
                raise PlaylistWriteError("Unable to create or find a playlist to update.")

            if progress is not None:
                progress(PROGRESS_LABELS[GenerationState.WRITING])
            await self.writer.write(playlist_id, [track.uri for track in tracks])
        except ProviderError as e:
            raise PlaylistWriteError(f"Failed to write playlist '{name}': {e}") from e

        return playlist_id, existing is not None
