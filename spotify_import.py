#!/usr/bin/env python3
"""
Local Music to Spotify Import Tool
Scans a local music library, matches every tagged track on Spotify and
imports the matches into a new private playlist
"""

import datetime
import logging
import os
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Sequence

import mutagen
import requests
import spotipy
from mutagen.id3 import ID3
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

__version__ = "0.1.0"

logger = logging.getLogger("spotify_import")

DEFAULT_PLAYLIST_NAME = "Imported"
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8888/callback"
SPOTIFY_SCOPE = "playlist-modify-private"

# Spotify accepts at most 100 items per "add items to playlist" request
MAX_ITEMS_PER_REQUEST = 100

# Errors raised by spotipy for a failed remote call
REMOTE_ERRORS = (spotipy.SpotifyException, requests.exceptions.RequestException)

# Raw ID3 frames for formats mutagen has no easy tag interface for (WAV, AIFF)
ID3_FRAMES = {'title': 'TIT2', 'artist': 'TPE1', 'album': 'TALB'}


@dataclass(frozen=True)
class TrackMetadata:
    """Tags read from a local audio file"""
    path: str
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None

    def __str__(self):
        return f"{self.artist or '?'} - {self.title or '?'}"


@dataclass(frozen=True)
class SearchQuery:
    """Free-text Spotify search derived from a local track"""
    text: str
    source: Optional[TrackMetadata] = None

    @classmethod
    def from_metadata(cls, metadata: TrackMetadata) -> Optional["SearchQuery"]:
        """Build "<title> - <artist>", or None when either tag is missing"""
        if not metadata.title or not metadata.artist:
            return None
        return cls(f"{metadata.title} - {metadata.artist}", metadata)

    def __str__(self):
        return self.text


@dataclass
class QueryBatch:
    """Queries built from a scan, plus the records that had to be dropped"""
    queries: List[SearchQuery] = field(default_factory=list)
    skipped: List[TrackMetadata] = field(default_factory=list)


@dataclass
class ResolvedTracks:
    """Spotify track ids in query order, plus the queries that found nothing"""
    track_ids: List[str] = field(default_factory=list)
    misses: List[SearchQuery] = field(default_factory=list)


class AuthenticationError(Exception):
    """Custom exception for authentication failures"""
    pass


def build_search_queries(records: Iterable[TrackMetadata]) -> QueryBatch:
    """Turn metadata records into search queries, silently dropping incomplete ones"""
    batch = QueryBatch()
    for record in records:
        query = SearchQuery.from_metadata(record)
        if query is None:
            logger.debug(f"Skipping {record.path}: missing title or artist tag")
            batch.skipped.append(record)
            continue
        batch.queries.append(query)
    return batch


def chunked(items: Sequence[str], size: int = MAX_ITEMS_PER_REQUEST) -> Iterator[Sequence[str]]:
    """Yield consecutive slices of at most ``size`` items"""
    if size < 1:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


class LocalLibraryScanner:
    """Reads embedded tags from every file under a directory"""

    def __init__(self, root: str):
        self.root = root

    def iter_files(self) -> Iterator[str]:
        """Walk the tree in a stable (sorted) order"""
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            for filename in sorted(filenames):
                path = os.path.join(dirpath, filename)
                if os.path.isfile(path):
                    yield path

    @staticmethod
    def read_metadata(path: str) -> Optional[TrackMetadata]:
        """Read title/artist/album tags, or None if the file has no usable tag block"""
        try:
            audio = mutagen.File(path, easy=True)
        except (mutagen.MutagenError, OSError) as e:
            logger.debug(f"Could not read {path}: {e}")
            return None

        if audio is None or audio.tags is None:
            return None

        def first(key: str) -> Optional[str]:
            if isinstance(audio.tags, ID3):
                frame = audio.tags.get(ID3_FRAMES[key])
                values = frame.text if frame is not None else None
            else:
                values = audio.tags.get(key)
            if not values:
                return None
            return str(values[0])

        return TrackMetadata(
            path=path,
            title=first('title'),
            artist=first('artist'),
            album=first('album')
        )

    def collect_track_tags(self) -> List[TrackMetadata]:
        tracks = []
        for path in self.iter_files():
            metadata = self.read_metadata(path)
            if metadata is not None:
                tracks.append(metadata)
        return tracks


class SpotifyAuthManager:
    """Authorization-code login that keeps the token in memory only"""

    def __init__(self, client_id: str, client_secret: str,
                 redirect_uri: str = DEFAULT_REDIRECT_URI,
                 open_browser: bool = False):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.open_browser = open_browser

    def create_auth_manager(self) -> SpotifyOAuth:
        return SpotifyOAuth(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scope=SPOTIFY_SCOPE,
            open_browser=self.open_browser,
            cache_handler=MemoryCacheHandler()
        )

    def authenticate(self) -> spotipy.Spotify:
        """Run the interactive login and return an authenticated client.

        Raises:
            AuthenticationError: the token could not be obtained
        """
        auth_manager = self.create_auth_manager()

        logger.info("Obtaining the access token")
        try:
            # Prompts for the redirect URL unless a token is already cached
            token = auth_manager.get_access_token(as_dict=False)
        except (SpotifyOauthError, *REMOTE_ERRORS) as e:
            raise AuthenticationError(f"Spotify authentication failed: {e}") from e

        if not token:
            raise AuthenticationError("Spotify authentication failed: no access token returned")

        return spotipy.Spotify(auth_manager=auth_manager)


class SpotifyTrackResolver:
    """Maps search queries to Spotify track ids using the top search result only"""

    progress_interval = 25

    def __init__(self, spotify: spotipy.Spotify):
        self.spotify = spotify

    def search_track(self, query: SearchQuery) -> Optional[str]:
        """Return the id of the first search result, or None.

        A failed request counts the same as an empty result.
        """
        try:
            results = self.spotify.search(q=query.text, limit=1, type='track')
        except REMOTE_ERRORS as e:
            logger.debug(f"Search request failed for '{query}': {e}")
            return None

        items = ((results or {}).get('tracks') or {}).get('items') or []
        if not items or not items[0]:
            return None
        return items[0].get('id')

    def resolve(self, queries: Sequence[SearchQuery]) -> ResolvedTracks:
        resolved = ResolvedTracks()

        for i, query in enumerate(queries, 1):
            track_id = self.search_track(query)
            if track_id:
                resolved.track_ids.append(track_id)
            else:
                logger.warning(f"'{query}' not found in the Spotify library")
                resolved.misses.append(query)

            if i % self.progress_interval == 0:
                logger.debug(f"Searched {i}/{len(queries)} tracks, {len(resolved.track_ids)} found")

        return resolved


class SpotifyPlaylistImporter:
    """Creates a private playlist and fills it in batches"""

    def __init__(self, spotify: spotipy.Spotify):
        self.spotify = spotify

    def create_playlist(self, name: str, description: str = "") -> str:
        user_id = self.spotify.current_user()['id']
        playlist = self.spotify.user_playlist_create(
            user_id,
            name,
            public=False,
            collaborative=False,
            description=description
        )
        logger.debug(f"Created playlist '{name}' ({playlist['id']}) for user {user_id}")
        return playlist['id']

    def add_tracks(self, playlist_id: str, track_ids: Sequence[str]):
        """Append tracks chunk by chunk.

        The insert position is advanced by the size of each requested chunk
        without re-reading the playlist, so it assumes every earlier request
        was applied. The first failing request aborts the import.
        """
        position = 0
        for chunk in chunked(track_ids):
            self.spotify.playlist_add_items(playlist_id, list(chunk), position=position)
            logger.debug(f"Imported {len(chunk)} tracks at position {position}")
            position += len(chunk)

    def import_tracks(self, name: str, track_ids: Sequence[str], description: str = "") -> str:
        """Create the playlist and add every track id; returns the playlist id"""
        playlist_id = self.create_playlist(name, description)
        self.add_tracks(playlist_id, track_ids)
        return playlist_id


@dataclass
class ImportResult:
    """Outcome of one run"""
    local_tracks: int = 0
    queries: QueryBatch = field(default_factory=QueryBatch)
    resolved: ResolvedTracks = field(default_factory=ResolvedTracks)
    playlist_id: Optional[str] = None
    success: bool = False
    cancelled: bool = False
    error: Optional[str] = None


def import_library(spotify: spotipy.Spotify, music_dir: str,
                   playlist_name: str = DEFAULT_PLAYLIST_NAME,
                   description: str = "",
                   confirm=None) -> ImportResult:
    """Scan ``music_dir``, match it on Spotify and import the matches.

    Args:
        spotify: authenticated client shared by the search and playlist steps
        music_dir: root of the local library
        playlist_name: name of the playlist to create
        description: playlist description
        confirm: optional callable taking the number of matched tracks; the
            playlist is only created when it returns True
    """
    result = ImportResult()

    tags = LocalLibraryScanner(music_dir).collect_track_tags()
    result.local_tracks = len(tags)
    logger.info(f"Found {len(tags)} local tracks")

    result.queries = build_search_queries(tags)
    if result.queries.skipped:
        logger.debug(f"{len(result.queries.skipped)} tracks skipped for missing title or artist")

    result.resolved = SpotifyTrackResolver(spotify).resolve(result.queries.queries)
    track_ids = result.resolved.track_ids
    logger.info(f"Found {len(track_ids)} tracks in the Spotify library")

    if confirm is not None and not confirm(len(track_ids)):
        result.cancelled = True
        return result

    try:
        result.playlist_id = SpotifyPlaylistImporter(spotify).import_tracks(
            playlist_name, track_ids, description
        )
    except (*REMOTE_ERRORS, KeyError, TypeError) as e:
        logger.debug(f"Import aborted: {e}")
        result.error = str(e)
        logger.error("Failed to import tracks")
        return result

    result.success = True
    logger.info(f"Successfully imported {len(track_ids)} tracks")
    return result


def export_missing_tracks(result: ImportResult, filename: str) -> Optional[str]:
    """Write the unmatched tracks to a text file for manual searching"""
    misses = result.resolved.misses
    try:
        with open(filename, 'w', encoding='utf-8') as f:
            f.write("MISSING TRACKS FROM SPOTIFY IMPORT\n")
            f.write("=" * 50 + "\n\n")
            f.write(f"Import Date: {datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
            f.write(f"Local Tracks: {result.local_tracks}\n")
            f.write(f"Skipped (missing tags): {len(result.queries.skipped)}\n")
            f.write(f"Total Missing: {len(misses)} tracks\n\n")

            for i, query in enumerate(misses, 1):
                f.write(f"{i:3}. {query.text}\n")
                if query.source is not None:
                    if query.source.album:
                        f.write(f"     Album: {query.source.album}\n")
                    f.write(f"     File: {query.source.path}\n")
                f.write("\n")
    except OSError as e:
        logger.warning(f"Failed to export missing tracks: {e}")
        return None

    logger.info(f"Missing tracks exported to: {filename}")
    return filename


def setup_logging(verbose: bool = False):
    """Configure logging level."""
    logging.basicConfig(level=logging.WARNING, format='%(asctime)s - %(levelname)s - %(message)s')
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def create_parser():
    """Create the argument parser."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Import your local music library to a Spotify playlist",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --path ~/Music                          Import with a confirmation prompt
  %(prog)s --path ~/Music --name "Vinyl Rips" -y   Import into a custom playlist
  %(prog)s --path ~/Music --missing-report missing.txt
        """
    )

    parser.add_argument('-p', '--path', required=True,
                        help='Path to the directory with music')
    parser.add_argument('-c', '--client-id',
                        help='Spotify Client ID (or use SPOTIFY_CLIENT_ID env var)')
    parser.add_argument('-s', '--secret',
                        help='Spotify Client Secret (or use SPOTIFY_CLIENT_SECRET env var)')
    parser.add_argument('--redirect-uri',
                        help=f'OAuth redirect URI (or use SPOTIFY_REDIRECT_URI env var, '
                             f'default: {DEFAULT_REDIRECT_URI})')
    parser.add_argument('--name', default=DEFAULT_PLAYLIST_NAME,
                        help=f'Name of the playlist to create (default: {DEFAULT_PLAYLIST_NAME})')
    parser.add_argument('--description', default="",
                        help='Description of the playlist to create')
    parser.add_argument('--missing-report', metavar='FILE',
                        help='Write tracks not found on Spotify to FILE')
    parser.add_argument('--open-browser', action='store_true',
                        help='Open the authorization page in a browser')
    parser.add_argument('--yes', '-y', action='store_true',
                        help='Skip confirmation prompt')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    return parser


def prompt_confirmation(playlist_name: str):
    def confirm(track_count: int) -> bool:
        try:
            answer = input(f"Create playlist '{playlist_name}' with {track_count} tracks? (y/N): ")
        except EOFError:
            print()
            return False
        return answer.strip().lower() == 'y'
    return confirm


def main(argv=None):
    """Main entry point with CLI argument parsing."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    client_id = args.client_id or os.getenv("SPOTIFY_CLIENT_ID", "")
    client_secret = args.secret or os.getenv("SPOTIFY_CLIENT_SECRET", "")
    redirect_uri = args.redirect_uri or os.getenv("SPOTIFY_REDIRECT_URI", DEFAULT_REDIRECT_URI)

    if not client_id or not client_secret:
        print("⚠️  Spotify API credentials not found!")
        print("\nPlease set environment variables:")
        print("  export SPOTIFY_CLIENT_ID='your_client_id'")
        print("  export SPOTIFY_CLIENT_SECRET='your_client_secret'")
        print("\nOr use command-line flags:")
        print("  --client-id YOUR_ID --secret YOUR_SECRET")
        print("\nGet credentials from: https://developer.spotify.com/dashboard/applications")
        print(f"Make sure to add '{redirect_uri}' as a redirect URI")
        return 1

    if not os.path.isdir(args.path):
        logger.error(f"'{args.path}' is not a directory")
        return 1

    try:
        try:
            spotify = SpotifyAuthManager(
                client_id, client_secret, redirect_uri, open_browser=args.open_browser
            ).authenticate()
        except AuthenticationError as e:
            logger.error(str(e))
            print("❌ Spotify authentication failed.")
            return 1

        confirm = None if args.yes else prompt_confirmation(args.name)
        result = import_library(spotify, args.path, args.name, args.description, confirm)

        if args.missing_report and result.resolved.misses:
            export_missing_tracks(result, args.missing_report)

        if result.cancelled:
            print("Import cancelled.")
            return 0

        return 0 if result.success else 1

    except KeyboardInterrupt:
        print("\n👋 Cancelled by user.")
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        print(f"❌ Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    import sys
    sys.exit(main() or 0)
