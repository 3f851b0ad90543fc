import math

import pytest
import spotipy

import spotify_import


class _DummyPlaylistSpotify:
    def __init__(self, fail_user=False, fail_create=False, fail_add_on=None):
        self.fail_user = fail_user
        self.fail_create = fail_create
        self.fail_add_on = fail_add_on
        self.calls = []
        self.add_calls = []

    def current_user(self):
        self.calls.append(("current_user",))
        if self.fail_user:
            raise spotipy.SpotifyException(401, -1, "token expired")
        return {"id": "listener", "display_name": "Listener"}

    def user_playlist_create(self, user, name, public=True, collaborative=False, description=""):
        self.calls.append(("user_playlist_create", user, name, public, collaborative, description))
        if self.fail_create:
            raise spotipy.SpotifyException(403, -1, "forbidden")
        return {"id": "playlist-1", "name": name}

    def playlist_add_items(self, playlist_id, items, position=None):
        self.add_calls.append((playlist_id, list(items), position))
        if self.fail_add_on is not None and len(self.add_calls) == self.fail_add_on:
            raise spotipy.SpotifyException(502, -1, "bad gateway")
        return {"snapshot_id": f"snap-{len(self.add_calls)}"}


def _ids(count):
    return [f"track{i:04d}" for i in range(count)]


@pytest.mark.parametrize("length", [0, 1, 99, 100, 101, 148, 200, 250, 1000])
def test_chunked_sizes(length):
    chunks = list(spotify_import.chunked(_ids(length)))

    assert len(chunks) == math.ceil(length / 100)
    assert all(len(chunk) == 100 for chunk in chunks[:-1])
    assert sum(len(chunk) for chunk in chunks) == length


def test_chunked_rejects_non_positive_size():
    with pytest.raises(ValueError):
        list(spotify_import.chunked(["a"], size=0))


def test_import_creates_private_playlist_for_current_user():
    spotify = _DummyPlaylistSpotify()

    playlist_id = spotify_import.SpotifyPlaylistImporter(spotify).import_tracks(
        "Imported", ["a", "b"], "from disk"
    )

    assert playlist_id == "playlist-1"
    assert spotify.calls == [
        ("current_user",),
        ("user_playlist_create", "listener", "Imported", False, False, "from disk"),
    ]
    assert spotify.add_calls == [("playlist-1", ["a", "b"], 0)]


def test_import_148_tracks_uses_two_requests():
    spotify = _DummyPlaylistSpotify()
    track_ids = _ids(148)

    spotify_import.SpotifyPlaylistImporter(spotify).import_tracks("Imported", track_ids)

    assert [(len(items), position) for _, items, position in spotify.add_calls] == [
        (100, 0),
        (48, 100),
    ]
    assert spotify.add_calls[0][1] + spotify.add_calls[1][1] == track_ids


def test_insert_positions_follow_chunk_order():
    spotify = _DummyPlaylistSpotify()

    spotify_import.SpotifyPlaylistImporter(spotify).import_tracks("Imported", _ids(350))

    assert [position for _, _, position in spotify.add_calls] == [0, 100, 200, 300]


def test_empty_track_list_still_creates_playlist():
    spotify = _DummyPlaylistSpotify()

    playlist_id = spotify_import.SpotifyPlaylistImporter(spotify).import_tracks("Imported", [])

    assert playlist_id == "playlist-1"
    assert spotify.calls[-1][0] == "user_playlist_create"
    assert spotify.add_calls == []


def test_failed_second_chunk_aborts_remaining_chunks():
    spotify = _DummyPlaylistSpotify(fail_add_on=2)

    with pytest.raises(spotipy.SpotifyException):
        spotify_import.SpotifyPlaylistImporter(spotify).import_tracks("Imported", _ids(300))

    assert [position for _, _, position in spotify.add_calls] == [0, 100]


def test_current_user_failure_creates_nothing():
    spotify = _DummyPlaylistSpotify(fail_user=True)

    with pytest.raises(spotipy.SpotifyException):
        spotify_import.SpotifyPlaylistImporter(spotify).import_tracks("Imported", ["a"])

    assert spotify.calls == [("current_user",)]
    assert spotify.add_calls == []


def test_playlist_creation_failure_adds_nothing():
    spotify = _DummyPlaylistSpotify(fail_create=True)

    with pytest.raises(spotipy.SpotifyException):
        spotify_import.SpotifyPlaylistImporter(spotify).import_tracks("Imported", ["a"])

    assert spotify.add_calls == []
