# tests/test_cache.py
"""Test the per-user JSON cache store"""

import json
import os

import pytest

from spotify_profile.sync.cache import CacheStore, ARTISTS, PLAYLISTS, PROFILE, TRACKS
from spotify_profile.utils.exceptions import CacheMiss, PersistenceError


class TestCacheStore:
    """Test reads, writes and housekeeping"""

    def test_write_then_read(self, temp_dir):
        store = CacheStore(temp_dir)
        value = [{'id': 'a1', 'name': 'Artist One'}]

        path = store.write('u1', ARTISTS, value)

        assert path == temp_dir / 'u1' / 'artists.json'
        assert store.read('u1', ARTISTS) == value

    def test_file_is_pretty_printed_utf8(self, temp_dir):
        store = CacheStore(temp_dir)
        store.write('u1', PROFILE, {'id': 'u1', 'display_name': 'Zoë'})

        text = (temp_dir / 'u1' / 'profile.json').read_text(encoding='utf-8')

        assert 'Zoë' in text
        assert text.startswith('{\n  ')
        assert text.endswith('}\n')

    def test_empty_collection_is_a_hit(self, temp_dir):
        store = CacheStore(temp_dir)
        store.write('u1', PLAYLISTS, [])

        assert store.read('u1', PLAYLISTS) == []

    def test_missing_user_is_a_miss(self, temp_dir):
        with pytest.raises(CacheMiss) as exc_info:
            CacheStore(temp_dir).read('nobody', TRACKS)

        assert exc_info.value.user_id == 'nobody'
        assert exc_info.value.entity_name == TRACKS

    def test_malformed_json_is_a_miss(self, temp_dir):
        store = CacheStore(temp_dir)
        (temp_dir / 'u1').mkdir()
        (temp_dir / 'u1' / 'tracks.json').write_text('[{"id": "t1",')

        with pytest.raises(CacheMiss):
            store.read('u1', TRACKS)

    def test_overwrite_replaces_whole_document(self, temp_dir):
        store = CacheStore(temp_dir)
        store.write('u1', TRACKS, [{'id': 't1'}, {'id': 't2'}])
        store.write('u1', TRACKS, [{'id': 't3'}])

        assert store.read('u1', TRACKS) == [{'id': 't3'}]
        assert os.listdir(temp_dir / 'u1') == ['tracks.json']

    def test_unserializable_value_raises_persistence_error(self, temp_dir):
        store = CacheStore(temp_dir)

        with pytest.raises(PersistenceError):
            store.write('u1', ARTISTS, [object()])

        assert not list((temp_dir / 'u1').iterdir())

    def test_unwritable_root_raises_persistence_error(self, temp_dir):
        blocker = temp_dir / 'not-a-directory'
        blocker.write_text('')

        with pytest.raises(PersistenceError):
            CacheStore(blocker).write('u1', PROFILE, {'id': 'u1'})

    def test_path_traversal_rejected(self, temp_dir):
        store = CacheStore(temp_dir / 'data')

        with pytest.raises(PersistenceError):
            store.write('../escape', PROFILE, {})
        with pytest.raises(CacheMiss):
            store.read('..', PROFILE)

    def test_list_users_and_clear(self, temp_dir):
        store = CacheStore(temp_dir)
        store.write('u2', PROFILE, {'id': 'u2'})
        store.write('u1', PROFILE, {'id': 'u1'})

        assert store.list_users() == ['u1', 'u2']
        assert store.exists('u1', PROFILE)

        assert store.clear('u1') is True
        assert store.clear('u1') is False
        assert store.list_users() == ['u2']

    def test_list_users_without_root(self, temp_dir):
        assert CacheStore(temp_dir / 'missing').list_users() == []

    def test_written_json_matches_value(self, temp_dir):
        store = CacheStore(temp_dir)
        value = {'id': 'u1', 'display_name': 'User One', 'follower_count': 3, 'image_url': None}
        store.write('u1', PROFILE, value)

        with open(temp_dir / 'u1' / 'profile.json', encoding='utf-8') as f:
            assert json.load(f) == value
