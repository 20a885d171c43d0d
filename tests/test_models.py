"""Tests for settings parsing, snapshots and the error taxonomy."""

import asyncio
import errno

import pytest

from pearbridge.const import SETTINGS, SETTINGS_LABELS
from pearbridge.lib.errors import (AuthError, ConfigError, HttpError, MediaConnectionError,
                                   format_status, is_connection_error)
from pearbridge.models import (ConnectionStatus, CoverArtMode, Settings, SongSnapshot,
                               StatusKind, Tuning, extract_settings, parse_bool,
                               parse_cover_mode, parse_positive)


class TestParsers:

    @pytest.mark.parametrize("value,expected", [
        ("True", True), ("off", False), ("YES", True), ("0", False), ("maybe", None), (None, None),
    ])
    def test_parse_bool(self, value, expected):
        fallback = None
        assert parse_bool(value, fallback) is expected

    @pytest.mark.parametrize("value,expected", [
        ("Off", CoverArtMode.OFF),
        ("disabled", CoverArtMode.OFF),
        ("base64", CoverArtMode.MEMORY),
        ("Local", CoverArtMode.LOCAL),
        ("file", CoverArtMode.LOCAL),
        ("sideways", CoverArtMode.MEMORY),
    ])
    def test_parse_cover_mode(self, value, expected):
        assert parse_cover_mode(value, CoverArtMode.MEMORY) is expected

    def test_parse_positive(self):
        assert parse_positive("250", 500) == 250
        assert parse_positive("0", 500) == 500
        assert parse_positive("abc", 500) == 500
        assert parse_positive(1.5, 500) == 1.5


class TestExtractSettings:

    def test_list_of_pairs(self):
        payload = [{"id": "pear.port", "value": "9000"}, {"pear.hostname": "studio"}]
        assert extract_settings(payload) == {"pear.port": "9000", "pear.hostname": "studio"}

    def test_values_wrapper(self):
        assert extract_settings({"values": [{"id": "pear.port", "value": "1"}]}) == {"pear.port": "1"}

    def test_nested_payload(self):
        payload = {"payload": {"settings": [{"id": "pear.clientId", "value": "deck"}]}}
        assert extract_settings(payload) == {"pear.clientId": "deck"}

    def test_flat_mapping_with_labels(self):
        payload = {SETTINGS_LABELS["port"]: "9999"}
        assert extract_settings(payload) == payload

    def test_unknown_shape_raises(self):
        with pytest.raises(ValueError):
            extract_settings({"something": "else"})
        with pytest.raises(ValueError):
            extract_settings("pear.port=1")


class TestSettings:

    def test_merged_by_id_and_label(self):
        merged = Settings().merged({
            SETTINGS["hostname"]: "http://studio.local:9863/",
            SETTINGS_LABELS["port"]: "9000",
            SETTINGS["extended_states_enabled"]: "False",
            SETTINGS_LABELS["cover_art_mode"]: "Local",
        })
        assert merged.hostname == "http://studio.local:9863/"
        assert merged.port == 9000
        assert merged.extended_states_enabled is False
        assert merged.cover_art_mode is CoverArtMode.LOCAL

    def test_blank_values_keep_current(self):
        base = Settings(hostname="studio", client_id="deck", poll_interval_ms=250)
        merged = base.merged({SETTINGS["hostname"]: "  ", SETTINGS["client_id"]: "",
                              SETTINGS["poll_interval_ms"]: "nope"})
        assert merged == base

    @pytest.mark.parametrize("pushed", ["0", "-250", 0, "fast"])
    def test_non_positive_poll_interval_keeps_current(self, pushed):
        base = Settings(poll_interval_ms=750)
        merged = base.merged({SETTINGS["poll_interval_ms"]: pushed})
        assert merged.poll_interval_ms == 750

    def test_connection_key(self):
        base = Settings()
        assert base.merged({SETTINGS["cover_art_mode"]: "off"}).connection_key() == base.connection_key()
        assert base.merged({SETTINGS["port"]: "1234"}).connection_key() != base.connection_key()

    def test_tuning_defaults(self):
        tuning = Tuning()
        assert tuning.volume_debounce == 0.12
        assert tuning.volume_hold == 0.6
        assert tuning.cover_min_emit_interval == 1.5


class TestSongSnapshot:

    def test_tolerant_keys(self):
        song = SongSnapshot.from_payload({
            "songTitle": "Teardrop",
            "artists": [{"name": "Massive Attack"}, {"name": "Liz Fraser"}],
            "cover": "https://example.com/c.jpg",
            "paused": True,
            "songDuration": 330.5,
        })
        assert song.title == "Teardrop"
        assert song.artist == "Massive Attack, Liz Fraser"
        assert song.cover_url == "https://example.com/c.jpg"
        assert song.is_paused is True
        assert song.is_playing is False
        assert song.duration_sec == 330.5
        assert song.elapsed_sec is None

    def test_artist_list(self):
        song = SongSnapshot.from_payload({"title": "x", "artist": ["A", "B"]})
        assert song.artist == "A, B"

    def test_not_a_song(self):
        assert SongSnapshot.from_payload(None) is None
        assert SongSnapshot.from_payload([]) is None
        assert SongSnapshot.from_payload({}).has_song is False


class TestErrors:

    def test_connection_errors(self):
        assert is_connection_error(MediaConnectionError("fetch failed"))
        assert is_connection_error(asyncio.TimeoutError())
        assert is_connection_error(OSError(errno.ECONNREFUSED, "Connection refused"))
        assert not is_connection_error(HttpError("HTTP 500", status=500))
        assert not is_connection_error(ValueError("bad"))
        assert not is_connection_error(None)

    def test_wrapped_cause(self):
        try:
            try:
                raise ConnectionResetError(errno.ECONNRESET, "reset")
            except OSError as e:
                raise RuntimeError("request blew up") from e
        except RuntimeError as outer:
            assert is_connection_error(outer)

    def test_format_status(self):
        assert format_status(None) == "Connected"
        assert format_status(MediaConnectionError("fetch failed")) == "Disconnected"
        assert format_status(AuthError("HTTP 403", user_message="Auth failed (403)")) == "Auth failed (403)"
        assert format_status(AuthError("token missing")) == "Auth failed: token missing"
        assert format_status(HttpError("HTTP 500", user_message="Error (500)")) == "Error (500)"
        assert format_status(ConfigError("Endpoint for song is not configured.")) == \
            "Endpoint for song is not configured."
        assert format_status(ValueError("boom")) == "Error: boom"

    def test_status_from_exception(self):
        assert ConnectionStatus.from_exception(MediaConnectionError("x")).kind is StatusKind.DISCONNECTED
        status = ConnectionStatus.from_exception(HttpError("HTTP 502", user_message="Error (502)"))
        assert status == ConnectionStatus.error("Error (502)")
        assert not status.is_connected
        assert ConnectionStatus.connected().is_connected
