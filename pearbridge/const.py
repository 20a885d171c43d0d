"""Touch Portal identifiers used by the Pear bridge."""

PLUGIN_ID = "com.hellblazer90.pear.ytm"
CONNECTOR_PREFIX = "pc"

# Setting id → human label (Touch Portal sends either, depending on version)
SETTINGS = {
    "hostname": "pear.hostname",
    "port": "pear.port",
    "client_id": "pear.clientId",
    "poll_interval_ms": "pear.pollIntervalMs",
    "extended_states_enabled": "pear.extendedStatesEnabled",
    "cover_art_mode": "pear.coverArtMode",
}

SETTINGS_LABELS = {
    "hostname": "Pear API Hostname (Advanced, usually 127.0.0.1)",
    "port": "Pear API Port (from Pear Desktop)",
    "client_id": "Auth Client ID (Pear API server)",
    "poll_interval_ms": "Poll Interval (ms) (Advanced, song refresh)",
    "extended_states_enabled": "Extended States Enabled (True/False, volume/like/repeat/etc)",
    "cover_art_mode": "Cover Art Mode (Off/Memory/Local, icon source)",
}

STATES = {
    "title": "pear.title",
    "artist": "pear.artist",
    "album": "pear.album",
    "cover_url": "pear.coverUrl",
    "cover_path": "pear.coverPath",
    "cover_file_url": "pear.coverFileUrl",
    "cover_base64": "pear.coverBase64",
    "cover_debug": "pear.coverDebug",
    "cover_base64_send_count": "pear.coverBase64SendCount",
    "has_song": "pear.hasSong",
    "is_paused": "pear.isPaused",
    "is_playing": "pear.isPlaying",
    "duration_sec": "pear.durationSec",
    "duration_text": "pear.durationText",
    "elapsed_sec": "pear.elapsedSec",
    "elapsed_text": "pear.elapsedText",
    "volume_percent": "pear.volumePercent",
    "volume_raw": "pear.volumeRaw",
    "volume_scale": "pear.volumeScale",
    "volume_response": "pear.volumeResponse",
    "is_muted": "pear.isMuted",
    "like_state": "pear.likeState",
    "repeat_mode": "pear.repeatMode",
    "shuffle_state": "pear.shuffleState",
    "url": "pear.url",
    "video_id": "pear.videoId",
    "playlist_id": "pear.playlistId",
    "media_type": "pear.mediaType",
    "connection_status": "pear.connectionStatus",
}

EVENTS = {
    "is_paused": "pear.event.isPaused",
    "like_state": "pear.event.likeState",
    "repeat_mode": "pear.event.repeatMode",
    "shuffle_state": "pear.event.shuffleState",
}

CONNECTORS = {
    "volume": "com.hellblazer90.pear.ytm.connector.volume",
}

# Cleared when extended states are switched off
EXTENDED_STATES = (
    "volume_percent", "volume_raw", "volume_scale", "volume_response",
    "is_muted", "like_state", "repeat_mode", "shuffle_state",
    "url", "video_id", "playlist_id", "media_type",
)

REPEAT_MODES = ("NONE", "ALL", "ONE")

COVER_ART_FILENAMES = ("pear_cover_art.jpg", "pear_cover_art_alt.jpg")
