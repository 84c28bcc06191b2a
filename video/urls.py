from django.urls import path
from .views import (
    DirectView,
    DownloadClipView,
    DownloadHlsClipView,
    DownloadView,
    FileView,
    PlayerView,
    PlaylistView,
    SegmentView,
    StreamView,
    VideoIndexView,
)

urlpatterns = [
    path("", VideoIndexView.as_view(), name="video_index"),
    path("play/<str:clip_id>", PlayerView.as_view(), name="video_play"),
    path("downloadClip", DownloadClipView.as_view(), name="video_download_clip"),
    path("downloadHlsClip", DownloadHlsClipView.as_view(), name="video_download_hls_clip"),
    path("download", DownloadView.as_view(), name="video_download"),
    path("file/<str:filename>", FileView.as_view(), name="video_file"),
    path("stream/<str:video_id>", StreamView.as_view(), name="video_stream"),
    # playlist must come before the catch-all segment route
    path("hls/<str:video_id>/playlist.m3u8", PlaylistView.as_view(), name="video_hls_playlist"),
    path("hls/<str:video_id>/<str:segment>", SegmentView.as_view(), name="video_hls_segment"),
    path("direct", DirectView.as_view(), name="video_direct"),
]
