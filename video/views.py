import logging

from django.conf import settings
from django.http import FileResponse, HttpResponse, StreamingHttpResponse
from django.shortcuts import render
from rest_framework import status, views
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .errors import ResourceNotFound, VideoError
from .jobs import Orchestrator, playlist_url
from .paths import PLAYLIST_NAME, artifact_file, hls_file
from .serializers import (
    ClipRequestSerializer,
    DirectRequestSerializer,
    QualitySerializer,
    SourceUrlSerializer,
    first_error,
)

logger = logging.getLogger(__name__)

PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
SEGMENT_CONTENT_TYPE = "video/MP2T"
NDJSON_CONTENT_TYPE = "application/x-ndjson"


def get_orchestrator() -> Orchestrator:
    return Orchestrator.from_settings()


def error_response(exc: VideoError) -> Response:
    return Response({"error": exc.message}, status=exc.status_code)


def invalid_params(serializer) -> Response:
    return Response({"error": first_error(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)


def ndjson_response(events) -> StreamingHttpResponse:
    """
    Stream status events one JSON object per line. Closing the response
    (client gone) closes ``events``, which stops any child process it runs.
    """
    def lines():
        try:
            for event in events:
                yield event.to_line()
        finally:
            events.close()

    response = StreamingHttpResponse(lines(), content_type=NDJSON_CONTENT_TYPE)
    response["Cache-Control"] = "no-cache"
    response["X-Accel-Buffering"] = "no"
    return response


class PublicView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []


class VideoIndexView(PublicView):
    def get(self, request):
        return HttpResponse("Video route is working successfully!", content_type="text/plain")


class PlayerView(PublicView):
    """HTML page with an hls.js player pointed at the clip's playlist."""

    def get(self, request, clip_id):
        try:
            playlist = hls_file(settings.VIDEO_WORK_ROOT, clip_id, PLAYLIST_NAME)
        except VideoError as e:
            return error_response(e)
        if not playlist.is_file():
            return Response({"error": "Playlist not found"}, status=404)
        return render(request, "video/player.html", {"playlist_url": playlist_url(clip_id)})


class DownloadClipView(PublicView):
    def get(self, request):
        ser = ClipRequestSerializer(data=request.query_params)
        if not ser.is_valid():
            return invalid_params(ser)
        data = ser.validated_data

        try:
            file_path = get_orchestrator().clip(data["url"], data["start"], data["end"])
        except VideoError as e:
            logger.error("Download failed: %s", e)
            return error_response(e)

        return Response({"message": "Segment downloaded successfully", "file": str(file_path)})


class DownloadHlsClipView(PublicView):
    def get(self, request):
        ser = ClipRequestSerializer(data=request.query_params)
        if not ser.is_valid():
            return invalid_params(ser)
        data = ser.validated_data

        try:
            m3u8_path = get_orchestrator().hls_clip(data["url"], data["start"], data["end"])
        except VideoError as e:
            logger.error("Download or conversion failed: %s", e)
            return error_response(e)

        return Response({
            "message": "Segment downloaded and converted to HLS successfully",
            "m3u8Path": str(m3u8_path),
        })


class DownloadView(PublicView):
    """Streams ``start`` then ``done`` (filename, size) or ``error``."""

    def get(self, request):
        ser = SourceUrlSerializer(data=request.query_params)
        if not ser.is_valid():
            return invalid_params(ser)
        return ndjson_response(get_orchestrator().download(ser.validated_data["url"]))


class FileView(PublicView):
    def get(self, request, filename):
        try:
            path = artifact_file(settings.VIDEO_WORK_ROOT, filename)
        except VideoError as e:
            return error_response(e)
        if not path.is_file():
            return HttpResponse("File not found", status=404, content_type="text/plain")
        logger.info("Serving %s", filename)
        return FileResponse(open(path, "rb"), as_attachment=True, filename=filename)


class StreamView(PublicView):
    """Converts an existing ``<videoId>.mp4`` download to HLS."""

    def get(self, request, video_id):
        ser = QualitySerializer(data=request.query_params)
        if not ser.is_valid():
            return invalid_params(ser)
        try:
            result = get_orchestrator().stream(video_id, ser.validated_data.get("quality"))
        except ResourceNotFound as e:
            return error_response(e)
        except VideoError as e:
            if e.status_code != 500:
                return error_response(e)
            logger.error("HLS conversion error: %s", e)
            return Response(
                {"error": "Failed to convert to HLS", "details": e.message},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response(result)


class PlaylistView(PublicView):
    def get(self, request, video_id):
        try:
            path = hls_file(settings.VIDEO_WORK_ROOT, video_id, PLAYLIST_NAME)
        except VideoError as e:
            return error_response(e)
        if not path.is_file():
            return HttpResponse("Playlist not found", status=404, content_type="text/plain")
        return FileResponse(open(path, "rb"), content_type=PLAYLIST_CONTENT_TYPE)


class SegmentView(PublicView):
    def get(self, request, video_id, segment):
        try:
            path = hls_file(settings.VIDEO_WORK_ROOT, video_id, segment)
        except VideoError as e:
            return error_response(e)
        if not path.is_file():
            return HttpResponse("Segment not found", status=404, content_type="text/plain")
        return FileResponse(open(path, "rb"), content_type=SEGMENT_CONTENT_TYPE)


class DirectView(PublicView):
    """Download + HLS in one go; streams ``start``, ``progress``..., then ``done`` or ``error``."""

    def get(self, request):
        ser = DirectRequestSerializer(data=request.query_params)
        if not ser.is_valid():
            return invalid_params(ser)
        data = ser.validated_data
        return ndjson_response(get_orchestrator().direct(data["url"], data.get("quality")))
