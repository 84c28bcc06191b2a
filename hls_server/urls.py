from django.http import HttpResponse
from django.urls import include, path


def health(request):
    return HttpResponse("HLS Server is running successfully!", content_type="text/plain")


urlpatterns = [
    path("", health, name="health"),
    path("video/", include("video.urls")),
]
