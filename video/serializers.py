from django.conf import settings
from rest_framework import serializers

from .transcoder import QUALITY_TIERS
from .validators import is_allowed_source_url, is_empty_range


class SourceUrlSerializer(serializers.Serializer):
    url = serializers.CharField(trim_whitespace=True)

    def validate_url(self, value):
        if not is_allowed_source_url(value):
            allowed = ", ".join(settings.VIDEO_ALLOWED_HOSTS)
            raise serializers.ValidationError(f"Only URLs from {allowed} are allowed")
        return value


class QualitySerializer(serializers.Serializer):
    quality = serializers.ChoiceField(choices=sorted(QUALITY_TIERS), required=False, allow_blank=True)

    def validate_quality(self, value):
        # blank means "use the configured default tier"
        return value or settings.VIDEO_DEFAULT_QUALITY


class DirectRequestSerializer(SourceUrlSerializer, QualitySerializer):
    pass


class ClipRequestSerializer(SourceUrlSerializer):
    start = serializers.CharField(trim_whitespace=True)
    end = serializers.CharField(trim_whitespace=True)

    def validate(self, attrs):
        if is_empty_range(attrs["start"], attrs["end"]):
            raise serializers.ValidationError({"end": "end must be after start"})
        return attrs


def first_error(errors) -> str:
    """Flatten DRF's error dict into one readable message."""
    if isinstance(errors, dict):
        for key, value in errors.items():
            msg = first_error(value)
            return msg if key == "non_field_errors" else f"{key}: {msg}"
    if isinstance(errors, list) and errors:
        return first_error(errors[0])
    return str(errors)
