# uploads/serializers.py
from __future__ import annotations

from django.conf import settings
from rest_framework import serializers

from nlp.prompts import CONSULTATION_TYPE_CHOICES, CONSULTA_ROTINA, PUERICULTURA_SUBTYPE_CHOICES


class UploadChunkSerializer(serializers.Serializer):
    chunk = serializers.FileField(allow_empty_file=False)
    sessionId = serializers.UUIDField()
    chunkIndex = serializers.IntegerField(min_value=0)
    totalChunks = serializers.IntegerField(min_value=1)

    def validate_chunk(self, value):
        limit = settings.UPLOAD_PART_MAX_BYTES
        if value.size > limit:
            raise serializers.ValidationError(f"Part exceeds {limit} bytes")
        return value

    def validate(self, attrs):
        if attrs["chunkIndex"] >= attrs["totalChunks"]:
            raise serializers.ValidationError({"chunkIndex": "Must be lower than totalChunks"})
        return attrs


class FinalizeUploadSerializer(serializers.Serializer):
    sessionId = serializers.UUIDField()
    patientId = serializers.UUIDField()
    duration = serializers.FloatField(min_value=0, required=False, allow_null=True)
    fileName = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    fileType = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    hash = serializers.RegexField(r"^[0-9a-fA-F]{64}$", required=False, allow_blank=True)
    originalSessionId = serializers.UUIDField(required=False, allow_null=True)
    originalFileType = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    consultationType = serializers.ChoiceField(choices=CONSULTATION_TYPE_CHOICES, default=CONSULTA_ROTINA)
    consultationSubtype = serializers.ChoiceField(
        choices=PUERICULTURA_SUBTYPE_CHOICES, required=False, allow_blank=True, default=""
    )

    def validate(self, attrs):
        original = attrs.get("originalSessionId")
        if original and original == attrs["sessionId"]:
            raise serializers.ValidationError({"originalSessionId": "Must differ from sessionId"})
        return attrs
