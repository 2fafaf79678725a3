# meet/signaling/serializers.py
from rest_framework import serializers


class StrictCharField(serializers.CharField):
    # 숫자를 문자열로 바꿔주지 않음 (SDP/candidate 는 문자열만)
    def to_internal_value(self, data):
        if not isinstance(data, str):
            self.fail("invalid")
        return super().to_internal_value(data)


class SdpPayloadSerializer(serializers.Serializer):
    # SDP 끝의 \r\n 이 의미가 있어서 trim 하지 않음
    sdp = StrictCharField(trim_whitespace=False)


class IceCandidatePayloadSerializer(serializers.Serializer):
    # 빈 candidate 는 end-of-candidates 표시
    candidate = StrictCharField(allow_blank=True, trim_whitespace=False)
    sdpMid = StrictCharField(
        allow_null=True, allow_blank=True, required=False, trim_whitespace=False
    )
    sdpMLineIndex = serializers.IntegerField(allow_null=True, required=False, min_value=0)


def validated_payload(serializer_class, payload: dict) -> dict:
    """Validated data, or ValueError carrying the first error per field."""
    serializer = serializer_class(data=payload)
    if not serializer.is_valid():
        detail = "; ".join(
            f"{field}: {errors[0]}" for field, errors in serializer.errors.items()
        )
        raise ValueError(detail)
    return serializer.validated_data
