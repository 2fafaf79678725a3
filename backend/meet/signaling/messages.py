# meet/signaling/messages.py
"""
Signaling message shapes.

Wire envelope (both directions, JSON):

    {
      "type": "offer" | "answer" | "ice-candidate",
      "roomId": "<uuid>",
      "senderId": 1,
      "payload": {...}
    }
"""
from dataclasses import dataclass
from typing import ClassVar, Optional, Union

from meet.signaling.serializers import (
    IceCandidatePayloadSerializer,
    SdpPayloadSerializer,
    validated_payload,
)

OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"

MESSAGE_TYPES = (OFFER, ANSWER, ICE_CANDIDATE)


@dataclass(frozen=True)
class Offer:
    sdp: str

    kind: ClassVar[str] = OFFER
    # 유실되면 통화 실패라서 재시도 대상
    load_bearing: ClassVar[bool] = True

    def to_payload(self) -> dict:
        return {"sdp": self.sdp}


@dataclass(frozen=True)
class Answer:
    sdp: str

    kind: ClassVar[str] = ANSWER
    load_bearing: ClassVar[bool] = True

    def to_payload(self) -> dict:
        return {"sdp": self.sdp}


@dataclass(frozen=True)
class IceCandidate:
    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None

    kind: ClassVar[str] = ICE_CANDIDATE
    # 뒤에 오는 candidate 가 앞의 것을 대체하므로 재시도 안 함
    load_bearing: ClassVar[bool] = False

    def to_payload(self) -> dict:
        return {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
        }


SignalingMessage = Union[Offer, Answer, IceCandidate]


def _sdp_from(payload: dict, key: str) -> str:
    # 브라우저는 {offer: {type, sdp}} 모양으로 보내기도 함
    if "sdp" not in payload and isinstance(payload.get(key), dict):
        payload = payload[key]
    return validated_payload(SdpPayloadSerializer, payload)["sdp"]


def parse_message(msg_type: str, payload) -> SignalingMessage:
    if not isinstance(payload, dict):
        raise ValueError("payload must be an object")

    if msg_type == OFFER:
        return Offer(sdp=_sdp_from(payload, "offer"))
    if msg_type == ANSWER:
        return Answer(sdp=_sdp_from(payload, "answer"))
    if msg_type == ICE_CANDIDATE:
        if isinstance(payload.get("candidate"), dict):
            payload = payload["candidate"]
        data = validated_payload(IceCandidatePayloadSerializer, payload)
        return IceCandidate(
            candidate=data["candidate"],
            sdp_mid=data.get("sdpMid"),
            sdp_mline_index=data.get("sdpMLineIndex"),
        )
    raise ValueError(f"unknown signaling message type: {msg_type!r}")


@dataclass(frozen=True)
class Envelope:
    room_id: str
    sender_id: int
    message: SignalingMessage

    @property
    def type(self) -> str:
        return self.message.kind

    def to_dict(self) -> dict:
        return {
            "type": self.message.kind,
            "roomId": self.room_id,
            "senderId": self.sender_id,
            "payload": self.message.to_payload(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Envelope":
        room_id = data.get("roomId")
        sender_id = data.get("senderId")
        if room_id is None or sender_id is None:
            raise ValueError("envelope requires roomId and senderId")
        return cls(
            room_id=str(room_id),
            sender_id=sender_id,
            message=parse_message(data.get("type"), data.get("payload") or {}),
        )
