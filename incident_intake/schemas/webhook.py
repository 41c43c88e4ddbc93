"""
Schemas for WhatsApp Cloud API webhook payloads.

Messages are kept as raw dicts on WebhookValue and parsed one at a time with
parse_inbound_message, so a single malformed message never rejects the batch.
"""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class TextBody(BaseModel):
    body: str = ""


class MediaRef(BaseModel):
    """Media attachment reference (image, audio, voice, video, document)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    mime_type: Optional[str] = None
    sha256: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None


class LocationRef(BaseModel):
    """Shared location."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


class _InboundBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str
    from_: str = Field(alias="from")
    timestamp: str = ""
    context: Optional[dict] = None  # Present when replying to another message


class TextMessage(_InboundBase):
    type: Literal["text"] = "text"
    text: TextBody = TextBody()


class ImageMessage(_InboundBase):
    type: Literal["image"] = "image"
    image: MediaRef

    @property
    def media(self) -> MediaRef:
        return self.image


class VoiceMessage(_InboundBase):
    type: Literal["voice"] = "voice"
    voice: MediaRef

    @property
    def media(self) -> MediaRef:
        return self.voice


class AudioMessage(_InboundBase):
    type: Literal["audio"] = "audio"
    audio: MediaRef

    @property
    def media(self) -> MediaRef:
        return self.audio


class VideoMessage(_InboundBase):
    type: Literal["video"] = "video"
    video: MediaRef

    @property
    def media(self) -> MediaRef:
        return self.video


class DocumentMessage(_InboundBase):
    type: Literal["document"] = "document"
    document: MediaRef

    @property
    def media(self) -> MediaRef:
        return self.document


class LocationMessage(_InboundBase):
    type: Literal["location"] = "location"
    location: LocationRef


class UnknownMessage(_InboundBase):
    """Any message type we do not handle (sticker, reaction, button, ...)."""

    type: str


InboundMessage = Union[
    TextMessage,
    ImageMessage,
    VoiceMessage,
    AudioMessage,
    VideoMessage,
    DocumentMessage,
    LocationMessage,
    UnknownMessage,
]

MediaMessage = Union[ImageMessage, VoiceMessage, AudioMessage, VideoMessage, DocumentMessage]

MESSAGE_MODELS: dict[str, type[_InboundBase]] = {
    "text": TextMessage,
    "image": ImageMessage,
    "voice": VoiceMessage,
    "audio": AudioMessage,
    "video": VideoMessage,
    "document": DocumentMessage,
    "location": LocationMessage,
}


def parse_inbound_message(raw: dict[str, Any]) -> InboundMessage:
    """
    Validate one raw message into its typed model.

    Raises:
        pydantic.ValidationError: if the message lacks required fields
    """
    model = MESSAGE_MODELS.get(raw.get("type", ""), UnknownMessage)
    return model.model_validate(raw)


class ContactProfile(BaseModel):
    name: Optional[str] = None


class Contact(BaseModel):
    """Sender contact card."""

    model_config = ConfigDict(extra="ignore")

    wa_id: str
    profile: Optional[ContactProfile] = None


class WebhookValue(BaseModel):
    """change.value for field == 'messages'."""

    model_config = ConfigDict(extra="ignore")

    messaging_product: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    contacts: list[Contact] = Field(default_factory=list)
    messages: list[dict[str, Any]] = Field(default_factory=list)
    statuses: list[dict[str, Any]] = Field(default_factory=list)
