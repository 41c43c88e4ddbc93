"""
Flatten inbound WhatsApp messages into text for classification.
"""
from dataclasses import dataclass
from typing import Optional, Sequence

from incident_intake.schemas.webhook import (
    AudioMessage,
    Contact,
    DocumentMessage,
    ImageMessage,
    InboundMessage,
    LocationMessage,
    LocationRef,
    MediaRef,
    TextMessage,
    VideoMessage,
    VoiceMessage,
)


@dataclass(frozen=True)
class ExtractedContent:
    """
    Attributes:
        text: never empty
        media: attachment reference for media messages
        location: shared location, if any
        sender_name: contact profile name or "Unknown (<phone>)"
    """

    text: str
    sender_name: str
    media: Optional[MediaRef] = None
    location: Optional[LocationRef] = None


def sender_name(phone: str, contacts: Sequence[Contact]) -> str:
    for contact in contacts:
        if contact.wa_id == phone and contact.profile and contact.profile.name:
            return contact.profile.name
    return f"Unknown ({phone})"


def _location_text(location: LocationRef) -> str:
    label = ", ".join(part for part in (location.name, location.address) if part)
    coords = f"({location.latitude:.6f}, {location.longitude:.6f})"
    return f"Location: {label} {coords}" if label else f"Location: {coords}"


def extract_content(message: InboundMessage, contacts: Sequence[Contact] = ()) -> ExtractedContent:
    """Text plus attachments of one message. Never raises."""
    name = sender_name(message.from_, contacts)

    if isinstance(message, TextMessage):
        body = message.text.body.strip()
        return ExtractedContent(text=body or "[Empty message]", sender_name=name)

    if isinstance(message, ImageMessage):
        text = message.image.caption or f"[Image: {message.image.id}]"
        return ExtractedContent(text=text, sender_name=name, media=message.image)

    if isinstance(message, VideoMessage):
        text = message.video.caption or f"[Video: {message.video.id}]"
        return ExtractedContent(text=text, sender_name=name, media=message.video)

    if isinstance(message, DocumentMessage):
        doc = message.document
        text = doc.caption or doc.filename or f"[Document: {doc.id}]"
        return ExtractedContent(text=text, sender_name=name, media=doc)

    if isinstance(message, VoiceMessage):
        return ExtractedContent(
            text=f"[Voice message: {message.voice.id}]", sender_name=name, media=message.voice
        )

    if isinstance(message, AudioMessage):
        return ExtractedContent(
            text=f"[Audio message: {message.audio.id}]", sender_name=name, media=message.audio
        )

    if isinstance(message, LocationMessage):
        return ExtractedContent(
            text=_location_text(message.location), sender_name=name, location=message.location
        )

    return ExtractedContent(text=f"[{message.type} message: {message.id}]", sender_name=name)
