"""
Keyword classifier used when no AI provider produced a usable answer.

Pure functions, no I/O.
"""
import re
from typing import Iterable, Optional, Sequence

from incident_intake.schemas.incidents import Category, ParsedActivityData

MAINTENANCE_KEYWORDS = ("broken", "repair", "fix", "maintenance", "leak", "damage", "install")
DISCIPLINE_KEYWORDS = ("misbehav", "fight", "bullying", "discipline", "behavior")
SPORTS_KEYWORDS = ("sport", "game", "match", "tournament", "training")

POLITE_PREFIXES = (
    "please ", "can you ", "need to ", "help with ", "urgent ", "asap ",
    "hello ", "hi ", "hey ", "excuse me ", "sorry ", "thanks ",
)
POLITE_SUFFIXES = (" please", " thanks", " thank you", " asap", " urgently", " now")

DEFAULT_LOCATION = "Unknown Location"

# Room identifiers: "12", "5a", "b", "b2". Plain words ("is", "next") are not ids.
_ROOM_ID = r"(?:\s*([0-9][a-z0-9]*)|\s+([a-z][0-9]*))\b"
_CLASSROOM_RE = re.compile(r"\bclassroom" + _ROOM_ID, re.IGNORECASE)
_ROOM_RE = re.compile(r"\broom" + _ROOM_ID, re.IGNORECASE)
_WORD_ROOM_RE = re.compile(r"\broom\b", re.IGNORECASE)
_GRADE_RE = re.compile(r"grade\s*([0-9]+)", re.IGNORECASE)


def _contains_any(text: str, words: Iterable[str]) -> bool:
    return any(word in text for word in words)


def find_category(categories: Sequence[Category], *needles: str) -> Optional[Category]:
    """First category whose name contains any of needles (case-insensitive)."""
    for category in categories:
        if _contains_any(category.name.lower(), needles):
            return category
    return None


def _room_id(match: re.Match) -> str:
    return (match.group(1) or match.group(2)).upper()


def extract_location(text: str) -> str:
    """
    Pick a location out of free text.

    Examples:
        "Broken window in classroom 5a" -> "Classroom 5A"
        "Leak near the lab" -> "Laboratory"
    """
    lower = text.lower()
    if "classroom" in lower:
        match = _CLASSROOM_RE.search(lower)
        return f"Classroom {_room_id(match)}" if match else "Classroom"
    match = _ROOM_RE.search(lower)
    if match:
        return f"Room {_room_id(match)}"
    if _WORD_ROOM_RE.search(lower):
        return "Room"
    if "lab" in lower:
        return "Laboratory"
    if "playground" in lower or "field" in lower:
        return "Playground"
    if "office" in lower:
        return "Office"
    if "corridor" in lower or "hallway" in lower:
        return "Corridor"
    if "grade" in lower:
        match = _GRADE_RE.search(lower)
        return f"Grade {match.group(1)} Area" if match else "Grade Area"
    return DEFAULT_LOCATION


def smart_subcategory(message: str) -> str:
    """
    Short task title from a message: "please clean the classroom" -> "Clean Classroom".
    """
    cleaned = message.strip()

    for prefix in POLITE_PREFIXES:
        if cleaned.lower().startswith(prefix):
            cleaned = cleaned[len(prefix):].strip()
    for suffix in POLITE_SUFFIXES:
        if cleaned.lower().endswith(suffix):
            cleaned = cleaned[: len(cleaned) - len(suffix)].strip()

    lower = cleaned.lower()

    if "clean" in lower or "washing" in lower:
        if "toilet" in lower or "bathroom" in lower:
            return "Clean Toilet"
        if "classroom" in lower or "class" in lower:
            return "Clean Classroom"
        if "window" in lower:
            return "Clean Windows"
        if "floor" in lower:
            return "Clean Floor"
        return "Cleaning Task"

    if "broken" in lower or "fix" in lower or "repair" in lower:
        if "door" in lower:
            return "Fix Door"
        if "window" in lower:
            return "Fix Window"
        if "desk" in lower or "table" in lower:
            return "Fix Furniture"
        if "light" in lower or "bulb" in lower:
            return "Fix Lighting"
        if "tap" in lower or "water" in lower or "leak" in lower:
            return "Fix Plumbing"
        return "Repair Task"

    if "install" in lower or "setup" in lower or "mount" in lower:
        return "Installation Task"

    if len(cleaned) > 35:
        words = cleaned.split(" ")
        if len(words) > 5:
            cleaned = " ".join(words[:5]) + "..."

    title = " ".join(word[:1].upper() + word[1:].lower() for word in cleaned.split(" "))
    return title if len(title) > 3 else "General Task"


def _with_context(subcategory: str, lower: str) -> str:
    """Tag maintenance titles with the kind of asset involved."""
    if "desk" in lower or "chair" in lower:
        if "Desk" in subcategory or "Chair" in subcategory:
            return subcategory
        return f"{subcategory} (Furniture)"
    if "window" in lower or "door" in lower:
        if "Window" in subcategory or "Door" in subcategory:
            return subcategory
        return f"{subcategory} (Building)"
    if "light" in lower or "electrical" in lower:
        if "Light" in subcategory or "Electric" in subcategory:
            return subcategory
        return f"{subcategory} (Electrical)"
    return subcategory


def heuristic_classify(message: str, categories: Sequence[Category]) -> ParsedActivityData:
    """Keyword classification. categories must not be empty."""
    lower = message.lower()
    category_id = categories[0].id
    subcategory = smart_subcategory(message)

    if _contains_any(lower, MAINTENANCE_KEYWORDS):
        category = find_category(categories, "maintenance", "repair")
        if category:
            category_id = category.id
            subcategory = _with_context(subcategory, lower)
    elif _contains_any(lower, DISCIPLINE_KEYWORDS):
        category = find_category(categories, "discipline", "behavior")
        if category:
            category_id = category.id
    elif _contains_any(lower, SPORTS_KEYWORDS):
        category = find_category(categories, "sport", "athletic")
        if category:
            category_id = category.id

    return ParsedActivityData(
        category_id=category_id,
        subcategory=subcategory,
        location=extract_location(message),
        notes=f"Fallback parsing: {message}",
        needs_review=True,
    )
