"""
Incident classifier.

Turns free text into ParsedActivityData using the provider chain, and falls
back to keyword rules when no provider answers with something usable.
"""
import logging
from dataclasses import asdict
from typing import Any, Optional, Sequence

from incident_intake.core.config import ClassifierConfig, settings
from incident_intake.core.exceptions import ValidationError
from incident_intake.schemas.incidents import Category, ParsedActivityData
from incident_intake.services.llm import GenerationOptions, ProviderSelector

from .heuristics import find_category, heuristic_classify
from .prompts import INCIDENT_PARSER_PROMPT, build_parser_prompt

logger = logging.getLogger(__name__)


def build_schema(category_ids: Sequence[str]) -> dict[str, Any]:
    """JSON schema the model must answer with; category_id limited to known ids."""
    return {
        "type": "object",
        "properties": {
            "category_id": {
                "type": "string",
                "enum": list(category_ids),
                "description": "Must be one of the valid category IDs from the available categories",
            },
            "subcategory": {
                "type": "string",
                "description": "Specific type of incident or activity within the category",
            },
            "location": {
                "type": "string",
                "description": "Specific location where the incident/activity occurred",
            },
            "notes": {
                "type": "string",
                "description": "Detailed description and additional context about the incident/activity",
            },
        },
        "required": ["category_id", "subcategory", "location", "notes"],
    }


def _text_field(value: Any, default: str, max_chars: int) -> str:
    text = str(value).strip() if value is not None else ""
    return (text or default)[:max_chars]


def sanitize_parsed_data(
    data: dict[str, Any],
    categories: Sequence[Category],
    needs_review: bool = False,
) -> ParsedActivityData:
    """
    Force model output into a valid record.

    An unknown category_id becomes the maintenance/repair category, else a
    general/other one, else the first category.
    """
    valid_ids = [c.id for c in categories]
    category_id = data.get("category_id")

    if not category_id or category_id not in valid_ids:
        logger.warning(f"[Classifier] Invalid category_id from AI: {category_id!r}")
        category = (
            find_category(categories, "maintenance", "repair")
            or find_category(categories, "general", "other")
        )
        category_id = category.id if category else valid_ids[0]

    return ParsedActivityData(
        category_id=category_id,
        subcategory=_text_field(
            data.get("subcategory"),
            ClassifierConfig.DEFAULT_SUBCATEGORY,
            ClassifierConfig.SUBCATEGORY_MAX_CHARS,
        ),
        location=_text_field(
            data.get("location"),
            ClassifierConfig.DEFAULT_LOCATION,
            ClassifierConfig.LOCATION_MAX_CHARS,
        ),
        notes=_text_field(
            data.get("notes"),
            ClassifierConfig.DEFAULT_NOTES,
            ClassifierConfig.NOTES_MAX_CHARS,
        ),
        needs_review=needs_review,
    )


class IncidentClassifier:
    """
    Classify incident text against the current categories.

    classify() never raises for a non-empty category list: provider
    failures, exhaustion and malformed output all end in the keyword
    heuristic.
    """

    def __init__(
        self,
        selector: ProviderSelector,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        prompt_template: str = INCIDENT_PARSER_PROMPT,
    ):
        self.selector = selector
        self.max_tokens = max_tokens or settings.CLASSIFIER_MAX_TOKENS
        self.temperature = temperature if temperature is not None else settings.CLASSIFIER_TEMPERATURE
        self.prompt_template = prompt_template

    async def classify(self, text: str, categories: Sequence[Category]) -> ParsedActivityData:
        """
        Raises:
            ValidationError: categories is empty
        """
        if not categories:
            raise ValidationError("At least one category is required for classification")

        categories_text = ", ".join(f"{c.id} ({c.name})" for c in categories)
        prompt = build_parser_prompt(text, categories_text, self.prompt_template)
        schema = build_schema([c.id for c in categories])
        options = GenerationOptions(
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            response_format="json",
        )

        try:
            selection = await self.selector.select_structured(prompt, schema, options)
            if not isinstance(selection.data, dict):
                raise TypeError(f"Structured output is {type(selection.data).__name__}, not dict")
            parsed = sanitize_parsed_data(
                selection.data,
                categories,
                needs_review=selection.used_fallback,
            )
            logger.info(
                f"[Classifier] Classified via {selection.provider}: "
                f"{parsed.category_id} / {parsed.subcategory}"
            )
            return parsed
        except Exception as e:
            logger.warning(f"[Classifier] AI classification failed, using keyword fallback: {e}")
            return sanitize_parsed_data(
                asdict(heuristic_classify(text, categories)),
                categories,
                needs_review=True,
            )
