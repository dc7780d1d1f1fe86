"""
Public entry points: wires validation, resilient OCR and parsing together.

    invoke(image, fmt, languages)              -> RawOcrResult
    parse(raw_text)                            -> ParsedIngredientList
    extract_ingredients(image, fmt, languages) -> ParsedIngredientList
"""

import logging

from . import config
from .models import OcrInstanceKey, ParsedIngredientList
from .services.invoker import OcrInvoker, default_invoker, invoke
from .services.parsing import MeasurementParser, default_parser, parse

log = logging.getLogger(__name__)

__all__ = ["invoke", "parse", "extract_ingredients"]


async def extract_ingredients(
    image: bytes,
    image_format: str,
    language_key: "str | OcrInstanceKey" = config.OCR_LANGUAGES,
    invoker: OcrInvoker | None = None,
    parser: MeasurementParser | None = None,
) -> ParsedIngredientList:
    """OCR one image and parse the text. OcrError propagates unchanged."""
    result = await (invoker or default_invoker()).invoke(image, image_format, language_key)
    ingredients = (parser or default_parser()).parse(result.text)
    if not len(ingredients):
        log.info("No ingredients found in %d characters of OCR text", len(result.text))
    else:
        log.info("Parsed %d ingredients", len(ingredients), extra={"language_key": result.language_key})
    return ingredients
