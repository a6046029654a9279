"""Generative client: persona prompt in, validated structured result out.

Parsing is strict by default. When ``llm_allow_fallback`` is enabled an
invalid response is salvaged in two steps, partial (valid fields over
defaults) and then a full default; either way the result is flagged
``is_fallback`` so it can never pass for a genuine generation.
"""

import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from arena.config import Settings, get_settings
from arena.lib.exceptions import LLMResponseParseError
from arena.lib.llm import LLMClient
from arena.lib.models import GenerationContext, GenerationKind, GenerationResult
from arena.lib.utils import extract_json_object, truncate
from arena.personas import Persona, persona_for

logger = logging.getLogger(__name__)


def _partial(persona: Persona, data: dict[str, Any]) -> Any | None:
    """Overlay the usable fields of ``data`` on the persona's defaults."""
    if not persona.has_minimum_fields(data):
        return None

    fields = persona.output_schema.model_fields
    merged = {**persona.default_output(), **{k: v for k, v in data.items() if k in fields}}
    try:
        return persona.output_schema.model_validate(merged)
    except PydanticValidationError as e:
        bad = {str(err["loc"][0]) for err in e.errors() if err["loc"]}

    if bad & set(persona.minimum_fields):
        return None
    defaults = persona.default_output()
    for name in bad:
        merged[name] = defaults[name]
    try:
        return persona.output_schema.model_validate(merged)
    except PydanticValidationError:
        return None


def parse_output(
    persona: Persona, raw: str, allow_fallback: bool = False
) -> tuple[Any, bool]:
    """
    Parse raw model output into the persona's schema.

    Returns:
        Tuple of (validated model, is_fallback)

    Raises:
        LLMResponseParseError: If the output is unusable and fallbacks are disabled
    """
    codename = persona.config.codename
    try:
        data = extract_json_object(raw)
    except (ValueError, json.JSONDecodeError) as e:
        if not allow_fallback:
            raise LLMResponseParseError(
                f"No JSON object in {codename} response: {e}", raw_response=raw
            ) from e
        logger.warning(f"{codename}: unparseable response, using default fallback")
        return persona.output_schema.model_validate(persona.default_output()), True

    try:
        return persona.output_schema.model_validate(data), False
    except PydanticValidationError as e:
        if not allow_fallback:
            raise LLMResponseParseError(
                f"{codename} response failed validation: {e.error_count()} error(s)",
                raw_response=raw,
            ) from e
        logger.warning(
            f"{codename}: response failed validation ({e.error_count()} errors)"
        )

    partial = _partial(persona, data)
    if partial is not None:
        logger.info(f"{codename}: recovered partial response")
        return partial, True

    logger.warning(f"{codename}: using default fallback")
    return persona.output_schema.model_validate(persona.default_output()), True


class GenerativeClient:
    """
    Produces advocate statements, juror ballots and judge rulings.

    Provider retries, backoff and the per-call timeout live in
    ``LLMClient.complete``; this layer picks the persona and model and
    validates what comes back.
    """

    def __init__(self, llm_client: LLMClient, settings: Settings | None = None):
        self.llm = llm_client
        self.settings = settings or get_settings()

    async def generate(
        self, kind: GenerationKind, context: GenerationContext
    ) -> GenerationResult:
        persona = persona_for(kind, context)
        model_config = self.settings.model_for_role(kind.value)

        response = await self.llm.complete(
            model=model_config.model_id,
            messages=[{"role": "user", "content": persona.build_user_prompt(context)}],
            system=persona.build_system_prompt(),
            max_tokens=model_config.max_tokens,
            temperature=model_config.temperature,
            role=kind.value,
        )
        logger.debug(
            f"{persona.config.codename} raw response: {truncate(response.content, 200)}"
        )

        data, is_fallback = parse_output(
            persona, response.content, self.settings.llm_allow_fallback
        )
        return GenerationResult(
            kind=kind,
            data=data,
            is_fallback=is_fallback,
            model=response.model,
            token_usage=response.token_usage,
        )
