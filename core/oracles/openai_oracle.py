"""OpenAI chat-completions backend for detection, summary and slot mapping."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Sequence
from typing import Any

import openai

from core.config.models import FillSettings
from core.oracles.parsing import load_json_payload, parse_descriptors, parse_slot_mapping
from core.templates.models import FieldValue, PlaceholderDescriptor, SlotView
from core.utils.errors import OracleTimeoutError, OracleUnavailableError
from core.utils.log_events import log_event

logger = logging.getLogger("blankfill.oracle")

_DETECTION_SYSTEM = "You extract fillable placeholders from document templates. Output JSON only."
_DETECTION_PROMPT = """\
List every place in this legal or financial template where a user must supply information.
Cover the whole document, including party details, operative terms and signature blocks.
Look for bracketed placeholders ([Company Name], $[_____]), underscore or dash blanks,
labeled lines such as "By:", "Name:", "Title:", "Address:", "Email:", and any label
followed by a blank.

Reply with a JSON object:
{{"placeholders": [{{
  "key": "unique snake_case key",
  "label": "human readable label",
  "type": "text | number | currency | date | email | address | signature",
  "question": "one short question asking the user for this value",
  "originalPattern": "the placeholder exactly as written in the document",
  "numberOfOccurrences": "how many times that exact text appears"
}}]}}

Document:
{text}
"""

_SUMMARY_SYSTEM = (
    "Summarize this legal document in 2-3 sentences. "
    'Refer to parties by role, e.g. "the company" and "the investor".'
)

_MAPPING_SYSTEM = "You map each slot id to the best field key. Output JSON only."
_MAPPING_PROMPT = """\
Each slot is one blank in a legal document. Pick the field whose value belongs there.
Reply with a JSON object mapping slot ids to field keys, e.g. {{"h0001": "company_name"}}.
Leave a slot out when no field fits.

Hints:
- Prefer the field whose label matches label_guess or appears in text_window.
- "By:" and "Name:" take a person or entity name, "Title:" a role, "Address:" a
  mailing address, "Email:" an email address.
- has_currency_marker=true or words like "Purchase Amount" suggest a currency field.

Slots (in document order):
{slots}

Fields:
{fields}
"""


class OpenAIOracle:
    """All oracle roles backed by one OpenAI client."""

    name = "openai"

    def __init__(
        self,
        *,
        settings: FillSettings | None = None,
        client: Any | None = None,
    ) -> None:
        self._settings = settings or FillSettings()
        self._client = client or openai.OpenAI(
            api_key=os.getenv("OPENAI_API_KEY"),
            timeout=self._settings.oracle_timeout_seconds,
        )

    def detect_placeholders(self, text: str) -> list[PlaceholderDescriptor]:
        content = self._complete(
            role="detection",
            system=_DETECTION_SYSTEM,
            user=_DETECTION_PROMPT.format(text=text),
            temperature=0.3,
            json_mode=True,
        )
        return parse_descriptors(load_json_payload(content))

    def summarize(self, text: str) -> str:
        content = self._complete(
            role="summary",
            system=_SUMMARY_SYSTEM,
            user=text,
            temperature=0.4,
            json_mode=False,
        )
        return " ".join(content.split())

    def map_slots(self, slots: Sequence[SlotView], fields: Sequence[FieldValue]) -> dict[str, str]:
        content = self._complete(
            role="mapping",
            system=_MAPPING_SYSTEM,
            user=_MAPPING_PROMPT.format(
                slots=json.dumps([slot.model_dump(mode="json") for slot in slots], indent=2),
                fields=json.dumps(
                    [field.model_dump(mode="json") for field in fields],
                    ensure_ascii=False,
                    indent=2,
                ),
            ),
            temperature=0.1,
            json_mode=True,
        )
        return parse_slot_mapping(
            load_json_payload(content),
            allowed_ids={slot.id for slot in slots},
            allowed_keys={field.key for field in fields},
        )

    def _complete(
        self,
        *,
        role: str,
        system: str,
        user: str,
        temperature: float,
        json_mode: bool,
    ) -> str:
        request: dict[str, Any] = {
            "model": self._settings.oracle_model,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            completion = self._client.chat.completions.create(**request)
        except openai.APITimeoutError as exc:
            log_event(logger, logging.WARNING, "oracle_timeout", role=role)
            raise OracleTimeoutError(f"{role} call timed out") from exc
        except openai.OpenAIError as exc:
            log_event(
                logger,
                logging.WARNING,
                "oracle_error",
                role=role,
                error_type=type(exc).__name__,
            )
            raise OracleUnavailableError(f"{role} call failed: {type(exc).__name__}") from exc

        choices = getattr(completion, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise OracleUnavailableError(f"{role} call returned no content")
        return content.strip()
