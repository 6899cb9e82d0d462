"""Goal-scoped prompt builder for chunk extraction."""

import json
from typing import Any, Optional

from pydantic import BaseModel

_SYSTEM_INSTRUCTIONS = """\
You are an information extraction system that pulls structured data out of
retail web page content.
"""

_GUIDELINES = """\
- Extract ONLY information that is explicitly present in the content.
- If the requested information is not found, use null or empty values.
- Do NOT add information that is not in the content.
- Keep prices exactly as written, including the currency symbol.
- Focus on the information most relevant to the extraction goal.
"""

_OUTPUT_FORMAT = """\
Respond with a single JSON object containing the extracted information.
Do not include any explanations, notes, or text outside the JSON.
"""

_SECTION_TEMPLATE = """\
# {title}
{body}
"""


def describe_shape_hint(shape_hint: Any) -> Optional[str]:
    """Render a shape hint as JSON schema text.

    Args:
        shape_hint: A pydantic model class, a JSON-schema dict, a raw
            schema string, or None.

    Returns:
        Schema text for the prompt, or None when no hint was given.
    """
    if shape_hint is None:
        return None
    if isinstance(shape_hint, type) and issubclass(shape_hint, BaseModel):
        return json.dumps(shape_hint.model_json_schema(), indent=2)
    if isinstance(shape_hint, str):
        return shape_hint
    return json.dumps(shape_hint, indent=2, default=str)


class ExtractionPromptBuilder:
    """Builds the prompt for one content chunk.

    Sections: TASK, EXTRACTION GOAL, CONTENT CHUNK, GUIDELINES and either
    OUTPUT SCHEMA (when a shape hint is given) or OUTPUT FORMAT.
    """

    def build_prompt(
        self,
        *,
        chunk_text: str,
        goal: str,
        chunk_label: str = "",
        shape_hint: Any = None,
    ) -> str:
        """Build the full extraction prompt.

        Args:
            chunk_text: Reduced text of one chunk.
            goal: Natural-language extraction goal.
            chunk_label: Positional tag such as ``[2/5]``.
            shape_hint: Optional schema constraining the output.

        Returns:
            A fully formatted prompt string ready for LLM consumption.
        """
        content = f"{chunk_label}\n\n{chunk_text}" if chunk_label else chunk_text
        sections = [
            _SECTION_TEMPLATE.format(
                title="TASK",
                body="Extract specific information from the provided content chunk "
                "based on the extraction goal.",
            ),
            _SECTION_TEMPLATE.format(title="EXTRACTION GOAL", body=goal.strip()),
            _SECTION_TEMPLATE.format(title="CONTENT CHUNK", body=content),
            _SECTION_TEMPLATE.format(title="GUIDELINES", body=_GUIDELINES),
        ]

        schema_text = describe_shape_hint(shape_hint)
        if schema_text is not None:
            sections.append(
                _SECTION_TEMPLATE.format(
                    title="OUTPUT SCHEMA",
                    body="Your response must strictly adhere to this JSON schema:\n\n"
                    f"```json\n{schema_text}\n```",
                )
            )
        else:
            sections.append(_SECTION_TEMPLATE.format(title="OUTPUT FORMAT", body=_OUTPUT_FORMAT))

        return f"{_SYSTEM_INSTRUCTIONS}\n" + "\n".join(sections)
