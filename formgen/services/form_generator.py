# formgen/services/form_generator.py

import json
import logging
import re
import uuid
from typing import Any, Dict, List, TypedDict

from langgraph.graph import StateGraph, END
from pydantic import ValidationError

from formgen.core.gemini_client import GeminiClient
from formgen.models.form import Form
from formgen.schemas.form import FormContext, FormSchema, GeneratedForm
from formgen.services.prompts import CONTEXT_SECTION, FORM_GENERATOR_PROMPT, USER_REQUEST
from formgen.services.semantic_memory import SemanticMemoryService

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class GeneratorState(TypedDict, total=False):
    # Input
    user_id: str
    user_prompt: str

    # RAG
    relevant_forms: List[FormContext]

    # LLM
    llm_input: str
    llm_output_raw: str

    # Output
    result: GeneratedForm


class SchemaParseError(ValueError):
    pass


# ---------- JSON Extraction Utility ----------

def extract_json(text: str) -> Dict[str, Any]:
    """
    Extracts the JSON object from LLM output.
    Handles:
    - Markdown fences
    - Leading/trailing whitespace
    - Explanation text around a single object
    """
    if not text or not text.strip():
        raise SchemaParseError("Empty LLM response")

    match = _FENCE_RE.search(text)
    if match:
        text = match.group(1)
    text = text.strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        block = re.search(r"\{.*\}", text, re.DOTALL)
        if not block:
            raise SchemaParseError("LLM returned invalid JSON")
        try:
            parsed = json.loads(block.group())
        except json.JSONDecodeError as e:
            raise SchemaParseError(f"LLM returned invalid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise SchemaParseError("Parsed JSON is not an object")
    return parsed


def _unique_types(fields) -> List[str]:
    return list(dict.fromkeys(field.type for field in fields))


def parse_form_response(response_text: str, original_prompt: str) -> GeneratedForm:
    """Validate and repair a model answer; raises SchemaParseError when unusable"""
    parsed = extract_json(response_text)

    schema = parsed.get("schema")
    if not isinstance(schema, dict):
        raise SchemaParseError("Invalid schema structure")

    fields = schema.get("fields")
    if not isinstance(fields, list) or not fields:
        raise SchemaParseError("Schema has no fields")

    repaired = []
    for index, field in enumerate(fields):
        if not isinstance(field, dict):
            raise SchemaParseError(f"Field {index} is not an object")
        field = dict(field)
        if not field.get("id"):
            field["id"] = f"field-{index}-{uuid.uuid4().hex[:8]}"
        if not field.get("name"):
            field["name"] = field["id"]
        repaired.append(field)

    try:
        form_schema = FormSchema.model_validate({
            **schema,
            "title": schema.get("title") or "Generated Form",
            "fields": repaired,
        })
    except ValidationError as e:
        raise SchemaParseError(f"Schema failed validation: {e.error_count()} errors") from e

    summary = parsed.get("summary")
    purpose = parsed.get("purpose")

    return GeneratedForm(
        form_schema=form_schema,
        summary=summary if isinstance(summary, str) and summary else f"Form generated from: {original_prompt[:100]}",
        purpose=purpose if isinstance(purpose, str) and purpose else "other",
        field_types=_unique_types(form_schema.fields),
    )


def create_fallback_form(prompt: str) -> GeneratedForm:
    """Two required fields (name, email); used whenever the model answer is unusable"""
    form_schema = FormSchema.model_validate({
        "title": "Generated Form",
        "description": prompt,
        "fields": [
            {
                "id": "field-name",
                "name": "name",
                "label": "Name",
                "type": "text",
                "placeholder": "Enter your name",
                "required": True,
            },
            {
                "id": "field-email",
                "name": "email",
                "label": "Email",
                "type": "email",
                "placeholder": "Enter your email",
                "required": True,
            },
        ],
    })
    return GeneratedForm(
        form_schema=form_schema,
        summary=f"Fallback form for: {prompt[:100]}",
        purpose="other",
        field_types=["text", "email"],
    )


def build_system_prompt(relevant_forms: List[FormContext]) -> str:
    context_section = ""
    if relevant_forms:
        formatted = ",\n  ".join(
            json.dumps({"purpose": form.purpose, "fields": form.fields})
            for form in relevant_forms
        )
        context_section = CONTEXT_SECTION.format(forms=formatted)
    return FORM_GENERATOR_PROMPT.format(context_section=context_section)


class FormGeneratorService:
    """
    Generates form schemas from natural language prompts.

    Graph:
    1. retrieve_context -> past forms of this user (never fails)
    2. build_prompt     -> fixed schema contract + reference patterns
    3. llm_generate     -> Gemini call; the only step whose errors propagate
    4. parse_response   -> validated schema, or the fallback form
    """

    def __init__(
        self,
        llm: GeminiClient,
        memory: SemanticMemoryService,
        temperature: float = 0.7,
        max_output_tokens: int = 2048,
    ):
        self.llm = llm
        self.memory = memory
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.graph = self._build_graph()

    def _build_graph(self):
        builder = StateGraph(GeneratorState)

        builder.add_node("retrieve_context", self.retrieve_context_node)
        builder.add_node("build_prompt", self.build_prompt_node)
        builder.add_node("llm_generate", self.llm_generate_node)
        builder.add_node("parse_response", self.parse_response_node)

        builder.set_entry_point("retrieve_context")
        builder.add_edge("retrieve_context", "build_prompt")
        builder.add_edge("build_prompt", "llm_generate")
        builder.add_edge("llm_generate", "parse_response")
        builder.add_edge("parse_response", END)

        return builder.compile()

    async def generate_form(self, user_id: str, prompt: str) -> GeneratedForm:
        final_state = await self.graph.ainvoke({
            "user_id": str(user_id),
            "user_prompt": prompt,
        })
        return final_state["result"]

    # ---------- Nodes ----------

    async def retrieve_context_node(self, state: GeneratorState) -> GeneratorState:
        user_id = state["user_id"]
        prompt = state["user_prompt"]

        relevant_forms: List[FormContext] = []
        try:
            if self.memory.vector_available:
                try:
                    relevant_forms = await self.memory.retrieve_relevant_forms(user_id, prompt)
                except Exception as e:
                    logger.warning(f"Semantic retrieval failed, using text search: {e}")
                    relevant_forms = await self.memory.fallback_text_search(user_id, prompt)
            else:
                relevant_forms = await self.memory.fallback_text_search(user_id, prompt)
        except Exception as e:
            logger.warning(f"Context retrieval failed, generating without context: {e}")
            relevant_forms = []

        logger.info(f"Context for generation: {len(relevant_forms)} past forms")
        return {**state, "relevant_forms": relevant_forms}

    async def build_prompt_node(self, state: GeneratorState) -> GeneratorState:
        system_prompt = build_system_prompt(state.get("relevant_forms") or [])
        return {
            **state,
            "llm_input": system_prompt + USER_REQUEST.format(prompt=state["user_prompt"]),
        }

    async def llm_generate_node(self, state: GeneratorState) -> GeneratorState:
        raw = await self.llm.generate(
            state["llm_input"],
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )
        logger.info("LLM generation completed successfully")
        return {**state, "llm_output_raw": raw or ""}

    async def parse_response_node(self, state: GeneratorState) -> GeneratorState:
        prompt = state["user_prompt"]
        try:
            result = parse_form_response(state.get("llm_output_raw", ""), prompt)
        except Exception as e:
            logger.error(f"Failed to parse form response: {e}")
            logger.debug(f"Response text: {state.get('llm_output_raw')!r}")
            result = create_fallback_form(prompt)
        return {**state, "result": result}

    async def store_form_embedding(self, form: Form) -> None:
        await self.memory.store_form_embedding(
            str(form.id),
            str(form.user_id),
            form.summary,
            form.purpose,
            form.field_types or [],
        )
