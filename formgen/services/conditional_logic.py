# formgen/services/conditional_logic.py
"""
Conditional logic engine

Rules are applied in a single pass, in list order. A rule fires when its
condition holds against the raw submitted value of its trigger field and
then applies its action to every target. Nothing is re-propagated: if a
rule hides a field that is itself a trigger, later rules still read that
field's raw value.
"""

import math
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from formgen.schemas.form import UPLOAD_FIELD_TYPES, ConditionalRule, FormField

_NUMERIC_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_INFINITY_RE = re.compile(r"^[+-]?Infinity$")

CYCLE_ERROR = "Circular dependency detected in conditional rules"


class EvaluationResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    visible_fields: List[str]
    required_fields: List[str]
    hidden_fields: List[str]


class RuleValidation(BaseModel):
    valid: bool
    error: Optional[str] = None


# ---------- Value coercion ----------

def to_number(value: Any) -> Optional[float]:
    """Numeric reading of a submitted or rule value, None when it has none"""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _NUMERIC_RE.match(text):
            return float(text)
        if _INFINITY_RE.match(text):
            return float("-inf") if text.startswith("-") else float("inf")
        return None
    if isinstance(value, (list, tuple)):
        if not value:
            return 0.0
        if len(value) == 1:
            return to_number(value[0])
    return None


def to_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join("" if item is None else to_text(item) for item in value)
    return str(value)


def compare_values(a: Any, b: Any) -> float:
    """Negative, zero or positive; numeric when both sides are numbers, else case-insensitive text"""
    num_a = to_number(a)
    num_b = to_number(b)
    if num_a is not None and num_b is not None:
        if num_a == num_b:
            return 0
        return -1 if num_a < num_b else 1

    str_a = to_text(a).lower()
    str_b = to_text(b).lower()
    if str_a == str_b:
        return 0
    return 1 if str_a > str_b else -1


def _same_value(a: Any, b: Any) -> bool:
    # Strict membership: True is not 1 and "5" is not 5
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    return type(a) is type(b) and a == b


def check_condition(condition: str, actual: Any, expected: Any) -> bool:
    if actual is None:
        return condition == "notEquals" and expected is not None

    if condition == "equals":
        return compare_values(actual, expected) == 0
    if condition == "notEquals":
        return compare_values(actual, expected) != 0
    if condition == "contains":
        if isinstance(actual, str):
            return to_text(expected).lower() in actual.lower()
        if isinstance(actual, (list, tuple)):
            return any(_same_value(item, expected) for item in actual)
        return False
    if condition == "greaterThan":
        return compare_values(actual, expected) > 0
    if condition == "lessThan":
        return compare_values(actual, expected) < 0
    return False


# ---------- Evaluation ----------

def _apply_action(
    action: str,
    target_field_ids: Iterable[str],
    visible: Dict[str, None],
    required: Dict[str, None],
    hidden: Dict[str, None],
) -> None:
    # Dicts act as insertion-ordered sets
    for field_id in target_field_ids:
        if action == "show":
            visible.setdefault(field_id)
            hidden.pop(field_id, None)
        elif action == "hide":
            visible.pop(field_id, None)
            hidden.setdefault(field_id)
            required.pop(field_id, None)
        elif action == "require":
            if field_id in visible:
                required.setdefault(field_id)
        elif action == "unrequire":
            required.pop(field_id, None)


def evaluate(
    rules: Sequence[ConditionalRule],
    responses: Dict[str, Any],
    all_field_ids: Sequence[str],
    baseline_required: Iterable[str] = (),
) -> EvaluationResult:
    """
    Visibility and required-ness of every field for one set of responses.

    Args:
        rules: Rules in evaluation order
        responses: Trigger values keyed by field id
        all_field_ids: Every field in the schema; all start visible
        baseline_required: Fields required before any rule runs (none by default)
    """
    visible = dict.fromkeys(all_field_ids)
    required = dict.fromkeys(field_id for field_id in baseline_required if field_id in visible)
    hidden: Dict[str, None] = {}

    for rule in rules:
        trigger_value = responses.get(rule.field_id)
        if check_condition(rule.condition, trigger_value, rule.value):
            _apply_action(rule.action, rule.target_field_ids, visible, required, hidden)

    return EvaluationResult(
        visible_fields=list(visible),
        required_fields=list(required),
        hidden_fields=list(hidden),
    )


def validate_rules(rules: Sequence[ConditionalRule]) -> RuleValidation:
    """Advisory cycle check over trigger -> target edges; evaluate() never calls it"""
    dependencies: Dict[str, Dict[str, None]] = {}
    for rule in rules:
        targets = dependencies.setdefault(rule.field_id, {})
        for target_id in rule.target_field_ids:
            targets.setdefault(target_id)

    visited = set()
    on_stack = set()

    def has_cycle(start: str) -> bool:
        # Explicit stack of (node, remaining neighbours)
        visited.add(start)
        on_stack.add(start)
        stack = [(start, iter(dependencies.get(start, {})))]
        while stack:
            node, neighbors = stack[-1]
            for neighbor in neighbors:
                if neighbor in on_stack:
                    return True
                if neighbor not in visited:
                    visited.add(neighbor)
                    on_stack.add(neighbor)
                    stack.append((neighbor, iter(dependencies.get(neighbor, {}))))
                    break
            else:
                on_stack.discard(node)
                stack.pop()
        return False

    for field_id in dependencies:
        if field_id not in visited and has_cycle(field_id):
            return RuleValidation(valid=False, error=CYCLE_ERROR)

    return RuleValidation(valid=True)


def find_unknown_field_references(rules: Sequence[ConditionalRule], field_ids: Iterable[str]) -> List[str]:
    """Rule trigger/target ids that are not in the schema, in first-seen order"""
    known = set(field_ids)
    unknown: Dict[str, None] = {}
    for rule in rules:
        for field_id in [rule.field_id, *rule.target_field_ids]:
            if field_id not in known:
                unknown.setdefault(field_id)
    return list(unknown)


def rule_warnings(rules: Sequence[ConditionalRule], fields: Sequence[FormField]) -> List[str]:
    warnings = []
    validation = validate_rules(rules)
    if not validation.valid:
        warnings.append(validation.error)
    unknown = find_unknown_field_references(rules, [field.id for field in fields])
    if unknown:
        warnings.append(f"Rules reference unknown fields: {', '.join(unknown)}")
    return warnings


# ---------- Submission checks ----------

def trigger_values(fields: Sequence[FormField], responses: Dict[str, Any]) -> Dict[str, Any]:
    """Responses are keyed by field name; rules refer to field ids"""
    values = dict(responses)
    for field in fields:
        if field.name in responses:
            values[field.id] = responses[field.name]
    return values


def evaluate_submission(
    fields: Sequence[FormField],
    rules: Sequence[ConditionalRule],
    responses: Dict[str, Any],
) -> EvaluationResult:
    return evaluate(
        rules,
        trigger_values(fields, responses),
        [field.id for field in fields],
        baseline_required=[field.id for field in fields if field.required],
    )


def _has_response(value: Any) -> bool:
    return value is not None and value != "" and value != []


def find_missing_required_fields(
    fields: Sequence[FormField],
    rules: Sequence[ConditionalRule],
    responses: Dict[str, Any],
    image_urls: Dict[str, str],
) -> List[str]:
    """Labels of effectively-required fields the submission leaves empty"""
    required = set(evaluate_submission(fields, rules, responses).required_fields)

    missing = []
    for field in fields:
        if field.id not in required:
            continue
        has_file = field.type in UPLOAD_FIELD_TYPES and field.id in image_urls
        if not _has_response(responses.get(field.name)) and not has_file:
            missing.append(field.label)
    return missing
