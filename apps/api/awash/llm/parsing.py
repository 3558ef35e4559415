"""Parsing and validation of structured model output.

Two formats are understood:
- full: ``{thought, plan, files: {path: content}, messageToUser, requiresConfirmation}``
- surgical: ``{thought, edits: [LineEdit], messageToUser, requiresConfirmation}``
"""

from __future__ import annotations

import json
import re
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, Field, ValidationError

from awash.errors import ResponseParseError


FENCED_JSON = re.compile(r"```json\s*\n(.*?)\n\s*```", re.DOTALL)
FENCED_ANY = re.compile(r"```\w*\s*\n(.*?)\n\s*```", re.DOTALL)

PLACEHOLDER_PATTERNS = [
    re.compile(r"//\s*\.\.\."),
    re.compile(r"//\s*rest of", re.IGNORECASE),
    re.compile(r"//\s*existing code", re.IGNORECASE),
    re.compile(r"//\s*unchanged", re.IGNORECASE),
    # A bare ellipsis line; spread syntax and "Loading..." strings are fine
    re.compile(r"^\s*\.\.\.\s*$", re.MULTILINE),
]

EditAction = Literal["replace", "insert", "delete", "create"]

ModelT = TypeVar("ModelT", bound=BaseModel)


class LineEdit(BaseModel):
    file: str
    action: EditAction
    start_line: int | None = Field(default=None, alias="startLine")
    end_line: int | None = Field(default=None, alias="endLine")
    insert_after_line: int | None = Field(default=None, alias="insertAfterLine")
    content: str = ""
    description: str

    model_config = {"populate_by_name": True}


class ParsedResponse(BaseModel):
    thought: str
    plan: list[str] = Field(default_factory=list)
    files: dict[str, str] = Field(default_factory=dict)
    message_to_user: str
    requires_confirmation: bool = False


class SurgicalResponse(BaseModel):
    thought: str
    edits: list[LineEdit]
    message_to_user: str
    requires_confirmation: bool = False


def _validated(model: type[ModelT], data: dict[str, Any], what: str) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
        raise ResponseParseError(f"{what} has invalid fields: {', '.join(fields)}", {"fields": fields}) from e


def extract_json(text: str) -> Any:
    """Pull a JSON value out of model text.

    Tries a ```json fence, any fence, the whole text, then the first
    balanced ``{...}`` span.
    """
    candidates = []
    for pattern in (FENCED_JSON, FENCED_ANY):
        match = pattern.search(text)
        if match:
            candidates.append(match.group(1))
    candidates.append(text)
    span = _first_balanced_object(text)
    if span:
        candidates.append(span)

    last_error: Exception | None = None
    for candidate in candidates:
        try:
            return json.loads(candidate.strip())
        except json.JSONDecodeError as e:
            last_error = e
    raise ResponseParseError(f"Failed to parse AI response as JSON: {last_error}")


def _first_balanced_object(text: str) -> str | None:
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def find_placeholder(content: str) -> str | None:
    """Return the first placeholder marker found in ``content``."""
    for pattern in PLACEHOLDER_PATTERNS:
        match = pattern.search(content)
        if match:
            return match.group(0).strip()
    return None


class ResponseParser:
    """Parses model responses into ``ParsedResponse`` / ``SurgicalResponse``."""

    def parse(
        self,
        text: str,
        mode: Literal["full", "surgical"] = "full",
    ) -> ParsedResponse | SurgicalResponse:
        if mode == "surgical":
            return self.parse_surgical(text)
        return self.parse_full(text)

    def parse_full(self, text: str) -> ParsedResponse:
        data = self._load_object(text)
        self._require(data, ("thought", "messageToUser"))

        files = data.get("files") or {}
        if not isinstance(files, dict):
            raise ResponseParseError("files must be an object")
        plan = data.get("plan") or []
        if not isinstance(plan, list):
            raise ResponseParseError("plan must be an array")

        for path, content in files.items():
            if not isinstance(content, str):
                raise ResponseParseError(f"File {path} content must be a string", {"file": path})
            marker = find_placeholder(content)
            if marker:
                raise ResponseParseError(
                    f"File {path} contains incomplete code with placeholders ({marker!r}). "
                    "AI must provide complete file content.",
                    {"file": path, "placeholder": marker},
                )

        return _validated(ParsedResponse, {
            "thought": data["thought"],
            "plan": [str(step) for step in plan],
            "files": files,
            "message_to_user": data["messageToUser"],
            "requires_confirmation": bool(data.get("requiresConfirmation", False)),
        }, "Response")

    def parse_surgical(self, text: str) -> SurgicalResponse:
        data = self._load_object(text)
        self._require(data, ("thought", "messageToUser", "edits"))

        raw_edits = data["edits"]
        if not isinstance(raw_edits, list):
            raise ResponseParseError("edits must be an array")

        edits = [self._validate_edit(i, edit) for i, edit in enumerate(raw_edits)]
        return _validated(SurgicalResponse, {
            "thought": data["thought"],
            "edits": edits,
            "message_to_user": data["messageToUser"],
            "requires_confirmation": bool(data.get("requiresConfirmation", False)),
        }, "Response")

    @staticmethod
    def extract_thinking_steps(thought: str) -> list[str]:
        """Split a thought into steps, dropping blank lines and "1." numbering."""
        return [
            re.sub(r"^\d+\.\s*", "", line.strip()).strip()
            for line in thought.splitlines()
            if line.strip()
        ]

    def _load_object(self, text: str) -> dict[str, Any]:
        data = extract_json(text)
        if not isinstance(data, dict):
            raise ResponseParseError("AI response must be a JSON object")
        return data

    def _require(self, data: dict[str, Any], fields: tuple[str, ...]) -> None:
        for name in fields:
            if not data.get(name):
                raise ResponseParseError(f"Missing required field: {name}")

    def _validate_edit(self, index: int, edit: Any) -> LineEdit:
        if not isinstance(edit, dict):
            raise ResponseParseError(f"Edit {index} must be an object")
        if not edit.get("file") or not edit.get("action") or not edit.get("description"):
            raise ResponseParseError(f"Edit {index} missing required fields: file, action, or description")

        action = edit["action"]
        if action not in ("replace", "insert", "delete", "create"):
            raise ResponseParseError(f"Edit {index} has invalid action: {action}")
        if action in ("replace", "delete") and (edit.get("startLine") is None or edit.get("endLine") is None):
            raise ResponseParseError(f"Edit {index} with action {action} requires startLine and endLine")
        if action == "insert" and edit.get("insertAfterLine") is None:
            raise ResponseParseError(f"Edit {index} with action insert requires insertAfterLine")
        if action in ("replace", "insert", "create") and not edit.get("content"):
            raise ResponseParseError(f"Edit {index} with action {action} requires content")

        return _validated(LineEdit, edit, f"Edit {index}")
