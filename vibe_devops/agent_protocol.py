"""JSON action protocol between the model and the agent loop."""

import json
from dataclasses import dataclass, field
from typing import Any

from vibe_devops.exceptions import ProtocolError

ACTION_TOOL = "tool"
ACTION_DONE = "done"
ACTION_ANSWER = "answer"

ALLOWED_KEYS = frozenset({"type", "tool", "input", "command", "explanation", "thought"})

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    '"': '"',
    "\\": "\\",
    "/": "/",
}


@dataclass(frozen=True)
class Action:
    """One decoded model turn."""

    type: str
    tool: str = ""
    input: dict[str, Any] = field(default_factory=dict)
    command: str = ""
    explanation: str = ""
    thought: str = ""

    def input_json(self) -> str:
        return json.dumps(self.input, separators=(",", ":"), ensure_ascii=False)


class JsonScanner:
    """Character-level JSON object scanner.

    Tracks whether the cursor is inside a string, whether the previous
    character was a backslash escape, and the brace depth. Escapes only
    count inside strings.
    """

    STRING_START = "string_start"
    STRING_END = "string_end"
    STRING_CHAR = "string_char"
    ESCAPE = "escape"
    ESCAPED_CHAR = "escaped_char"
    OPEN = "open"
    CLOSE = "close"
    OTHER = "other"

    def __init__(self) -> None:
        self.in_string = False
        self.escaped = False
        self.depth = 0
        self.started = False

    @property
    def complete(self) -> bool:
        return self.started and self.depth == 0

    def step(self, char: str) -> str:
        if self.in_string:
            if self.escaped:
                self.escaped = False
                return self.ESCAPED_CHAR
            if char == "\\":
                self.escaped = True
                return self.ESCAPE
            if char == '"':
                self.in_string = False
                return self.STRING_END
            return self.STRING_CHAR
        if char == '"':
            self.in_string = True
            return self.STRING_START
        if char == "{":
            self.depth += 1
            self.started = True
            return self.OPEN
        if char == "}":
            self.depth -= 1
            return self.CLOSE
        return self.OTHER


def _strip_fences(text: str) -> str:
    s = text.strip()
    s = s.removeprefix("```json")
    s = s.removeprefix("```")
    s = s.removesuffix("```")
    return s.strip()


def extract_json_object(text: str) -> str:
    """Return the first balanced top-level JSON object in text.

    Raises:
        ProtocolError: no object, or the object never closes.
    """
    s = _strip_fences(text)
    start = s.find("{")
    if start < 0:
        raise ProtocolError("no JSON object found")

    scanner = JsonScanner()
    for index in range(start, len(s)):
        scanner.step(s[index])
        if scanner.complete:
            return s[start : index + 1]
    raise ProtocolError("unterminated JSON object")


def _string_field(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ProtocolError(f"invalid field: {key} must be a string")
    return value


def parse_action(text: str) -> Action:
    """Decode and validate a model action.

    Raises:
        ProtocolError: with a short reason such as "missing field: command".
    """
    raw = extract_json_object(text)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"invalid JSON action: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError("invalid JSON action: not an object")

    for key in data:
        if key not in ALLOWED_KEYS:
            raise ProtocolError(f"unknown field: {key}")

    action_type = _string_field(data, "type").strip()
    if not action_type:
        raise ProtocolError("missing field: type")

    tool = _string_field(data, "tool")
    command = _string_field(data, "command")
    explanation = _string_field(data, "explanation")
    thought = _string_field(data, "thought")
    arguments = data.get("input")
    if arguments is None:
        arguments = {}
    elif not isinstance(arguments, dict):
        raise ProtocolError("invalid field: input must be an object")

    if action_type == ACTION_TOOL:
        if not tool.strip():
            raise ProtocolError("missing field: tool")
    elif action_type == ACTION_DONE:
        if not command.strip():
            raise ProtocolError("missing field: command")
    elif action_type == ACTION_ANSWER:
        if not explanation.strip():
            raise ProtocolError("missing field: explanation")
    else:
        raise ProtocolError(f"unknown type: {action_type}")

    return Action(
        type=action_type,
        tool=tool.strip(),
        input=arguments,
        command=command,
        explanation=explanation,
        thought=thought,
    )


class ExplanationStreamExtractor:
    """Pull the top-level "explanation" string out of a streamed action.

    Feed raw model chunks in order; each call returns the newly decoded
    explanation characters (possibly empty). Everything else, including
    "thought" and the JSON structure, is suppressed.
    """

    def __init__(self) -> None:
        self._scanner = JsonScanner()
        self._expect_key = False
        self._reading_key = False
        self._key: list[str] = []
        self._last_key = ""
        self._emitting = False
        self._announced = False
        self._done = False
        self._unicode: list[str] | None = None
        self._high_surrogate: int | None = None

    @property
    def started(self) -> bool:
        return self._announced

    def feed(self, chunk: str) -> str:
        out: list[str] = []
        for char in chunk:
            if self._done:
                break
            if not self._scanner.started and char != "{":
                continue
            self._consume(char, out)
        return "".join(out)

    def _consume(self, char: str, out: list[str]) -> None:
        scanner = self._scanner
        depth_before = scanner.depth
        event = scanner.step(char)

        if event == JsonScanner.OPEN:
            if scanner.depth == 1:
                self._expect_key = True
            return
        if event == JsonScanner.CLOSE:
            if scanner.complete:
                self._done = True
            return
        if event == JsonScanner.OTHER:
            if depth_before == 1:
                if char == ",":
                    self._expect_key = True
                elif char == ":":
                    self._expect_key = False
            return

        if depth_before != 1:
            return

        if event == JsonScanner.STRING_START:
            if self._expect_key:
                self._reading_key = True
                self._key = []
            elif self._last_key == "explanation" and not self._announced:
                self._emitting = True
                self._announced = True
                out.append("\n")
            return

        if event == JsonScanner.STRING_END:
            if self._reading_key:
                self._reading_key = False
                self._last_key = "".join(self._key)
            else:
                self._emitting = False
            return

        if self._reading_key:
            self._key.append(char)
            return
        if not self._emitting:
            return

        if event == JsonScanner.ESCAPE:
            return
        if event == JsonScanner.ESCAPED_CHAR:
            if char == "u":
                self._unicode = []
            else:
                out.append(_ESCAPES.get(char, char))
            return

        if self._unicode is not None:
            self._unicode.append(char)
            if len(self._unicode) == 4:
                self._emit_codepoint("".join(self._unicode), out)
                self._unicode = None
            return
        out.append(char)

    def _emit_codepoint(self, digits: str, out: list[str]) -> None:
        try:
            code = int(digits, 16)
        except ValueError:
            out.append("\\u" + digits)
            return
        if 0xD800 <= code <= 0xDBFF:
            self._high_surrogate = code
            return
        if 0xDC00 <= code <= 0xDFFF:
            if self._high_surrogate is None:
                code = 0xFFFD
            else:
                code = 0x10000 + ((self._high_surrogate - 0xD800) << 10) + (code - 0xDC00)
        self._high_surrogate = None
        out.append(chr(code))
