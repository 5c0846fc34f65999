"""
Syntax Repair Engine - deterministic text-level JSON repair.

Invoked only when raw LLM text does not parse as JSON at all. The candidate
is first cut out of surrounding prose/markdown, then each strategy is tried
INDEPENDENTLY against that extracted text, in increasing invasiveness:

    (a) balance_brackets   - drop unmatched closers, append missing closers
    (b) close_quotes       - close an unterminated string literal
    (c) trailing_commas    - drop commas right before } or ]
    (d) strip_comments     - drop // and /* */ comments outside strings
    (e) state_machine      - char-by-char pass tracking string/escape/depth
    (f) json_repair        - json_repair library, last resort

Strategies are never chained: the first one whose output parses wins.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from json_repair import repair_json

from ..errors import ParseFailure

logger = logging.getLogger(__name__)

_CLOSER = {"{": "}", "[": "]"}
_OPENER = {"}": "{", "]": "["}

_CODE_FENCE_RE = re.compile(r"```[a-zA-Z]*[ \t]*\n?(.*?)(?:```|$)", re.DOTALL)
_BRACKET_RE = re.compile(r"[\{\[]")
_TRAILING_WORD_RE = re.compile(r"([\[:,]\s*)([A-Za-z]+)$")
_LITERALS = ("true", "false", "null")


@dataclass
class RepairResult:
    """Outcome of a repair run."""
    repaired_text: str
    strategy_used: str
    success: bool
    data: Any = None

    def __iter__(self):
        # Unpacks as (repaired_text, strategy_used, success)
        return iter((self.repaired_text, self.strategy_used, self.success))


def parse_json(text: str) -> Any:
    """Strict parse. Raises ParseFailure instead of JSONDecodeError."""
    if not isinstance(text, str) or not text.strip():
        raise ParseFailure("Empty response", raw_text=text if isinstance(text, str) else "")
    try:
        return json.loads(text.strip())
    except (json.JSONDecodeError, ValueError) as e:
        raise ParseFailure(f"Invalid JSON: {e}", raw_text=text) from e


def _try_parse(text: str) -> Tuple[bool, Any]:
    try:
        return True, parse_json(text)
    except ParseFailure:
        return False, None


# =============================================================================
# EXTRACTION
# =============================================================================

def extract_json_block(text: str) -> str:
    """
    Cut the first JSON object/array out of surrounding prose or markdown.

    Uses string-aware bracket counting. Incomplete structures are returned
    from their start to the end of the text; text without any { or [ is
    returned unchanged.
    """
    text = text.strip()

    fence = _CODE_FENCE_RE.search(text)
    if fence and fence.group(1).strip() and not _BRACKET_RE.search(text, 0, fence.start()):
        text = fence.group(1).strip()

    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return text
    start = min(starts)

    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    return text[start:]


# =============================================================================
# STRATEGIES
# =============================================================================

def balance_brackets(text: str) -> str:
    """(a) Drop closers with no matching opener, append closers for open ones."""
    out: List[str] = []
    stack: List[str] = []
    in_string = False
    escape = False

    for ch in text:
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
        elif ch in "{[":
            stack.append(ch)
            out.append(ch)
        elif ch in "}]":
            opener = _OPENER[ch]
            if opener in stack:
                while stack[-1] != opener:
                    out.append(_CLOSER[stack.pop()])
                stack.pop()
                out.append(ch)
            # unmatched closer: dropped
        else:
            out.append(ch)

    out.extend(_CLOSER[c] for c in reversed(stack))
    return "".join(out)


def close_quotes(text: str) -> str:
    """(b) Close a string literal left open at end of input."""
    in_string = False
    escape = False
    for ch in text:
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True

    if not in_string:
        return text
    if escape:
        text = text[:-1]
    return text + '"'


def remove_trailing_commas(text: str) -> str:
    """(c) Drop commas whose next significant character is } or ]."""
    out: List[str] = []
    in_string = False
    escape = False
    n = len(text)

    for i, ch in enumerate(text):
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in "}]":
                continue
        out.append(ch)

    return "".join(out)


def strip_comments(text: str) -> str:
    """(d) Remove // line comments and /* block */ comments outside strings."""
    out: List[str] = []
    in_string = False
    escape = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            i += 1
            continue

        if text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end < 0 else end
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end < 0 else end + 2
            continue

        if ch == '"':
            in_string = True
        out.append(ch)
        i += 1

    return "".join(out)


def state_machine_repair(text: str) -> str:
    """
    (e) Token-scanning state machine.

    Walks character by character tracking in-string, escape and nesting
    state, and emits a corrected stream: comments and trailing commas are
    dropped, raw control characters inside strings are escaped, an
    unterminated string is closed, a dangling key/colon/partial literal at
    end of input is completed or removed, unmatched closers are dropped and
    missing closers appended.
    """
    out: List[str] = []
    stack: List[str] = []
    in_string = False
    escape = False
    last_string_start = -1
    last_string_is_key = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if in_string:
            if escape:
                out.append(ch)
                escape = False
            elif ch == "\\":
                out.append(ch)
                escape = True
            elif ch == '"':
                out.append(ch)
                in_string = False
            elif ch == "\n":
                out.extend("\\n")
            elif ch == "\r":
                out.extend("\\r")
            elif ch == "\t":
                out.extend("\\t")
            elif ord(ch) < 0x20:
                out.extend(f"\\u{ord(ch):04x}")
            else:
                out.append(ch)
            i += 1
            continue

        if text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end < 0 else end
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end < 0 else end + 2
            continue

        if ch == '"':
            prev = _last_significant(out)
            last_string_start = len(out)
            last_string_is_key = bool(stack) and stack[-1] == "{" and prev in ("{", ",")
            in_string = True
            out.append(ch)
        elif ch in "{[":
            stack.append(ch)
            out.append(ch)
        elif ch in "}]":
            opener = _OPENER[ch]
            if opener in stack:
                while stack[-1] != opener:
                    _close_frame(out, stack.pop())
                stack.pop()
                _close_frame(out, opener)
            # unmatched closer: dropped
        else:
            out.append(ch)
        i += 1

    # ---- end of input ----
    if in_string:
        if escape:
            out.pop()
        out.append('"')

    _rstrip(out)
    if out and out[-1] == '"' and last_string_is_key and stack and stack[-1] == "{":
        del out[last_string_start:]
        _rstrip(out)

    tail = _complete_trailing_literal("".join(out))
    out = list(tail)

    while stack:
        _close_frame(out, stack.pop())

    return "".join(out)


def _last_significant(out: List[str]) -> Optional[str]:
    for ch in reversed(out):
        if not ch.isspace():
            return ch
    return None


def _rstrip(out: List[str]) -> None:
    while out and out[-1].isspace():
        out.pop()


def _close_frame(out: List[str], opener: str) -> None:
    """Append the closer for opener, fixing a dangling comma or colon first."""
    _rstrip(out)
    if out and out[-1] == ",":
        out.pop()
        _rstrip(out)
    if out and out[-1] == ":":
        out.extend(" null")
    out.append(_CLOSER[opener])


def _complete_trailing_literal(text: str) -> str:
    """Finish a literal cut off mid-word (tr -> true) or a bare number sign/point."""
    match = _TRAILING_WORD_RE.search(text)
    if match:
        word = match.group(2).lower()
        literal = next((lit for lit in _LITERALS if lit.startswith(word)), "null")
        return text[:match.start(2)] + literal
    if re.search(r"[\[:,]\s*-?\d+\.$", text) or re.search(r"[\[:,]\s*-$", text):
        return text + "0"
    return text


def json_repair_strategy(text: str) -> str:
    """(f) Delegate to the json_repair library."""
    repaired = repair_json(text)
    return repaired if isinstance(repaired, str) else json.dumps(repaired)


# Ordered by increasing invasiveness
STRATEGIES: List[Tuple[str, Callable[[str], str]]] = [
    ("balance_brackets", balance_brackets),
    ("close_quotes", close_quotes),
    ("trailing_commas", remove_trailing_commas),
    ("strip_comments", strip_comments),
    ("state_machine", state_machine_repair),
    ("json_repair", json_repair_strategy),
]

# Library output is only trusted when it yields a container
_CONTAINER_ONLY = {"json_repair"}


# =============================================================================
# ENTRY POINT
# =============================================================================

def _run_strategies(text: str) -> Optional[RepairResult]:
    for name, strategy in STRATEGIES:
        try:
            repaired = strategy(text)
        except Exception as e:
            logger.warning(f"Syntax repair strategy '{name}' raised: {e}")
            continue

        if repaired == text:
            continue

        ok, data = _try_parse(repaired)
        if not ok:
            logger.debug(f"Syntax repair strategy '{name}' did not produce valid JSON")
            continue
        if name in _CONTAINER_ONLY and not isinstance(data, (dict, list)):
            logger.debug(f"Syntax repair strategy '{name}' produced a bare scalar, rejected")
            continue

        logger.info(f"Syntax repair succeeded with strategy '{name}'")
        return RepairResult(repaired, name, True, data)
    return None


def repair(raw_text: str) -> RepairResult:
    """
    Repair raw text that fails to parse.

    Strategies run on the extracted JSON block first, then on the full
    original text when the extracted block cannot be repaired.

    Args:
        raw_text: Raw LLM response

    Returns:
        RepairResult(repaired_text, strategy_used, success, data)
    """
    if not isinstance(raw_text, str) or not raw_text.strip():
        return RepairResult(raw_text or "", "none", False)

    ok, data = _try_parse(raw_text)
    if ok:
        return RepairResult(raw_text.strip(), "none", True, data)

    original = raw_text.strip()
    candidate = extract_json_block(raw_text)
    if candidate != original:
        ok, data = _try_parse(candidate)
        if ok:
            logger.info("Syntax repair succeeded with strategy 'extract_json'")
            return RepairResult(candidate, "extract_json", True, data)

    result = _run_strategies(candidate)
    if result is None and candidate != original:
        result = _run_strategies(original)
    if result is not None:
        return result

    logger.warning("Syntax repair failed: no strategy produced parseable JSON")
    return RepairResult(candidate, "none", False)
