"""SCIM filter expressions (RFC 7644 Section 3.4.2.2).

Parses filter text into an immutable tree of node dataclasses, evaluates
that tree against a resource, and serializes it back to canonical text.

Supported:
- Attribute operators: eq, ne, co, sw, ew, pr, gt, ge, lt, le
- Logical operators: and, or, not (keywords are case-insensitive)
- Grouping with parentheses
- Complex attribute filter grouping: ``emails[type eq "work" and value co "@x"]``
- Schema URI prefixed paths: ``urn:ietf:params:scim:schemas:extension:enterprise:2.0:User:department``

Precedence, from tightest to loosest: ``not``, comparison, ``and``, ``or``.

Example::

    expr = parse_filter('userName eq "bjensen" and emails[type eq "work"]')
    evaluate(resource, expr, schema=USER)
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidFilter
from .resource import get_attr, has_value
from .schemas import ResourceSchema, get_schema


class CompareOp(str, Enum):
    """SCIM attribute operators."""

    EQ = "eq"
    NE = "ne"
    CO = "co"
    SW = "sw"
    EW = "ew"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"


# -- Tree -------------------------------------------------------------------

class Filter:
    """Base class of every filter node."""

    def matches(self, resource: Dict[str, Any], schema: Optional[ResourceSchema] = None) -> bool:
        return evaluate(resource, self, schema)

    def __str__(self):
        return serialize_filter(self)


@dataclass(frozen=True)
class AttributePath:
    """``[uri ":"] attribute ["[" value_filter "]"] ["." sub_attribute]``

    ``attribute`` is ``None`` only when the path names a whole extension
    schema object (``urn:...:enterprise:2.0:User``).
    """

    attribute: Optional[str]
    sub_attribute: Optional[str] = None
    uri: Optional[str] = None
    value_filter: Optional[Filter] = None

    def __str__(self):
        if self.attribute is None:
            return self.uri or ""
        text = f"{self.uri}:{self.attribute}" if self.uri else self.attribute
        if self.value_filter is not None:
            text += f"[{serialize_filter(self.value_filter)}]"
        if self.sub_attribute:
            text += f".{self.sub_attribute}"
        return text


@dataclass(frozen=True)
class Comparison(Filter):
    path: AttributePath
    op: CompareOp
    value: Any


@dataclass(frozen=True)
class Presence(Filter):
    path: AttributePath


@dataclass(frozen=True)
class And(Filter):
    left: Filter
    right: Filter


@dataclass(frozen=True)
class Or(Filter):
    left: Filter
    right: Filter


@dataclass(frozen=True)
class Not(Filter):
    expr: Filter


@dataclass(frozen=True)
class Group(Filter):
    expr: Filter


@dataclass(frozen=True)
class ValuePath(Filter):
    """``attr[expr]``: true when some element of ``attr`` satisfies ``expr``."""

    path: AttributePath
    expr: Filter


def operands(expr: Filter) -> List[Filter]:
    """Flatten a run of ``And`` (or ``Or``) nodes into its operands, left to right.

    The parser builds ``a or b or c`` as ``Or(Or(a, b), c)``.  The walk is
    iterative so chains of thousands of terms evaluate and serialize.
    """
    if not isinstance(expr, (And, Or)):
        return [expr]
    kind = type(expr)
    found: List[Filter] = []
    stack = [expr]
    while stack:
        node = stack.pop()
        if type(node) is kind:
            stack.append(node.right)
            stack.append(node.left)
        else:
            found.append(node)
    return found


# -- Tokenizer --------------------------------------------------------------

_TOKEN_RE = re.compile(r"""
    (?P<ws>\s+)
  | (?P<lparen>\()
  | (?P<rparen>\))
  | (?P<lbracket>\[)
  | (?P<rbracket>\])
  | (?P<string>"(?:[^"\\]|\\.)*")
  | (?P<number>-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
  | (?P<subattr>\.[A-Za-z_$][\w$-]*)
  | (?P<word>[A-Za-z_$][\w$.:-]*)
""", re.VERBOSE)

_NAME_RE = re.compile(r"^[A-Za-z_$][\w$-]*$")


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int


def tokenize(text: str) -> List[Token]:
    """Split filter text into tokens, ending with an ``eof`` token."""
    tokens = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            if text[pos] == '"':
                raise InvalidFilter("Unterminated string literal", pos, text[pos:pos + 20])
            raise InvalidFilter("Unexpected character", pos, text[pos])
        kind = match.lastgroup
        if kind != "ws":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    tokens.append(Token("eof", "", len(text)))
    return tokens


def split_attr_path(text: str, position: int = 0) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Split ``[uri:]attr[.sub]`` into ``(uri, attr, sub)``.

    The schema URI ends at the last ``:``.  A bare schema URN known to the
    registry yields ``(uri, None, None)``.
    """
    uri = None
    rest = text
    if ":" in text:
        if get_schema(text) is not None:
            return text, None, None
        uri, _, rest = text.rpartition(":")
    parts = rest.split(".")
    if len(parts) > 2 or not all(_NAME_RE.match(p) for p in parts):
        raise InvalidFilter("Invalid attribute path", position, text)
    return uri, parts[0], parts[1] if len(parts) == 2 else None


# -- Parser -----------------------------------------------------------------

_LITERALS = {"true": True, "false": False, "null": None}


class FilterParser:
    """Recursive-descent parser over the token list.

    ``filter``  := or_expr
    ``or_expr`` := and_expr ("or" and_expr)*
    ``and_expr``:= not_expr ("and" not_expr)*
    ``not_expr``:= "not" not_expr | atom
    ``atom``    := "(" filter ")" | path "[" filter "]" | path "pr" | path op literal
    """

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0
        self._in_value_filter = False

    # -- Token helpers -------------------------------------------------------

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != "eof":
            self.pos += 1
        return token

    def _is_keyword(self, word: str) -> bool:
        return self.current.kind == "word" and self.current.text.lower() == word

    def _error(self, message: str, token: Optional[Token] = None) -> InvalidFilter:
        token = token or self.current
        return InvalidFilter(message, token.position, token.text or "<end of input>")

    def _expect(self, kind: str, what: str) -> Token:
        if self.current.kind != kind:
            raise self._error(f"Expected {what}")
        return self._advance()

    # -- Grammar -------------------------------------------------------------

    def parse(self) -> Filter:
        if self.current.kind == "eof":
            raise InvalidFilter("Empty filter", 0, "")
        expr = self._or_expr()
        if self.current.kind != "eof":
            raise self._error("Unexpected token")
        return expr

    def parse_path(self) -> AttributePath:
        """Parse a PATCH-style path: ``attr[filter].sub`` with optional parts."""
        if self.current.kind == "eof":
            raise InvalidFilter("Empty path", 0, "")
        path = self._attr_path()
        if self.current.kind == "lbracket":
            if path.sub_attribute is not None or path.attribute is None:
                raise self._error("Value filter must directly follow an attribute name")
            expr = self._value_filter()
            sub = None
            if self.current.kind == "subattr":
                sub = self._advance().text[1:]
            path = AttributePath(path.attribute, sub, path.uri, expr)
        if self.current.kind != "eof":
            raise self._error("Unexpected token")
        return path

    def _or_expr(self) -> Filter:
        left = self._and_expr()
        while self._is_keyword("or"):
            self._advance()
            left = Or(left, self._and_expr())
        return left

    def _and_expr(self) -> Filter:
        left = self._not_expr()
        while self._is_keyword("and"):
            self._advance()
            left = And(left, self._not_expr())
        return left

    def _not_expr(self) -> Filter:
        if self._is_keyword("not"):
            self._advance()
            return Not(self._not_expr())
        return self._atom()

    def _atom(self) -> Filter:
        token = self.current
        if token.kind == "lparen":
            self._advance()
            expr = self._or_expr()
            self._expect("rparen", "')'")
            return Group(expr)
        if token.kind != "word":
            raise self._error("Expected attribute path or '('")

        path = self._attr_path()
        if self.current.kind == "lbracket":
            if self._in_value_filter:
                raise self._error("Nested value filters are not allowed")
            if path.sub_attribute is not None or path.attribute is None:
                raise self._error("Value filter must directly follow an attribute name")
            return ValuePath(path, self._value_filter())

        if path.attribute is None:
            raise self._error("Schema URI is not an attribute", token)

        op_token = self.current
        if op_token.kind != "word":
            raise self._error("Expected operator")
        op_text = op_token.text.lower()
        if op_text == "pr":
            self._advance()
            return Presence(path)
        try:
            op = CompareOp(op_text)
        except ValueError:
            raise self._error(f"Unknown operator {op_token.text!r}") from None
        self._advance()
        return Comparison(path, op, self._literal())

    def _attr_path(self) -> AttributePath:
        token = self._expect("word", "attribute path")
        uri, attr, sub = split_attr_path(token.text, token.position)
        return AttributePath(attr, sub, uri)

    def _value_filter(self) -> Filter:
        self._expect("lbracket", "'['")
        if self.current.kind == "rbracket":
            raise self._error("Empty value filter")
        self._in_value_filter = True
        try:
            expr = self._or_expr()
        finally:
            self._in_value_filter = False
        self._expect("rbracket", "']'")
        return expr

    def _literal(self) -> Any:
        token = self.current
        if token.kind == "string":
            self._advance()
            try:
                return json.loads(token.text)
            except ValueError:
                raise self._error("Invalid string literal", token) from None
        if token.kind == "number":
            self._advance()
            text = token.text
            if any(c in text for c in ".eE"):
                return float(text)
            return int(text)
        if token.kind == "word" and token.text.lower() in _LITERALS:
            self._advance()
            return _LITERALS[token.text.lower()]
        raise self._error("Expected comparison value")


def parse_filter(text: str) -> Filter:
    """Parse filter text.  Raises :class:`InvalidFilter` with the position
    and fragment where parsing failed."""
    try:
        return FilterParser(text).parse()
    except RecursionError:
        raise InvalidFilter("Filter is nested too deeply") from None


# -- Serialization ----------------------------------------------------------

def serialize_filter(expr: Filter) -> str:
    """Render a filter tree as canonical filter text.

    Keywords come out lowercase and literals JSON-encoded, so
    ``parse_filter(serialize_filter(f)) == f`` for any parsed ``f``.
    """
    if isinstance(expr, Comparison):
        return f"{expr.path} {expr.op.value} {json.dumps(expr.value)}"
    if isinstance(expr, Presence):
        return f"{expr.path} pr"
    if isinstance(expr, And):
        return " and ".join(_operand(e, Or) for e in operands(expr))
    if isinstance(expr, Or):
        return " or ".join(serialize_filter(e) for e in operands(expr))
    if isinstance(expr, Not):
        return f"not {_operand(expr.expr, (And, Or))}"
    if isinstance(expr, Group):
        return f"({serialize_filter(expr.expr)})"
    if isinstance(expr, ValuePath):
        return f"{expr.path}[{serialize_filter(expr.expr)}]"
    raise TypeError(f"Not a filter node: {expr!r}")


def _operand(expr: Filter, needs_parens) -> str:
    text = serialize_filter(expr)
    if isinstance(expr, needs_parens):
        return f"({text})"
    return text


# -- Evaluation -------------------------------------------------------------

_DATETIME_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"(?:[Tt ]\d{2}:\d{2}(?::\d{2}(?:\.(\d+))?)?)?"
    r"(Z|z|[+-]\d{2}:?\d{2})?$"
)


def parse_datetime(value: str) -> Optional[datetime]:
    """Parse an RFC 3339 / ISO-8601 timestamp; naive values are taken as UTC.

    Returns ``None`` for anything that does not look like a timestamp.
    """
    match = _DATETIME_RE.match(value)
    if match is None:
        return None
    text = value
    fraction = match.group(1)
    if fraction is not None and len(fraction) != 6:
        text = text.replace("." + fraction, "." + fraction[:6].ljust(6, "0"), 1)
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def compare_values(a: Any, b: Any, case_exact: bool = True) -> Optional[int]:
    """Three-way compare two attribute values.

    Numbers compare numerically, timestamps chronologically and other
    strings lexicographically (case-folded unless ``case_exact``).
    Returns ``None`` when the values are not mutually ordered, e.g. a
    string against a number, or booleans.
    """
    if _is_number(a) and _is_number(b):
        return (a > b) - (a < b)
    if isinstance(a, str) and isinstance(b, str):
        da, db = parse_datetime(a), parse_datetime(b)
        if da is not None and db is not None:
            return (da > db) - (da < db)
        if not case_exact:
            a, b = a.casefold(), b.casefold()
        return (a > b) - (a < b)
    return None


def values_equal(a: Any, b: Any, case_exact: bool = True) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if _is_number(a) and _is_number(b):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return compare_values(a, b, case_exact) == 0
    if isinstance(a, dict) and isinstance(b, dict):
        return a == b
    return False


def is_core_uri(resource: Dict[str, Any], uri: str) -> bool:
    """True if ``uri`` names the resource's core schema rather than an extension.

    Core attributes live at the top level of the resource; extension
    attributes live inside an object keyed by the extension URN.
    """
    schema = get_schema(uri)
    if schema is not None:
        return "endpoint" in schema
    schemas = resource.get("schemas") or []
    return bool(schemas) and isinstance(schemas[0], str) and schemas[0].lower() == uri.lower()


def attribute_values(resource: Dict[str, Any], path: AttributePath) -> List[Any]:
    """Collect the values a simple ``[uri:]attr[.sub]`` path selects.

    Multi-valued attributes contribute one entry per element; absent
    values are dropped.  ``path.value_filter`` is ignored here.
    """
    container = resource
    if path.uri is not None:
        extension = get_attr(resource, path.uri)
        if isinstance(extension, dict):
            container = extension
        elif not is_core_uri(resource, path.uri):
            return []
    if path.attribute is None:
        return [container] if container is not resource else []

    value = get_attr(container, path.attribute)
    items = value if isinstance(value, list) else [value]
    if path.sub_attribute is None:
        return [item for item in items if item is not None]
    found = []
    for item in items:
        if isinstance(item, dict):
            sub = get_attr(item, path.sub_attribute)
            if isinstance(sub, list):
                found.extend(v for v in sub if v is not None)
            elif sub is not None:
                found.append(sub)
    return found


class FilterEvaluator:
    """Evaluates filter trees against resources.

    ``parent`` and ``parent_uri`` are set when evaluating the inner filter of
    a value path, so that schema lookups for ``type`` inside
    ``emails[type eq "work"]`` resolve to ``emails.type``.
    """

    def __init__(self, schema: Optional[ResourceSchema] = None,
                 parent: Optional[str] = None, parent_uri: Optional[str] = None):
        self.schema = schema
        self.parent = parent
        self.parent_uri = parent_uri

    def evaluate(self, resource: Dict[str, Any], expr: Filter) -> bool:
        if isinstance(expr, And):
            return all(self.evaluate(resource, e) for e in operands(expr))
        if isinstance(expr, Or):
            return any(self.evaluate(resource, e) for e in operands(expr))
        if isinstance(expr, Not):
            return not self.evaluate(resource, expr.expr)
        if isinstance(expr, Group):
            return self.evaluate(resource, expr.expr)
        if isinstance(expr, Presence):
            return any(has_value(v) for v in attribute_values(resource, expr.path))
        if isinstance(expr, Comparison):
            return self._compare(resource, expr)
        if isinstance(expr, ValuePath):
            return self._value_path(resource, expr)
        raise TypeError(f"Not a filter node: {expr!r}")

    def case_exact(self, path: AttributePath, sub: Optional[str] = None) -> bool:
        if self.schema is None:
            return True
        if self.parent is not None:
            return self.schema.is_case_exact(self.parent, path.attribute, self.parent_uri)
        return self.schema.is_case_exact(path.attribute, sub or path.sub_attribute, path.uri)

    def _compare(self, resource: Dict[str, Any], expr: Comparison) -> bool:
        values = [v for v in attribute_values(resource, expr.path) if has_value(v)]
        sub = None
        if values and all(isinstance(v, dict) for v in values):
            # Comparing a complex attribute directly means comparing its "value"
            values = [get_attr(v, "value") for v in values]
            values = [v for v in values if v is not None]
            sub = "value"

        if expr.value is None:
            if expr.op == CompareOp.EQ:
                return not values
            if expr.op == CompareOp.NE:
                return bool(values)
            return False

        case_exact = self.case_exact(expr.path, sub)
        if expr.op == CompareOp.NE:
            return not any(values_equal(v, expr.value, case_exact) for v in values)
        return any(self._test(expr.op, v, expr.value, case_exact) for v in values)

    @staticmethod
    def _test(op: CompareOp, actual: Any, expected: Any, case_exact: bool) -> bool:
        if op == CompareOp.EQ:
            return values_equal(actual, expected, case_exact)
        if op in (CompareOp.CO, CompareOp.SW, CompareOp.EW):
            if not (isinstance(actual, str) and isinstance(expected, str)):
                return False
            if not case_exact:
                actual, expected = actual.casefold(), expected.casefold()
            if op == CompareOp.CO:
                return expected in actual
            if op == CompareOp.SW:
                return actual.startswith(expected)
            return actual.endswith(expected)

        order = compare_values(actual, expected, case_exact)
        if order is None:
            return False
        if op == CompareOp.GT:
            return order > 0
        if op == CompareOp.GE:
            return order >= 0
        if op == CompareOp.LT:
            return order < 0
        return order <= 0

    def _value_path(self, resource: Dict[str, Any], expr: ValuePath) -> bool:
        elements = [e for e in attribute_values(resource, expr.path) if isinstance(e, dict)]
        inner = FilterEvaluator(self.schema, expr.path.attribute, expr.path.uri)
        return any(inner.evaluate(element, expr.expr) for element in elements)


def evaluate(resource: Dict[str, Any], expr: Filter,
             schema: Optional[ResourceSchema] = None) -> bool:
    """Decide whether ``resource`` satisfies ``expr``.  Pure and deterministic."""
    return FilterEvaluator(schema).evaluate(resource, expr)


def filter_resources(resources, expr: Filter, schema: Optional[ResourceSchema] = None):
    """Return the resources in ``resources`` that satisfy ``expr``, in order."""
    evaluator = FilterEvaluator(schema)
    return [r for r in resources if evaluator.evaluate(r, expr)]
