"""
Recovers the signature transform plan from an obfuscated player script.

The script is never executed. Instead a few layered structural rules are
applied, each of which may fail on its own:

1. find the entry routine from known call shapes and read its body,
2. read the name of the helper object the entry routine calls into,
3. read the helper object literal and classify every member by the shape of
   its body (the member names themselves are meaningless),
4. walk the helper calls of the entry routine in order to build the plan.

A typical entry routine and helper object look like::

    Ly=function(a){a=a.split("");Xy.li(a,6);Xy.VP(a,48);Xy.eG(a,2);return a.join("")};
    var Xy={VP:function(a){a.reverse()},
    eG:function(a,b){a.splice(0,b)},
    li:function(a,b){var c=a[0];a[0]=a[b%a.length];a[b%a.length]=c}};
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sigflow.cipher.plan import TransformOp, TransformPlan
from sigflow.exceptions import EntryNotFound, HelperNotFound, ScanFailure, UnresolvedTransform
from sigflow.utils.text_scanner import find_object_from_startpoint

logger = logging.getLogger(__name__)

IDENTIFIER = r"[a-zA-Z_$][\w$]*"

ENTRY_FUNCTION_PATTERNS = [
    r"\b[cs]\s*&&\s*[adf]\.set\([^,]+\s*,\s*encodeURIComponent\s*\(\s*(?P<sig>[a-zA-Z0-9$]+)\(",
    r"\b[a-zA-Z0-9]+\s*&&\s*[a-zA-Z0-9]+\.set\([^,]+\s*,\s*encodeURIComponent\s*\(\s*(?P<sig>[a-zA-Z0-9$]+)\(",
    r'(?:\b|[^a-zA-Z0-9$])(?P<sig>[a-zA-Z0-9$]{2,})\s*=\s*function\(\s*a\s*\)\s*{\s*a\s*=\s*a\.split\(\s*""\s*\)',
    r'(?P<sig>[a-zA-Z0-9$]+)\s*=\s*function\(\s*(?P<arg>[a-zA-Z0-9$]+)\s*\)\s*{\s*(?P=arg)\s*=\s*(?P=arg)\.split\(\s*""\s*\)',
    r'function\s+(?P<sig>[a-zA-Z0-9$]+)\(\s*(?P<arg>[a-zA-Z0-9$]+)\s*\)\s*{\s*(?P=arg)\s*=\s*(?P=arg)\.split\(\s*""\s*\)',
    r"\.sig\|\|(?P<sig>[a-zA-Z0-9$]+)\(",
    r"\b[cs]\s*&&\s*[adf]\.set\([^,]+\s*,\s*(?P<sig>[a-zA-Z0-9$]+)\(",
    r"\bc\s*&&\s*a\.set\([^,]+\s*,\s*\([^)]*\)\s*\(\s*(?P<sig>[a-zA-Z0-9$]+)\(",
]

HELPER_MEMBER_PATTERN = re.compile(
    rf"(?P<name>{IDENTIFIER}|\"[^\"]*\"|'[^']*')\s*:\s*function\s*\((?P<params>[^)]*)\)\s*(?=\{{)"
)


@dataclass(frozen=True)
class EntryRoutine:
    name: str
    param: str
    body: str


@dataclass(frozen=True)
class TransformSignature:
    """
    Structural shape of a helper member body that performs one catalog operation.

    ``template`` is a regular expression over the normalized statements of the
    body joined with ``;``. ``{a}`` and ``{b}`` stand for the member's first and
    second parameter names.
    """

    operation: str
    statement_count: int
    template: str

    def matches(self, params: Sequence[str], statements: Sequence[str]) -> bool:
        if len(statements) != self.statement_count:
            return False
        if "{b}" in self.template and len(params) < 2:
            return False
        names = {"a": re.escape(params[0]) if params else "", "b": re.escape(params[1]) if len(params) > 1 else ""}
        pattern = self.template.replace("{a}", names["a"]).replace("{b}", names["b"])
        return re.fullmatch(pattern, ";".join(statements)) is not None


TRANSFORM_SIGNATURES: List[TransformSignature] = [
    TransformSignature("reverse", 1, r"(?:return )?{a}\.reverse\(\)"),
    TransformSignature("splice", 1, r"(?:return )?{a}\.splice\(0,{b}\)"),
    TransformSignature(
        "swap",
        3,
        r"var (?P<tmp>[\w$]+)={a}\[0\];{a}\[0\]={a}\[{b}%{a}\.length\];{a}\[{b}%{a}\.length\]=(?P=tmp)",
    ),
    TransformSignature(
        "swap",
        3,
        r"var (?P<tmp>[\w$]+)={a}\[0\];{a}\[0\]={a}\[{b}%{a}\.length\];{a}\[{b}\]=(?P=tmp)",
    ),
]


def split_statements(body: str) -> List[str]:
    """Split a function body into whitespace-normalized statements."""
    inner = body.strip()
    if inner.startswith("{") and inner.endswith("}"):
        inner = inner[1:-1]
    statements = []
    for statement in inner.split(";"):
        statement = re.sub(r"\s+", " ", statement).strip()
        statement = re.sub(r"\s*([^\w$\s])\s*", r"\1", statement)
        if statement:
            statements.append(statement)
    return statements


class PlanExtractor:
    """Builds a ``TransformPlan`` from player script text."""

    def __init__(
        self,
        signatures: Sequence[TransformSignature] = TRANSFORM_SIGNATURES,
        entry_patterns: Sequence[str] = ENTRY_FUNCTION_PATTERNS,
    ):
        self.signatures = list(signatures)
        self.entry_patterns = list(entry_patterns)

    def extract(self, js: str) -> TransformPlan:
        entry = self.find_entry(js)
        helper = self.find_helper_name(entry)
        members = self.find_helper_members(js, helper)
        plan = self.build_plan(entry, helper, members)
        logger.debug(f"Transform plan for {entry.name}: {plan}")
        return plan

    def find_entry(self, js: str) -> EntryRoutine:
        """Locate the signature entry routine and read its body."""
        tried = []
        for pattern in self.entry_patterns:
            for match in re.finditer(pattern, js):
                name = match.group("sig")
                if name in tried:
                    continue
                tried.append(name)
                entry = self._read_function(js, name)
                if entry:
                    logger.debug(f"Signature entry routine: {name} (pattern {pattern!r})")
                    return entry
        if tried:
            raise EntryNotFound(f"Candidate entry routines {tried} have no readable definition")
        raise EntryNotFound("No signature entry routine matched the known call shapes")

    @staticmethod
    def _read_function(js: str, name: str) -> Optional[EntryRoutine]:
        escaped = re.escape(name)
        definition = re.compile(
            rf"(?:function\s+{escaped}|(?<![\w$.]){escaped}\s*=\s*function)\s*\(\s*(?P<param>{IDENTIFIER})\s*\)\s*(?=\{{)"
        )
        for match in definition.finditer(js):
            try:
                body = find_object_from_startpoint(js, match.end())
            except ScanFailure as e:
                logger.debug(f"Definition of {name} at {match.start()} is not scannable: {e}")
                continue
            return EntryRoutine(name=name, param=match.group("param"), body=body)
        return None

    @staticmethod
    def _call_pattern(param: str) -> re.Pattern:
        return re.compile(
            rf"(?<![\w$.])(?P<obj>{IDENTIFIER})\s*"
            rf"(?:\.\s*(?P<member>{IDENTIFIER})|\[\s*([\"'])(?P<quoted>[^\"']+)\3\s*\])"
            rf"\s*\(\s*{re.escape(param)}\s*(?:,\s*(?P<arg>-?\d+)\s*)?\)"
        )

    def _iter_calls(self, entry: EntryRoutine):
        for match in self._call_pattern(entry.param).finditer(entry.body):
            if match.group("obj") == entry.param:
                continue
            member = match.group("member") or match.group("quoted")
            arg = match.group("arg")
            yield match.group("obj"), member, int(arg) if arg is not None else None

    def find_helper_name(self, entry: EntryRoutine) -> str:
        for obj, _, _ in self._iter_calls(entry):
            return obj
        raise HelperNotFound(f"Entry routine {entry.name} calls no helper object")

    def find_helper_members(self, js: str, helper: str) -> Dict[str, Optional[str]]:
        """
        Read the helper object literal and classify each of its members.

        Returns:
            Dict[str, Optional[str]]: Member name to catalog operation, or None
            when the member body matches no known shape.
        """
        definition = re.compile(rf"(?<![\w$.]){re.escape(helper)}\s*=\s*(?=\{{)")
        literal = None
        for match in definition.finditer(js):
            try:
                literal = find_object_from_startpoint(js, match.end())
                break
            except ScanFailure as e:
                logger.debug(f"Helper {helper} at {match.start()} is not scannable: {e}")
        if literal is None:
            raise HelperNotFound(f"Helper object {helper} has no readable definition")

        members = {}
        for name, params, body in self._iter_members(literal):
            members[name] = self.classify(params, body)
            if members[name] is None:
                logger.debug(f"Helper member {helper}.{name} matches no transform shape: {body}")
        return members

    @staticmethod
    def _iter_members(literal: str):
        position = 1
        while True:
            match = HELPER_MEMBER_PATTERN.search(literal, position)
            if not match:
                return
            try:
                body = find_object_from_startpoint(literal, match.end())
            except ScanFailure:
                return
            name = match.group("name").strip("\"'")
            params = [p.strip() for p in match.group("params").split(",") if p.strip()]
            yield name, params, body
            position = match.end() + len(body)

    def classify(self, params: Sequence[str], body: str) -> Optional[str]:
        statements = split_statements(body)
        for signature in self.signatures:
            if signature.matches(params, statements):
                return signature.operation
        return None

    def build_plan(self, entry: EntryRoutine, helper: str, members: Dict[str, Optional[str]]) -> TransformPlan:
        ops: List[TransformOp] = []
        for obj, member, arg in self._iter_calls(entry):
            if obj != helper:
                logger.debug(f"Skipping call to {obj}.{member} outside helper {helper}")
                continue
            if member not in members:
                raise UnresolvedTransform(f"{helper}.{member} is called but not defined on the helper object")
            operation = members[member]
            if operation is None:
                raise UnresolvedTransform(f"{helper}.{member} matches no known transform shape")
            ops.append(TransformOp(operation, arg))
        if not ops:
            raise HelperNotFound(f"Entry routine {entry.name} makes no calls into {helper}")
        return TransformPlan(tuple(ops))


def extract_transform_plan(js: str) -> TransformPlan:
    return PlanExtractor().extract(js)
