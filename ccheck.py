#!/usr/bin/env python3
"""
ccheck - Conformance checking for C coding standards

High-level goals:
- Scan C sources into a positional token stream that survives malformed input
- Recover just enough structure (guards, includes, macros, functions,
  initializers, typedefs) with bounded brace/paren heuristics
- Evaluate a closed set of style rules per file, independently and in parallel
- Emit stable, greppable diagnostics with CI-friendly exit codes

The checker deliberately does not parse C. Everything it knows about a file
comes from token windows and bracket depth, so it keeps working on code that
does not compile yet.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Tuple, Iterable, Iterator, Mapping, Sequence, Set, Union, Any
import argparse
import concurrent.futures
import fnmatch
import functools
import json
import os
import re
import sys
import threading
import time

import yaml


__version__ = "0.1.0"

DEFAULT_CONFIG_NAME = ".ccheck.yaml"

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130

SEVERITIES: Tuple[str, ...] = ("error", "warning", "info")
SEVERITY_RANK: Dict[str, int] = {"info": 0, "warning": 1, "error": 2}
OUTPUT_FORMATS: Tuple[str, ...] = ("text", "record", "json")

HEADER_EXTENSIONS: Tuple[str, ...] = (".h",)
DEFAULT_EXTENSIONS: Tuple[str, ...] = (".c", ".h")

INTERNAL_ERROR_ID = "internal-error"


class ConfigurationError(Exception):
    """Raised for invalid invocations: unknown rule ids, unreadable paths, bad config values."""


class RunCancelled(Exception):
    """Raised inside a per-file pipeline once the run-level cancellation token fires."""


# ============================================================
# ================= SOURCE LOCATION & TOKENS =================
# ============================================================

@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    column: int


@dataclass(frozen=True)
class Token:
    """
    One lexical token. Kinds:
    identifier, keyword, punctuation, number, string, char, header_name,
    comment, directive, whitespace, newline, error.

    `text` is the exact source text (after newline normalization), so a
    comment or error token may span several lines.
    """
    kind: str
    text: str
    file: str
    line: int
    column: int

    @property
    def location(self) -> SourceLocation:
        return SourceLocation(self.file, self.line, self.column)

    def end_position(self) -> Tuple[int, int]:
        """(line, column) just past the last character of the token."""
        newlines = self.text.count("\n")
        if not newlines:
            return self.line, self.column + len(self.text)
        return self.line + newlines, len(self.text) - self.text.rfind("\n")


# Whitespace, comments and unscannable text never take part in structure.
TRIVIA_KINDS = frozenset({"whitespace", "newline", "comment", "error"})

C_KEYWORDS = frozenset({
    "auto", "break", "case", "char", "const", "continue", "default", "do",
    "double", "else", "enum", "extern", "float", "for", "goto", "if",
    "inline", "int", "long", "register", "restrict", "return", "short",
    "signed", "sizeof", "static", "struct", "switch", "typedef", "union",
    "unsigned", "void", "volatile", "while",
    "_Alignas", "_Alignof", "_Atomic", "_Bool", "_Complex", "_Generic",
    "_Imaginary", "_Noreturn", "_Static_assert", "_Thread_local",
    "alignas", "alignof", "bool", "constexpr", "false", "nullptr",
    "static_assert", "thread_local", "true", "typeof", "typeof_unqual",
    "_BitInt", "_Decimal32", "_Decimal64", "_Decimal128",
})

_PUNCTUATORS = (
    "%:%:", "...", "<<=", ">>=",
    "->", "++", "--", "<<", ">>", "<=", ">=", "==", "!=", "&&", "||",
    "*=", "/=", "%=", "+=", "-=", "&=", "^=", "|=", "##",
    "<:", ":>", "<%", "%>", "%:",
    "[", "]", "(", ")", "{", "}", ".", "&", "*", "+", "-", "~", "!",
    "/", "%", "<", ">", "^", "|", "?", ":", ";", "=", ",", "#",
)

# Digraphs are kept verbatim in tokens; structure code compares canonical spellings.
_DIGRAPHS: Dict[str, str] = {
    "<%": "{", "%>": "}", "<:": "[", ":>": "]", "%:": "#", "%:%:": "##",
}

OPENERS = frozenset({"(", "[", "{"})
CLOSERS = frozenset({")", "]", "}"})
_PAIRS: Dict[str, str] = {"(": ")", "[": "]", "{": "}"}

_PUNCT_RE = re.compile("|".join(re.escape(p) for p in sorted(_PUNCTUATORS, key=len, reverse=True)))
_IDENT_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")
_NUMBER_RE = re.compile(r"\.?[0-9](?:[eEpP][+-]|['.\w])*")
_WHITESPACE_RE = re.compile(r"(?:[ \t\f\v]|\\\n)+")
_LITERAL_START_RE = re.compile(r"(?:u8|[uUL])?[\"']")
_DIRECTIVE_RE = re.compile(r"(?:#|%:)[ \t]*(?:[A-Za-z_]\w*)?")
_HEADER_NAME_RE = re.compile(r"<[^>\n]*>")
_MESSAGE_DIRECTIVES = ("error", "warning")


def canonical(text: str) -> str:
    return _DIGRAPHS.get(text, text)


def directive_name(token: Token) -> str:
    return token.text.lstrip("#%:").strip()


def decode_source(raw: bytes) -> str:
    """
    Decode file bytes for scanning. Invalid UTF-8 is replaced rather than
    rejected, a leading BOM is dropped, and CRLF / CR become LF so that line
    numbers agree with what editors show.
    """
    text = raw.decode("utf-8", errors="replace")
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.replace("\r\n", "\n").replace("\r", "\n")


# ============================================================
# ========================= SCANNER ==========================
# ============================================================

def _line_comment_end(text: str, start: int) -> int:
    # A backslash-newline splices the next physical line into the comment.
    pos = start
    while True:
        newline = text.find("\n", pos)
        if newline == -1:
            return len(text)
        if newline > start and text[newline - 1] == "\\":
            pos = newline + 1
            continue
        return newline


def _literal_end(text: str, quote_pos: int) -> Tuple[int, bool]:
    """Return (end, terminated) for the literal whose opening quote is at quote_pos."""
    quote = text[quote_pos]
    pos = quote_pos + 1
    size = len(text)
    while pos < size:
        ch = text[pos]
        if ch == "\\":
            pos += 2
            continue
        if ch == quote:
            return pos + 1, True
        if ch == "\n":
            return pos, False
        pos += 1
    return size, False


class _Scanner:
    def __init__(self, text: str, path: str) -> None:
        self.text = text
        self.path = path
        self.pos = 0
        self.line = 1
        self.column = 1

    def _take(self, kind: str, end: int) -> Token:
        chunk = self.text[self.pos:end]
        token = Token(kind, chunk, self.path, self.line, self.column)
        newlines = chunk.count("\n")
        if newlines:
            self.line += newlines
            self.column = len(chunk) - chunk.rfind("\n")
        else:
            self.column += len(chunk)
        self.pos = end
        return token

    def tokens(self) -> Iterator[Token]:
        text = self.text
        size = len(text)
        at_line_start = True
        directive: Optional[str] = None

        while self.pos < size:
            pos = self.pos
            ch = text[pos]

            if ch == "\n":
                yield self._take("newline", pos + 1)
                at_line_start = True
                directive = None
                continue

            match = _WHITESPACE_RE.match(text, pos)
            if match:
                yield self._take("whitespace", match.end())
                continue

            if text.startswith("/*", pos):
                close = text.find("*/", pos + 2)
                if close == -1:
                    yield self._take("error", size)
                else:
                    yield self._take("comment", close + 2)
                continue

            if text.startswith("//", pos):
                yield self._take("comment", _line_comment_end(text, pos))
                continue

            if at_line_start and (ch == "#" or text.startswith("%:", pos)):
                match = _DIRECTIVE_RE.match(text, pos)
                token = self._take("directive", match.end())
                directive = directive_name(token)
                at_line_start = False
                yield token
                continue

            at_line_start = False

            if ch == "<" and directive in ("include", "include_next", "import"):
                match = _HEADER_NAME_RE.match(text, pos)
                if match:
                    yield self._take("header_name", match.end())
                    continue

            match = _LITERAL_START_RE.match(text, pos)
            if match:
                quote_pos = match.end() - 1
                end, terminated = _literal_end(text, quote_pos)
                # prose in #error/#warning may hold a lone apostrophe
                if terminated or directive not in _MESSAGE_DIRECTIVES:
                    if not terminated:
                        kind = "error"
                    else:
                        kind = "string" if text[quote_pos] == '"' else "char"
                    yield self._take(kind, end)
                    continue

            match = _IDENT_RE.match(text, pos)
            if match:
                kind = "keyword" if match.group(0) in C_KEYWORDS else "identifier"
                yield self._take(kind, match.end())
                continue

            match = _NUMBER_RE.match(text, pos)
            if match:
                yield self._take("number", match.end())
                continue

            match = _PUNCT_RE.match(text, pos)
            yield self._take("punctuation", match.end() if match else pos + 1)


def scan(raw: Union[bytes, str], path: str = "<input>") -> Iterator[Token]:
    """
    Lazily tokenize C source text. Each call starts an independent scan.
    Malformed input never raises: unterminated comments and literals come out
    as `error` tokens and scanning carries on after them.
    """
    if isinstance(raw, (bytes, bytearray)):
        text = decode_source(bytes(raw))
    else:
        text = raw.replace("\r\n", "\n").replace("\r", "\n")
    yield from _Scanner(text, path).tokens()


def normalize_relative_path(path: str) -> str:
    parts = [part for part in path.replace("\\", "/").split("/") if part not in ("", ".")]
    while parts and parts[0] == "..":
        parts.pop(0)
    return "/".join(parts)


@dataclass
class SourceFile:
    """
    One input file: raw bytes plus the ordered token sequence scanned from them.
    `relative_path` is the project-relative spelling used to derive guard names.
    """
    path: str
    content: bytes
    relative_path: str = ""
    tokens: List[Token] = field(default_factory=list)

    @classmethod
    def from_bytes(cls, path: str, content: bytes, relative_path: Optional[str] = None) -> "SourceFile":
        rel = normalize_relative_path(relative_path if relative_path is not None else path)
        return cls(path=path, content=content, relative_path=rel, tokens=list(scan(content, path)))

    @classmethod
    def from_text(cls, path: str, text: str, relative_path: Optional[str] = None) -> "SourceFile":
        return cls.from_bytes(path, text.encode("utf-8"), relative_path)

    @functools.cached_property
    def text(self) -> str:
        return decode_source(self.content)

    @functools.cached_property
    def lines(self) -> List[str]:
        return self.text.split("\n")

    @property
    def is_header(self) -> bool:
        return os.path.splitext(self.path)[1].lower() in HEADER_EXTENSIONS

    def end_location(self) -> SourceLocation:
        return SourceLocation(self.path, len(self.lines), len(self.lines[-1]) + 1)


# ============================================================
# ==================== STRUCTURAL FACTS ======================
# ============================================================

@dataclass(frozen=True)
class DirectiveSpan:
    """
    A preprocessor line: the directive token through its terminating newline.
    `args` holds indices of the non-trivia tokens after the directive name.
    """
    name: str
    token_index: int
    end_index: int
    args: Tuple[int, ...]
    line: int
    column: int


@dataclass(frozen=True)
class HeaderGuard:
    macro_name: str
    define_name: Optional[str]
    start_line: int
    start_column: int
    name_line: int
    name_column: int
    ifndef_index: int
    define_index: Optional[int] = None
    endif_index: Optional[int] = None
    end_line: Optional[int] = None
    trailing_index: Optional[int] = None  # first token after the closing #endif


@dataclass(frozen=True)
class IncludeDirective:
    header_name: str
    is_system_header: bool
    line: int
    column: int
    token_index: int
    spelling: str
    in_conditional: bool = False


@dataclass(frozen=True)
class MacroDefinition:
    name: str
    is_function_like: bool
    params: Tuple[str, ...]
    is_variadic: bool
    body: Tuple[int, ...]  # token indices of the replacement list
    line: int
    column: int
    token_index: int


@dataclass(frozen=True)
class FunctionDecl:
    name: str
    parameter_list: Tuple[str, ...]
    line: int
    column: int
    body_start_line: int
    body_end_line: int
    name_index: int
    body_start_index: int
    body_end_index: int


@dataclass(frozen=True)
class InitializerEntry:
    designated: bool
    field_name: Optional[str]
    line: int
    column: int
    token_index: int
    is_zero: bool = False


@dataclass(frozen=True)
class BraceInitializer:
    type_name: Optional[str]
    is_aggregate: bool
    line: int
    column: int
    open_index: int
    close_index: int
    entries: Tuple[InitializerEntry, ...] = ()


@dataclass(frozen=True)
class TypedefDecl:
    name: str
    tag_kind: Optional[str]  # "struct", "union", "enum" or None
    tag_name: Optional[str]
    has_body: bool
    is_pointer: bool
    is_function_pointer: bool
    line: int
    column: int
    token_index: int
    declarator_index: int = 0


@dataclass(frozen=True)
class StructuralAmbiguity:
    line: int
    column: int
    message: str


@dataclass
class FileFacts:
    """
    Everything the structural pass recovered for one file. Facts point back
    into SourceFile.tokens by index and live exactly as long as the file.
    """
    directives: List[DirectiveSpan] = field(default_factory=list)
    code_indices: List[int] = field(default_factory=list)
    header_guard: Optional[HeaderGuard] = None
    includes: List[IncludeDirective] = field(default_factory=list)
    macros: List[MacroDefinition] = field(default_factory=list)
    functions: List[FunctionDecl] = field(default_factory=list)
    initializers: List[BraceInitializer] = field(default_factory=list)
    typedefs: List[TypedefDecl] = field(default_factory=list)
    ambiguities: List[StructuralAmbiguity] = field(default_factory=list)


# ============================================================
# ==================== STRUCTURAL PARSER =====================
# ============================================================

_CONDITIONAL_OPENERS = ("if", "ifdef", "ifndef")
_CONDITIONAL_BRANCHES = ("elif", "else", "elifdef", "elifndef")
_TAG_KEYWORDS = ("struct", "union", "enum")
_TYPE_QUALIFIERS = ("const", "volatile", "restrict", "_Atomic")


def pair_brackets(texts: Sequence[str]) -> Dict[int, int]:
    """
    Match brackets in a flat sequence, both directions. Mismatched closers are
    ignored; this is only used on short token windows such as macro bodies.
    """
    pairs: Dict[int, int] = {}
    stack: List[int] = []
    for index, text in enumerate(texts):
        if text in OPENERS:
            stack.append(index)
        elif text in CLOSERS:
            for depth in range(len(stack) - 1, -1, -1):
                if _PAIRS[texts[stack[depth]]] == text:
                    opener = stack[depth]
                    del stack[depth:]
                    pairs[opener] = index
                    pairs[index] = opener
                    break
    return pairs


def nesting_depths(texts: Sequence[str]) -> List[int]:
    depths: List[int] = []
    depth = 0
    for text in texts:
        if text in CLOSERS:
            depth = max(0, depth - 1)
        depths.append(depth)
        if text in OPENERS:
            depth += 1
    return depths


class _StructureParser:
    def __init__(self, source: SourceFile) -> None:
        self.source = source
        self.tokens = source.tokens
        self.facts = FileFacts()
        self.code: List[int] = []
        self.match: Dict[int, int] = {}
        self.transparent: Set[int] = set()
        self.brace_depth: List[int] = []
        self.paren_depth: List[int] = []
        self._conditional_depth: Dict[int, int] = {}
        self._closers: Dict[int, int] = {}
        self._aggregate_typedefs: Set[str] = set()

    def run(self) -> FileFacts:
        stages = (
            ("directives", self._split_directives),
            ("conditionals", self._scan_conditionals),
            ("header guard", self._find_header_guard),
            ("includes", self._collect_includes),
            ("macros", self._collect_macros),
            ("brackets", self._match_brackets),
            ("typedefs", self._collect_typedefs),
            ("functions", self._collect_functions),
            ("initializers", self._collect_initializers),
        )
        for label, stage in stages:
            try:
                stage()
            except Exception as exc:  # pragma: no cover - safeguard
                self._ambiguous(1, 1, f"could not analyze {label}: {exc}")
        return self.facts

    # --- helpers -------------------------------------------------------

    def _tok(self, pos: int) -> Token:
        return self.tokens[self.code[pos]]

    def _text(self, pos: int) -> str:
        token = self.tokens[self.code[pos]]
        return canonical(token.text) if token.kind == "punctuation" else token.text

    def _ambiguous(self, line: int, column: int, message: str) -> None:
        self.facts.ambiguities.append(StructuralAmbiguity(line, column, message))

    def _first_significant(self, start: int) -> Optional[int]:
        for index in range(start, len(self.tokens)):
            if self.tokens[index].kind not in TRIVIA_KINDS:
                return index
        return None

    # --- preprocessor --------------------------------------------------

    def _split_directives(self) -> None:
        tokens = self.tokens
        index = 0
        while index < len(tokens):
            token = tokens[index]
            if token.kind == "directive":
                end = index + 1
                while end < len(tokens) and tokens[end].kind != "newline":
                    end += 1
                args = tuple(k for k in range(index + 1, end) if tokens[k].kind not in TRIVIA_KINDS)
                self.facts.directives.append(
                    DirectiveSpan(directive_name(token), index, end, args, token.line, token.column)
                )
                index = end
                continue
            if token.kind not in TRIVIA_KINDS:
                self.code.append(index)
            index += 1
        self.facts.code_indices = self.code

    def _guard_candidate(self) -> bool:
        directives = self.facts.directives
        if not directives or directives[0].name != "ifndef" or not directives[0].args:
            return False
        return self._first_significant(0) == directives[0].token_index

    def _scan_conditionals(self) -> None:
        guard = 0 if self._guard_candidate() else None
        stack: List[int] = []
        for position, directive in enumerate(self.facts.directives):
            self._conditional_depth[position] = sum(1 for opener in stack if opener != guard)
            if directive.name in _CONDITIONAL_OPENERS:
                stack.append(position)
            elif directive.name in _CONDITIONAL_BRANCHES:
                if not stack:
                    self._ambiguous(directive.line, directive.column,
                                    f"'#{directive.name}' without a matching '#if'")
            elif directive.name == "endif":
                if not stack:
                    self._ambiguous(directive.line, directive.column,
                                    "'#endif' without a matching conditional")
                else:
                    self._closers[stack.pop()] = position
        for position in stack:
            directive = self.facts.directives[position]
            self._ambiguous(directive.line, directive.column,
                            f"'#{directive.name}' is never closed by '#endif'")

    def _find_header_guard(self) -> None:
        if not self._guard_candidate():
            return
        directives = self.facts.directives
        ifndef = directives[0]
        name_token = self.tokens[ifndef.args[0]]
        if name_token.kind not in ("identifier", "keyword"):
            return

        define_name: Optional[str] = None
        define_index: Optional[int] = None
        if len(directives) > 1 and directives[1].name == "define" and directives[1].args:
            between = self._first_significant(ifndef.end_index)
            if between == directives[1].token_index:
                define_name = self.tokens[directives[1].args[0]].text
                define_index = directives[1].token_index

        endif_index: Optional[int] = None
        end_line: Optional[int] = None
        trailing_index: Optional[int] = None
        closer = self._closers.get(0)
        if closer is not None:
            endif = directives[closer]
            endif_index = endif.token_index
            end_line = endif.line
            trailing_index = self._first_significant(endif.end_index)

        self.facts.header_guard = HeaderGuard(
            macro_name=name_token.text,
            define_name=define_name,
            start_line=ifndef.line,
            start_column=ifndef.column,
            name_line=name_token.line,
            name_column=name_token.column,
            ifndef_index=ifndef.token_index,
            define_index=define_index,
            endif_index=endif_index,
            end_line=end_line,
            trailing_index=trailing_index,
        )

    def _collect_includes(self) -> None:
        for position, directive in enumerate(self.facts.directives):
            if directive.name not in ("include", "include_next", "import") or not directive.args:
                continue
            argument = self.tokens[directive.args[0]]
            if argument.kind == "header_name":
                system = True
            elif argument.kind == "string" and argument.text.startswith('"'):
                system = False
            else:
                # '#include MACRO' cannot be classified without expansion.
                continue
            self.facts.includes.append(IncludeDirective(
                header_name=argument.text[1:-1].strip(),
                is_system_header=system,
                line=directive.line,
                column=directive.column,
                token_index=directive.token_index,
                spelling=argument.text,
                in_conditional=self._conditional_depth.get(position, 0) > 0,
            ))

    def _collect_macros(self) -> None:
        tokens = self.tokens
        for directive in self.facts.directives:
            if directive.name != "define" or not directive.args:
                continue
            name_index = directive.args[0]
            name_token = tokens[name_index]
            if name_token.kind not in ("identifier", "keyword"):
                continue
            rest = directive.args[1:]
            follower = tokens[name_index + 1] if name_index + 1 < len(tokens) else None
            function_like = (
                follower is not None
                and follower.kind == "punctuation"
                and follower.text == "("
            )

            params: List[str] = []
            variadic = False
            body = rest
            if function_like:
                cursor = 1
                closed = False
                while cursor < len(rest):
                    token = tokens[rest[cursor]]
                    if token.text == ")":
                        closed = True
                        cursor += 1
                        break
                    if token.text == "...":
                        variadic = True
                        previous = tokens[rest[cursor - 1]]
                        if previous.kind not in ("identifier", "keyword"):
                            params.append("__VA_ARGS__")
                    elif token.kind in ("identifier", "keyword"):
                        params.append(token.text)
                    cursor += 1
                if not closed:
                    self._ambiguous(directive.line, directive.column,
                                    f"parameter list of macro '{name_token.text}' is not closed")
                    continue
                body = rest[cursor:]

            self.facts.macros.append(MacroDefinition(
                name=name_token.text,
                is_function_like=function_like,
                params=tuple(params),
                is_variadic=variadic,
                body=tuple(body),
                line=directive.line,
                column=directive.column,
                token_index=directive.token_index,
            ))

    # --- code structure ------------------------------------------------

    def _match_brackets(self) -> None:
        stack: List[int] = []
        for pos in range(len(self.code)):
            text = self._text(pos)
            if self._tok(pos).kind != "punctuation":
                continue
            if text in OPENERS:
                stack.append(pos)
            elif text in CLOSERS:
                target = None
                for depth in range(len(stack) - 1, -1, -1):
                    if _PAIRS[self._text(stack[depth])] == text:
                        target = depth
                        break
                token = self._tok(pos)
                if target is None:
                    self._ambiguous(token.line, token.column, f"unmatched '{token.text}'")
                    continue
                for skipped in stack[target + 1:]:
                    opener = self._tok(skipped)
                    self._ambiguous(opener.line, opener.column, f"unclosed '{opener.text}'")
                opener_pos = stack[target]
                del stack[target:]
                self.match[opener_pos] = pos
                self.match[pos] = opener_pos
        for pos in stack:
            opener = self._tok(pos)
            self._ambiguous(opener.line, opener.column, f"unclosed '{opener.text}'")

        # extern "C" { ... } wraps declarations without opening a scope.
        for pos in range(2, len(self.code)):
            if (
                self._text(pos) == "{"
                and pos in self.match
                and self._tok(pos - 1).text == '"C"'
                and self._text(pos - 2) == "extern"
            ):
                self.transparent.add(pos)
                self.transparent.add(self.match[pos])

        brace = paren = 0
        for pos in range(len(self.code)):
            text = self._text(pos)
            matched = pos in self.match
            if matched and text in CLOSERS:
                if text == "}":
                    if pos not in self.transparent:
                        brace -= 1
                else:
                    paren -= 1
            self.brace_depth.append(brace)
            self.paren_depth.append(paren)
            if matched and text in OPENERS:
                if text == "{":
                    if pos not in self.transparent:
                        brace += 1
                else:
                    paren += 1

    def _collect_typedefs(self) -> None:
        code_len = len(self.code)
        for pos in range(code_len):
            if self._text(pos) != "typedef" or self._tok(pos).kind != "keyword":
                continue
            end = pos + 1
            while end < code_len:
                text = self._text(end)
                if text == "{" and end in self.match:
                    end = self.match[end] + 1
                    continue
                if text in (";", "}"):
                    break
                end += 1
            if end >= code_len or self._text(end) != ";":
                continue

            cursor = pos + 1
            while cursor < end and self._text(cursor) in _TYPE_QUALIFIERS:
                cursor += 1
            tag_kind: Optional[str] = None
            tag_name: Optional[str] = None
            has_body = False
            if cursor < end and self._text(cursor) in _TAG_KEYWORDS:
                tag_kind = self._text(cursor)
                cursor += 1
                cursor = self._skip_attributes(cursor, end)
                if cursor + 1 < end and self._tok(cursor).kind == "identifier":
                    tag_name = self._text(cursor)
                    cursor += 1
                if cursor < end and self._text(cursor) == "{" and cursor in self.match:
                    has_body = True
                    cursor = self.match[cursor] + 1
                declarators_start = cursor
            else:
                declarators_start = pos + 1

            for number, (start, stop) in enumerate(self._split_commas(declarators_start, end)):
                decl = self._parse_declarator(start, stop)
                if decl is None:
                    continue
                name_pos, is_pointer, is_function_pointer = decl
                name_token = self._tok(name_pos)
                typedef = TypedefDecl(
                    name=name_token.text,
                    tag_kind=tag_kind,
                    tag_name=tag_name,
                    has_body=has_body,
                    is_pointer=is_pointer,
                    is_function_pointer=is_function_pointer,
                    line=name_token.line,
                    column=name_token.column,
                    token_index=self.code[name_pos],
                    declarator_index=number,
                )
                self.facts.typedefs.append(typedef)
                if tag_kind in ("struct", "union") and not is_pointer and not is_function_pointer:
                    self._aggregate_typedefs.add(typedef.name)

    def _skip_attributes(self, cursor: int, end: int) -> int:
        while cursor < end and (
            self._text(cursor).startswith("__attribute")
            or self._text(cursor) in ("__declspec", "alignas", "_Alignas")
        ):
            if cursor + 1 < end and self._text(cursor + 1) == "(" and (cursor + 1) in self.match:
                cursor = self.match[cursor + 1] + 1
            else:
                cursor += 1
        return cursor

    def _split_commas(self, start: int, stop: int) -> List[Tuple[int, int]]:
        pieces: List[Tuple[int, int]] = []
        begin = start
        pos = start
        while pos < stop:
            text = self._text(pos)
            if text in OPENERS and pos in self.match and self.match[pos] < stop:
                pos = self.match[pos] + 1
                continue
            if text == ",":
                pieces.append((begin, pos))
                begin = pos + 1
            pos += 1
        pieces.append((begin, stop))
        return [(a, b) for a, b in pieces if a < b]

    def _parse_declarator(self, start: int, stop: int) -> Optional[Tuple[int, bool, bool]]:
        name_pos: Optional[int] = None
        is_pointer = False
        is_function_pointer = False
        pos = start
        while pos < stop:
            text = self._text(pos)
            token = self._tok(pos)
            if text in OPENERS and pos in self.match:
                close = self.match[pos]
                if text == "(" and pos + 1 < stop and self._text(pos + 1) in ("*", "^"):
                    inner = [p for p in range(pos + 1, close) if self._tok(p).kind == "identifier"]
                    if inner:
                        name_pos = inner[-1]
                        is_function_pointer = True
                pos = close + 1
                continue
            if text == "*":
                is_pointer = True
            elif token.kind == "identifier" and not text.startswith("__attribute"):
                if not is_function_pointer:
                    name_pos = pos
            pos += 1
        if name_pos is None:
            return None
        return name_pos, is_pointer and not is_function_pointer, is_function_pointer

    def _collect_functions(self) -> None:
        code_len = len(self.code)
        pos = 0
        while pos < code_len - 1:
            if (
                self.brace_depth[pos] == 0
                and self.paren_depth[pos] == 0
                and self._tok(pos).kind == "identifier"
                and self._text(pos + 1) == "("
                and (pos + 1) in self.match
            ):
                body = self._function_body_after(self.match[pos + 1] + 1)
                if body is not None:
                    self._record_function(pos, body)
                    pos = self.match[body] + 1
                    continue
            pos += 1

    def _function_body_after(self, cursor: int) -> Optional[int]:
        while cursor < len(self.code):
            text = self._text(cursor)
            if text == "{":
                return cursor if cursor in self.match else None
            if text in (";", "=", ",", ")", "}", "]") or text in _TAG_KEYWORDS:
                return None
            if text == "(" and cursor in self.match:
                # another call or declarator means the first one was a macro invocation
                callee = self._tok(cursor - 1)
                if callee.kind == "identifier" and not callee.text.startswith(("__attribute", "__declspec")):
                    return None
                cursor = self.match[cursor] + 1
                continue
            cursor += 1
        return None

    def _record_function(self, name_pos: int, body_pos: int) -> None:
        open_paren = name_pos + 1
        close_paren = self.match[open_paren]
        params = [
            " ".join(self._tok(p).text for p in range(a, b))
            for a, b in self._split_commas(open_paren + 1, close_paren)
        ]
        name_token = self._tok(name_pos)
        body_end = self.match[body_pos]
        self.facts.functions.append(FunctionDecl(
            name=name_token.text,
            parameter_list=tuple(params),
            line=name_token.line,
            column=name_token.column,
            body_start_line=self._tok(body_pos).line,
            body_end_line=self._tok(body_end).line,
            name_index=self.code[name_pos],
            body_start_index=self.code[body_pos],
            body_end_index=self.code[body_end],
        ))

    def _collect_initializers(self) -> None:
        for pos in range(1, len(self.code)):
            if self._text(pos) != "{" or pos not in self.match:
                continue
            previous = self._text(pos - 1)
            if previous == "=":
                classified = self._classify_declaration(self._declaration_before(pos - 1), has_declarator=True)
            elif previous == ")" and (pos - 1) in self.match:
                opener = self.match[pos - 1]
                if opener > 0 and self._tok(opener - 1).kind in ("identifier", "keyword") \
                        and self._text(opener - 1) not in ("return", "sizeof"):
                    continue
                classified = self._classify_declaration(list(range(opener + 1, pos - 1)), has_declarator=False)
                if classified[0] is None:
                    continue
            else:
                continue
            type_name, is_aggregate = classified
            token = self._tok(pos)
            self.facts.initializers.append(BraceInitializer(
                type_name=type_name,
                is_aggregate=is_aggregate,
                line=token.line,
                column=token.column,
                open_index=self.code[pos],
                close_index=self.code[self.match[pos]],
                entries=tuple(self._initializer_entries(pos, self.match[pos])),
            ))

    def _declaration_before(self, equals_pos: int) -> List[int]:
        pos = equals_pos - 1
        while pos >= 0:
            text = self._text(pos)
            if text in (")", "]") and pos in self.match:
                pos = self.match[pos] - 1
                continue
            if text in (";", "{", "}", ",", "(", "["):
                break
            pos -= 1
        return list(range(pos + 1, equals_pos))

    def _classify_declaration(self, positions: List[int], *, has_declarator: bool) -> Tuple[Optional[str], bool]:
        if not positions:
            return None, False
        texts = [self._text(p) for p in positions]
        if texts[0] in (".", "["):
            return None, False
        is_array = "[" in texts
        if "(" in texts:
            return None, False
        for offset, text in enumerate(texts):
            if text in ("struct", "union") and offset + 1 < len(texts):
                return f"{text} {texts[offset + 1]}", not is_array
        candidates = positions[:-1] if has_declarator else positions
        for pos in candidates:
            if self._tok(pos).kind == "identifier" and self._text(pos) in self._aggregate_typedefs:
                return self._text(pos), not is_array
        return None, False

    def _initializer_entries(self, open_pos: int, close_pos: int) -> List[InitializerEntry]:
        entries: List[InitializerEntry] = []
        start = open_pos + 1
        pos = start
        while pos <= close_pos:
            if pos == close_pos or self._text(pos) == ",":
                if start < pos:
                    entries.append(self._make_entry(start, pos))
                start = pos + 1
                pos += 1
                continue
            if self._text(pos) in OPENERS and pos in self.match and self.match[pos] < close_pos:
                pos = self.match[pos] + 1
                continue
            pos += 1
        return entries

    def _make_entry(self, start: int, stop: int) -> InitializerEntry:
        first = self._tok(start)
        text = self._text(start)
        designated = False
        field_name: Optional[str] = None
        if text == "." and start + 1 < stop and self._tok(start + 1).kind == "identifier":
            designated = True
            field_name = self._text(start + 1)
        elif text == "[":
            designated = True
        elif first.kind == "identifier" and start + 1 < stop and self._text(start + 1) == ":":
            # GNU 'field: value' designator
            designated = True
            field_name = text
        return InitializerEntry(
            designated=designated,
            field_name=field_name,
            line=first.line,
            column=first.column,
            token_index=self.code[start],
            is_zero=(stop - start == 1 and text == "0"),
        )


def extract_facts(source: SourceFile) -> FileFacts:
    """
    Recover header guards, includes, macros, function definitions, brace
    initializers and typedefs from a scanned file. Regions that cannot be
    read with confidence are reported as StructuralAmbiguity entries and the
    rest of the file is still analyzed.
    """
    return _StructureParser(source).run()


def disabled_regions(source: SourceFile, facts: FileFacts) -> List[Tuple[int, int]]:
    """
    Token index ranges [start, stop) of `#if 0` groups, each running to the
    matching `#elif`, `#else` or `#endif` (or end of file when unclosed).
    """
    regions: List[Tuple[int, int]] = []
    stack: List[Optional[int]] = []
    for directive in facts.directives:
        if directive.name in _CONDITIONAL_OPENERS:
            args = [source.tokens[index].text for index in directive.args]
            stack.append(directive.end_index if directive.name == "if" and args == ["0"] else None)
        elif directive.name in _CONDITIONAL_BRANCHES or directive.name == "endif":
            if not stack:
                continue
            if stack[-1] is not None:
                regions.append((stack[-1], directive.token_index))
            if directive.name == "endif":
                stack.pop()
            else:
                stack[-1] = None
    regions.extend((start, len(source.tokens)) for start in stack if start is not None)
    return regions


# ============================================================
# ======================== FINDINGS ==========================
# ============================================================

@dataclass(frozen=True)
class Finding:
    rule_id: str
    severity: str
    file: str
    line: int
    column: int
    message: str


def finding_sort_key(finding: Finding) -> Tuple[str, int, int, str, str, str]:
    return (finding.file, finding.line, finding.column, finding.rule_id, finding.message, finding.severity)


def sort_findings(findings: Iterable[Finding]) -> List[Finding]:
    """De-duplicate and order findings by (file, line, column, rule id)."""
    return sorted(set(findings), key=finding_sort_key)


# ============================================================
# ========================== RULES ===========================
# ============================================================

class Rule:
    """
    Base class for every checkable guideline.

    Subclasses set `id`, `description` and `finding_ids` and implement
    `evaluate`. A rule only reads the SourceFile and FileFacts it is given and
    keeps no per-file state, so one instance serves every worker thread.
    """
    id: str = ""
    description: str = ""
    finding_ids: Tuple[str, ...] = ()
    severity: str = "warning"

    def evaluate(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        raise NotImplementedError

    def finding(
        self,
        source: SourceFile,
        line: int,
        column: int,
        message: str,
        *,
        finding_id: Optional[str] = None,
        severity: Optional[str] = None,
    ) -> Finding:
        return Finding(
            rule_id=finding_id or self.id,
            severity=severity or self.severity,
            file=source.path,
            line=line,
            column=column,
            message=message,
        )


class LexErrorRule(Rule):
    id = "lex-error"
    description = "Text the scanner could not tokenize (unterminated comments or literals)."
    finding_ids = ("lex-error",)
    severity = "error"

    def evaluate(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        skipped = disabled_regions(source, facts)
        for index, token in enumerate(source.tokens):
            if token.kind != "error":
                continue
            comment = token.text.startswith("/*")
            if not comment and any(start <= index < stop for start, stop in skipped):
                continue
            if comment:
                line, column = token.end_position()
                yield self.finding(
                    source, line, column,
                    f"unterminated block comment (opened at line {token.line}, column {token.column})",
                )
            else:
                quote = next((ch for ch in token.text if ch in "\"'"), '"')
                what = "character constant" if quote == "'" else "string literal"
                yield self.finding(source, token.line, token.column, f"unterminated {what}")


class StructuralAmbiguityRule(Rule):
    id = "structural-ambiguity"
    description = "Regions whose structure could not be recovered with confidence."
    finding_ids = ("structural-ambiguity",)
    severity = "info"

    def evaluate(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        for ambiguity in facts.ambiguities:
            yield self.finding(
                source, ambiguity.line, ambiguity.column,
                f"could not analyze region: {ambiguity.message}",
            )


def guard_macro_for(relative_path: str) -> str:
    """foo/bar/baz.h -> FOO_BAR_BAZ_H_"""
    return re.sub(r"[^A-Za-z0-9]", "_", normalize_relative_path(relative_path)).upper() + "_"


class HeaderGuardRule(Rule):
    id = "header-guard"
    description = "Headers need an #ifndef/#define/#endif guard named after their path."
    finding_ids = ("header-guard-missing", "header-guard-name-mismatch", "header-guard-unbalanced")
    severity = "error"

    def evaluate(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        if not source.is_header:
            return
        expected = guard_macro_for(source.relative_path)
        guard = facts.header_guard
        if guard is None:
            yield self.finding(
                source, 1, 1,
                f"missing header guard; expected '#ifndef {expected}' / '#define {expected}'",
                finding_id="header-guard-missing",
            )
            return

        if guard.define_name != guard.macro_name:
            if guard.define_name is None:
                message = f"'#ifndef {guard.macro_name}' is not followed by '#define {guard.macro_name}'"
            else:
                message = f"'#ifndef {guard.macro_name}' is paired with '#define {guard.define_name}'"
            yield self.finding(source, guard.start_line, guard.start_column, message,
                               finding_id="header-guard-unbalanced")
            return

        if guard.endif_index is None:
            yield self.finding(
                source, guard.start_line, guard.start_column,
                f"header guard '{guard.macro_name}' is never closed by '#endif'",
                finding_id="header-guard-unbalanced",
            )
        elif guard.trailing_index is not None:
            trailing = source.tokens[guard.trailing_index]
            yield self.finding(
                source, trailing.line, trailing.column,
                f"code after the '#endif' closing header guard '{guard.macro_name}'",
                finding_id="header-guard-unbalanced",
            )

        if guard.macro_name != expected:
            yield self.finding(
                source, guard.name_line, guard.name_column,
                f"header guard '{guard.macro_name}' does not match the path-derived name '{expected}'",
                finding_id="header-guard-name-mismatch",
                severity="warning",
            )


def _macro_body(source: SourceFile, macro: MacroDefinition) -> List[Token]:
    return [source.tokens[index] for index in macro.body]


def _body_texts(body: Sequence[Token]) -> List[str]:
    return [canonical(token.text) if token.kind == "punctuation" else token.text for token in body]


_STATEMENT_STARTERS = frozenset({
    "do", "if", "for", "while", "switch", "return", "break", "continue", "goto", "{",
})
_EXPRESSION_KEYWORDS = frozenset({
    "sizeof", "_Alignof", "alignof", "_Generic", "true", "false", "nullptr",
})
_CHECKED_AFTER_KEYWORDS = frozenset({"return", "case", "sizeof"})


class MacroParenthesizationRule(Rule):
    id = "macro-parenthesization"
    description = "Function-like macro parameters and expression bodies must be parenthesized."
    finding_ids = ("macro-parenthesization",)
    severity = "warning"

    def evaluate(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        for macro in facts.macros:
            if not macro.is_function_like or len(macro.body) < 2:
                continue
            body = _macro_body(source, macro)
            texts = _body_texts(body)
            depths = nesting_depths(texts)
            params = set(macro.params)

            bare: List[str] = []
            for index, token in enumerate(body):
                if token.kind != "identifier" or token.text not in params:
                    continue
                if not self._is_guarded(body, texts, depths, index) and token.text not in bare:
                    bare.append(token.text)

            problems: List[str] = []
            if bare:
                names = ", ".join(f"'{name}'" for name in bare)
                problems.append(f"parameter(s) {names} not parenthesized")
            if self._needs_outer_parens(body, texts, depths):
                problems.append("expansion not wrapped in parentheses")
            if problems:
                yield self.finding(
                    source, macro.line, macro.column,
                    f"macro '{macro.name}': " + "; ".join(problems),
                )

    @staticmethod
    def _is_guarded(body: Sequence[Token], texts: Sequence[str], depths: Sequence[int], index: int) -> bool:
        previous = texts[index - 1] if index > 0 else None
        following = texts[index + 1] if index + 1 < len(texts) else None
        if previous in ("#", "##") or following == "##":
            return True
        if previous in (".", "->"):
            return True
        if previous == "(" and following == ")":
            return True
        if previous == "return" and following in (None, ";"):
            return True
        if depths[index] > 0 and previous in ("(", ",", "{", "[") and following in (")", ",", "}", "]"):
            return True
        if following == "(":
            # callee position
            return True
        if previous is not None and body[index - 1].kind in ("identifier", "keyword") \
                and previous not in _CHECKED_AFTER_KEYWORDS:
            # declaration position: 'T name', 'struct T'
            return True
        if following is not None and body[index + 1].kind == "identifier":
            return True
        return False

    @staticmethod
    def _needs_outer_parens(body: Sequence[Token], texts: Sequence[str], depths: Sequence[int]) -> bool:
        first = texts[0]
        if first in _STATEMENT_STARTERS or "#" in texts or "##" in texts:
            return False
        if body[0].kind == "keyword" and first not in _EXPRESSION_KEYWORDS:
            return False
        if any(text == ";" and depth == 0 for text, depth in zip(texts, depths)):
            return False
        pairs = pair_brackets(texts)
        last = len(texts) - 1
        if first == "(" and pairs.get(0) == last:
            return False
        if body[0].kind in ("identifier", "keyword") and texts[1] == "(" and pairs.get(1) == last:
            return False
        if all(token.kind == "string" for token in body):
            return False
        return True


def count_top_level_statements(texts: Sequence[str]) -> int:
    count = 0
    depth = 0
    pending = False
    for text in texts:
        if text in OPENERS:
            depth += 1
        elif text in CLOSERS:
            depth = max(0, depth - 1)
        elif text == ";" and depth == 0:
            if pending:
                count += 1
            pending = False
            continue
        pending = True
    if pending:
        count += 1
    return count


class DoWhileZeroRule(Rule):
    id = "do-while-zero"
    description = "Multi-statement function-like macros must be wrapped in do { ... } while (0)."
    finding_ids = ("do-while-zero",)
    severity = "error"

    def evaluate(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        for macro in facts.macros:
            if not macro.is_function_like or not macro.body:
                continue
            texts = _body_texts(_macro_body(source, macro))
            if texts[0] == "do":
                continue
            statements = count_top_level_statements(texts)
            if statements >= 2:
                yield self.finding(
                    source, macro.line, macro.column,
                    f"macro '{macro.name}' expands to {statements} statements; "
                    "wrap the body in 'do { ... } while (0)'",
                )
                continue
            pairs = pair_brackets(texts)
            if texts[0] == "{" and pairs.get(0) == len(texts) - 1 and ";" in texts:
                yield self.finding(
                    source, macro.line, macro.column,
                    f"macro '{macro.name}' expands to a bare block; "
                    "wrap the body in 'do { ... } while (0)'",
                )


class DesignatedInitializerRule(Rule):
    id = "designated-initializer"
    description = "Aggregate initializers should name every member with '.field = value'."
    finding_ids = ("designated-initializer",)
    severity = "warning"

    def evaluate(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        for init in facts.initializers:
            if not init.entries:
                continue
            designated = [entry for entry in init.entries if entry.designated]
            positional = [entry for entry in init.entries if not entry.designated]
            subject = f"'{init.type_name}'" if init.type_name else "aggregate"
            if designated and positional:
                for entry in positional:
                    yield self.finding(
                        source, entry.line, entry.column,
                        f"positional member in designated initializer for {subject}; use '.field = value'",
                    )
            elif init.is_aggregate and not designated:
                if len(init.entries) == 1 and init.entries[0].is_zero:
                    continue
                yield self.finding(
                    source, init.line, init.column,
                    f"initializer for {subject} should name each member with '.field = value'",
                    severity="info",
                )


C_SYSTEM_HEADERS = frozenset({
    "assert.h", "complex.h", "ctype.h", "errno.h", "fenv.h", "float.h",
    "inttypes.h", "iso646.h", "limits.h", "locale.h", "math.h", "setjmp.h",
    "signal.h", "stdalign.h", "stdarg.h", "stdatomic.h", "stdbit.h",
    "stdbool.h", "stdckdint.h", "stddef.h", "stdint.h", "stdio.h",
    "stdlib.h", "stdnoreturn.h", "string.h", "tgmath.h", "threads.h",
    "time.h", "uchar.h", "wchar.h", "wctype.h",
    # POSIX
    "aio.h", "dirent.h", "dlfcn.h", "fcntl.h", "fnmatch.h", "glob.h",
    "grp.h", "iconv.h", "langinfo.h", "libgen.h", "netdb.h", "poll.h",
    "pthread.h", "pwd.h", "regex.h", "sched.h", "search.h", "semaphore.h",
    "spawn.h", "strings.h", "syslog.h", "termios.h", "unistd.h", "utime.h",
    "wordexp.h",
})
SYSTEM_HEADER_PREFIXES: Tuple[str, ...] = ("sys/", "arpa/", "net/", "netinet/")

TIER_OWN, TIER_SYSTEM, TIER_THIRD_PARTY, TIER_PROJECT = range(4)
TIER_NAMES: Dict[int, str] = {
    TIER_OWN: "own header",
    TIER_SYSTEM: "C system",
    TIER_THIRD_PARTY: "third-party",
    TIER_PROJECT: "project",
}


def _strip_header_spelling(name: str) -> str:
    return name.strip().strip('<>"').strip()


class IncludeOrderRule(Rule):
    """
    Includes come in four blank-line separated groups: the file's own header,
    C system headers, third-party headers, then project headers. Includes
    under a conditional (other than the header guard) are left alone.

    With a symbol -> header index it also reports identifiers whose declaring
    header is not included directly; without one that part is skipped.
    """
    id = "include-order"
    description = "Includes grouped as own header, C system, third-party, project; include what you use."
    finding_ids = ("include-order", "include-group-separation", "include-what-you-use")
    severity = "warning"

    def __init__(
        self,
        third_party_prefixes: Sequence[str] = (),
        symbol_index: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.third_party_prefixes = tuple(third_party_prefixes)
        self.symbol_index: Dict[str, str] = {
            symbol: _strip_header_spelling(header) for symbol, header in (symbol_index or {}).items()
        }

    def tier_for(self, source: SourceFile, include: IncludeDirective) -> int:
        name = include.header_name
        if not source.is_header and not include.is_system_header:
            own_stem = os.path.splitext(os.path.basename(source.path))[0]
            stem, ext = os.path.splitext(os.path.basename(name))
            if stem == own_stem and ext == ".h":
                return TIER_OWN
        if include.is_system_header:
            if name in C_SYSTEM_HEADERS or name.startswith(SYSTEM_HEADER_PREFIXES):
                return TIER_SYSTEM
            return TIER_THIRD_PARTY
        if self.third_party_prefixes and name.startswith(self.third_party_prefixes):
            return TIER_THIRD_PARTY
        return TIER_PROJECT

    def evaluate(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        yield from self._check_order(source, facts)
        if self.symbol_index:
            yield from self._check_usage(source, facts)

    def _check_order(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        highest = -1
        previous: Optional[Tuple[IncludeDirective, int]] = None
        for include in facts.includes:
            if include.in_conditional:
                continue
            tier = self.tier_for(source, include)
            if tier < highest:
                yield self.finding(
                    source, include.line, include.column,
                    f"'#include {include.spelling}' ({TIER_NAMES[tier]}) should come before "
                    f"{TIER_NAMES[highest]} includes",
                    finding_id="include-order",
                )
            elif previous is not None and tier > previous[1] and not self._blank_line_between(
                source, previous[0].line, include.line
            ):
                yield self.finding(
                    source, include.line, include.column,
                    f"separate {TIER_NAMES[tier]} includes from {TIER_NAMES[previous[1]]} "
                    "includes with a blank line",
                    finding_id="include-group-separation",
                    severity="info",
                )
            highest = max(highest, tier)
            previous = (include, tier)

    @staticmethod
    def _blank_line_between(source: SourceFile, first_line: int, second_line: int) -> bool:
        lines = source.lines
        return any(not lines[index].strip() for index in range(first_line, min(second_line - 1, len(lines))))

    def _check_usage(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        included = {_strip_header_spelling(include.header_name) for include in facts.includes}
        included.update(os.path.basename(name) for name in list(included))
        own_name = os.path.basename(source.path)
        local_names = {macro.name for macro in facts.macros} | {fn.name for fn in facts.functions}
        reported: Set[str] = set()
        for index in facts.code_indices:
            token = source.tokens[index]
            if token.kind != "identifier":
                continue
            header = self.symbol_index.get(token.text)
            if header is None or header in reported or token.text in local_names:
                continue
            if header in included or header == own_name:
                continue
            reported.add(header)
            yield self.finding(
                source, token.line, token.column,
                f"'{token.text}' is declared in '{header}', which is not included directly",
                finding_id="include-what-you-use",
                severity="info",
            )


class TypedefDisciplineRule(Rule):
    id = "typedef-discipline"
    description = "typedef'd tags reuse the tag name; pointer types are not hidden behind typedefs."
    finding_ids = ("typedef-name-mismatch", "typedef-pointer")
    severity = "warning"

    def evaluate(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        for typedef in facts.typedefs:
            if typedef.is_pointer:
                yield self.finding(
                    source, typedef.line, typedef.column,
                    f"typedef '{typedef.name}' hides a pointer type",
                    finding_id="typedef-pointer",
                )
                continue
            if (
                typedef.declarator_index == 0
                and typedef.tag_name is not None
                and not typedef.is_function_pointer
                and typedef.tag_name != typedef.name
            ):
                yield self.finding(
                    source, typedef.line, typedef.column,
                    f"typedef name '{typedef.name}' differs from {typedef.tag_kind} tag "
                    f"'{typedef.tag_name}'",
                    finding_id="typedef-name-mismatch",
                )


_DECLARATION_KEYWORDS = frozenset({
    "void", "char", "short", "int", "long", "float", "double", "signed",
    "unsigned", "_Bool", "bool", "_Complex", "const", "volatile", "restrict",
    "_Atomic", "static", "extern", "inline", "register", "auto", "_Noreturn",
    "_Thread_local", "thread_local", "constexpr", "typedef",
})

DEFAULT_FORBIDDEN_FUNCTIONS: Dict[str, str] = {
    "gets": "use fgets()",
    "strcpy": "use strlcpy() or snprintf()",
    "strcat": "use strlcat() or snprintf()",
    "sprintf": "use snprintf()",
    "vsprintf": "use vsnprintf()",
    "strtok": "use strtok_r()",
}


class ForbiddenFunctionRule(Rule):
    id = "forbidden-function"
    description = "Calls to banned libc functions."
    finding_ids = ("forbidden-function",)
    severity = "warning"

    def __init__(self, functions: Optional[Mapping[str, str]] = None) -> None:
        self.functions: Dict[str, str] = dict(DEFAULT_FORBIDDEN_FUNCTIONS if functions is None else functions)

    def evaluate(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        code = facts.code_indices
        tokens = source.tokens
        for pos, index in enumerate(code):
            token = tokens[index]
            if token.kind != "identifier" or token.text not in self.functions:
                continue
            if pos + 1 >= len(code) or tokens[code[pos + 1]].text != "(":
                continue
            if pos > 0 and tokens[code[pos - 1]].text in (".", "->"):
                continue
            if self._is_declaration(tokens, code, pos):
                continue
            hint = self.functions[token.text]
            message = f"call to forbidden function '{token.text}'"
            yield self.finding(source, token.line, token.column, f"{message}; {hint}" if hint else message)

    @staticmethod
    def _is_declaration(tokens: Sequence[Token], code: Sequence[int], pos: int) -> bool:
        # `char *gets(char *);` names the function, it does not call it
        back = pos - 1
        while back >= 0 and tokens[code[back]].text == "*":
            back -= 1
        if back < 0:
            return False
        previous = tokens[code[back]]
        if previous.kind == "identifier":
            return True
        return previous.kind == "keyword" and previous.text in _DECLARATION_KEYWORDS


class VoidParameterListRule(Rule):
    id = "void-parameter-list"
    description = "Functions taking no arguments are defined with '(void)', not '()'."
    finding_ids = ("void-parameter-list",)
    severity = "warning"

    def evaluate(self, source: SourceFile, facts: FileFacts) -> Iterable[Finding]:
        for function in facts.functions:
            if not function.parameter_list:
                yield self.finding(
                    source, function.line, function.column,
                    f"function '{function.name}' has an empty parameter list; write '{function.name}(void)'",
                )


# ============================================================
# ====================== RULE REGISTRY =======================
# ============================================================

class RuleRegistry:
    """
    The set of rules one configuration knows about. Registries are ordinary
    values: build as many as needed, e.g. one per project subset or per test.
    """

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._rules: Dict[str, Rule] = {}
        for rule in rules:
            self.register(rule)

    def register(self, rule: Rule) -> None:
        if not rule.id:
            raise ValueError("rule id must not be empty")
        if rule.id in self._rules:
            raise ValueError(f"duplicate rule id '{rule.id}'")
        self._rules[rule.id] = rule

    def rules(self) -> List[Rule]:
        return list(self._rules.values())

    def get(self, rule_id: str) -> Optional[Rule]:
        return self._rules.get(rule_id)

    def finding_ids(self) -> Set[str]:
        ids: Set[str] = set()
        for rule in self._rules.values():
            ids.update(rule.finding_ids or (rule.id,))
        return ids

    def known_ids(self) -> Set[str]:
        return set(self._rules) | self.finding_ids()

    def resolve(self, selected: Optional[Iterable[str]]) -> Set[str]:
        """
        Turn a user selection of rule ids and/or finding ids into the set of
        finding ids to report. None selects everything.
        """
        if selected is None:
            return self.finding_ids()
        wanted = [item.strip() for item in selected if item and item.strip()]
        unknown = sorted(set(wanted) - self.known_ids())
        if unknown:
            raise ConfigurationError(f"unknown rule id(s): {', '.join(unknown)}")
        enabled: Set[str] = set()
        for item in wanted:
            rule = self._rules.get(item)
            if rule is not None:
                enabled.update(rule.finding_ids or (rule.id,))
            else:
                enabled.add(item)
        return enabled


def build_default_registry(settings: Optional["Settings"] = None) -> RuleRegistry:
    settings = settings or Settings()
    return RuleRegistry([
        LexErrorRule(),
        StructuralAmbiguityRule(),
        HeaderGuardRule(),
        MacroParenthesizationRule(),
        DoWhileZeroRule(),
        DesignatedInitializerRule(),
        IncludeOrderRule(settings.third_party_prefixes, settings.symbol_index),
        TypedefDisciplineRule(),
        ForbiddenFunctionRule(settings.forbidden_functions),
        VoidParameterListRule(),
    ])


# ============================================================
# ====================== RULE ENGINE =========================
# ============================================================

class CancellationToken:
    """Run-level cancellation signal shared by every worker."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class RuleEngine:
    """
    The RuleEngine will:
    - take a RuleRegistry and the user's rule selection
    - run every selected rule over one file's facts
    - contain rule crashes so one broken rule cannot hide the others
    """

    def __init__(self, registry: RuleRegistry, enabled_ids: Optional[Iterable[str]] = None) -> None:
        self.registry = registry
        self.enabled = registry.resolve(enabled_ids)
        self.rules = [
            rule for rule in registry.rules()
            if self.enabled.intersection(rule.finding_ids or (rule.id,))
        ]

    def evaluate(
        self,
        source: SourceFile,
        facts: FileFacts,
        cancel: Optional[CancellationToken] = None,
    ) -> List[Finding]:
        findings: List[Finding] = []
        for rule in self.rules:
            if cancel is not None and cancel.cancelled:
                raise RunCancelled(source.path)
            try:
                produced = list(rule.evaluate(source, facts))
            except Exception as exc:
                findings.append(self._internal_fault(rule, source, exc))
                continue
            findings.extend(finding for finding in produced if finding.rule_id in self.enabled)
        return findings

    def _internal_fault(self, rule: Rule, source: SourceFile, exc: Exception) -> Finding:
        detail = " ".join(str(exc).split()) or type(exc).__name__
        return Finding(
            rule_id=INTERNAL_ERROR_ID,
            severity="warning",
            file=source.path,
            line=1,
            column=1,
            message=f"rule '{rule.id}' failed: {type(exc).__name__}: {detail}",
        )


def check_source(
    source: SourceFile,
    engine: RuleEngine,
    cancel: Optional[CancellationToken] = None,
) -> List[Finding]:
    """Run the structural pass and every enabled rule over one scanned file."""
    facts = extract_facts(source)
    return sort_findings(engine.evaluate(source, facts, cancel))


# ============================================================
# ===================== CONFIGURATION ========================
# ============================================================

@dataclass
class Settings:
    """
    Resolved run configuration. Built from defaults, then a YAML config
    file, then CCHECK_* environment variables, then command-line flags.
    """
    paths: List[str] = field(default_factory=list)
    rules: Optional[List[str]] = None
    format: str = "text"
    max_severity: str = "error"
    root: str = "."
    jobs: Optional[int] = None
    extensions: List[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    exclude: List[str] = field(default_factory=list)
    forbidden_functions: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FORBIDDEN_FUNCTIONS))
    third_party_prefixes: List[str] = field(default_factory=list)
    symbol_index: Dict[str, str] = field(default_factory=dict)
    out: Optional[str] = None
    verbose: bool = False


_CONFIG_KEYS = frozenset({
    "paths", "rules", "format", "max_severity", "root", "jobs", "extensions",
    "exclude", "forbidden_functions", "third_party_prefixes", "symbol_index",
})


def split_ids(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _to_str_list(value: Any, key: str, origin: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return split_ids(value)
    if isinstance(value, list):
        return [str(item) for item in value if item is not None]
    raise ConfigurationError(f"{origin}: '{key}' must be a list or a comma-separated string")


def _to_str_map(value: Any, key: str, origin: str) -> Dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, list):
        return {str(item): "" for item in value if item is not None}
    if isinstance(value, dict):
        return {str(k): "" if v is None else str(v) for k, v in value.items()}
    raise ConfigurationError(f"{origin}: '{key}' must be a mapping or a list")


def _parse_jobs(value: Any, origin: str) -> int:
    try:
        jobs = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{origin}: jobs must be a positive integer, got {value!r}") from None
    if jobs < 1:
        raise ConfigurationError(f"{origin}: jobs must be a positive integer, got {value!r}")
    return jobs


def _check_choice(value: Any, choices: Sequence[str], key: str, origin: str) -> str:
    text = str(value)
    if text not in choices:
        raise ConfigurationError(f"{origin}: '{key}' must be one of {', '.join(choices)}, got {text!r}")
    return text


def load_config_file(path: str) -> Dict[str, Any]:
    """
    Read a YAML configuration mapping. A missing, unreadable or malformed
    file is a ConfigurationError; an empty file is an empty mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError:
        raise ConfigurationError(f"config file not found: {path}") from None
    except OSError as exc:
        raise ConfigurationError(f"could not read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return data


def apply_config(settings: Settings, raw: Mapping[str, Any], origin: str) -> Settings:
    unknown = sorted(set(raw) - _CONFIG_KEYS)
    if unknown:
        raise ConfigurationError(f"{origin}: unknown configuration key(s): {', '.join(unknown)}")

    if "paths" in raw:
        settings.paths = _to_str_list(raw["paths"], "paths", origin)
    if "rules" in raw and raw["rules"] is not None:
        settings.rules = _to_str_list(raw["rules"], "rules", origin)
    if "format" in raw:
        settings.format = _check_choice(raw["format"], OUTPUT_FORMATS, "format", origin)
    if "max_severity" in raw:
        settings.max_severity = _check_choice(raw["max_severity"], SEVERITIES, "max_severity", origin)
    if "root" in raw:
        settings.root = str(raw["root"])
    if "jobs" in raw and raw["jobs"] is not None:
        settings.jobs = _parse_jobs(raw["jobs"], origin)
    if "extensions" in raw:
        settings.extensions = [
            ext if ext.startswith(".") else f".{ext}"
            for ext in _to_str_list(raw["extensions"], "extensions", origin)
        ]
    if "exclude" in raw:
        settings.exclude = _to_str_list(raw["exclude"], "exclude", origin)
    if "forbidden_functions" in raw:
        settings.forbidden_functions = _to_str_map(raw["forbidden_functions"], "forbidden_functions", origin)
    if "third_party_prefixes" in raw:
        settings.third_party_prefixes = _to_str_list(raw["third_party_prefixes"], "third_party_prefixes", origin)
    if "symbol_index" in raw:
        settings.symbol_index = _to_str_map(raw["symbol_index"], "symbol_index", origin)
    return settings


def resolve_settings(args: argparse.Namespace, environ: Mapping[str, str]) -> Settings:
    settings = Settings()

    config_path = getattr(args, "config", None)
    if config_path is None and os.path.isfile(DEFAULT_CONFIG_NAME):
        config_path = DEFAULT_CONFIG_NAME
    if config_path:
        apply_config(settings, load_config_file(config_path), config_path)

    env_rules = environ.get("CCHECK_RULES")
    if env_rules:
        settings.rules = split_ids(env_rules)
    env_jobs = environ.get("CCHECK_JOBS")
    if env_jobs:
        settings.jobs = _parse_jobs(env_jobs, "CCHECK_JOBS")

    if args.paths:
        settings.paths = list(args.paths)
    if args.rules is not None:
        settings.rules = split_ids(args.rules)
    if args.format is not None:
        settings.format = args.format
    if args.max_severity is not None:
        settings.max_severity = args.max_severity
    if args.root is not None:
        settings.root = args.root
    if args.jobs is not None:
        settings.jobs = _parse_jobs(args.jobs, "--jobs")
    if args.out is not None:
        settings.out = args.out
    settings.verbose = bool(args.verbose)

    if not settings.paths:
        raise ConfigurationError("no input paths given")
    return settings


# ============================================================
# ===================== FILE DISCOVERY =======================
# ============================================================

def _is_excluded(path: str, patterns: Sequence[str]) -> bool:
    normalized = path.replace(os.sep, "/")
    name = os.path.basename(normalized)
    return any(fnmatch.fnmatch(normalized, pattern) or fnmatch.fnmatch(name, pattern) for pattern in patterns)


def discover_files(
    paths: Sequence[str],
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    exclude: Sequence[str] = (),
) -> List[str]:
    """
    Expand path arguments into an ordered file list. Directories are walked
    in sorted order, hidden directories skipped, and only files with a C
    extension kept; explicitly named files are always kept.
    """
    wanted = tuple(ext.lower() for ext in extensions)
    files: List[str] = []
    seen: Set[str] = set()

    def add(path: str) -> None:
        key = os.path.normpath(os.path.abspath(path))
        if key not in seen:
            seen.add(key)
            files.append(path)

    for raw in paths:
        if os.path.isdir(raw):
            for dirpath, dirnames, filenames in os.walk(raw):
                dirnames[:] = sorted(
                    d for d in dirnames
                    if not d.startswith(".") and not _is_excluded(os.path.join(dirpath, d), exclude)
                )
                for name in sorted(filenames):
                    candidate = os.path.join(dirpath, name)
                    if os.path.splitext(name)[1].lower() in wanted and not _is_excluded(candidate, exclude):
                        add(candidate)
        elif os.path.isfile(raw):
            add(raw)
        else:
            raise ConfigurationError(f"path not found: {raw}")
    return files


def relative_to_root(path: str, root: str) -> str:
    absolute = os.path.abspath(path)
    try:
        relative = os.path.relpath(absolute, os.path.abspath(root))
    except ValueError:
        relative = path
    if relative.startswith(".."):
        relative = path
    return normalize_relative_path(relative)


# ============================================================
# ====================== RUN PIPELINE ========================
# ============================================================

@dataclass
class FileReport:
    path: str
    findings: List[Finding] = field(default_factory=list)
    completed: bool = False
    elapsed: float = 0.0


@dataclass
class RunResult:
    findings: List[Finding] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    files_checked: int = 0
    cancelled: bool = False


def check_file(
    path: str,
    engine: RuleEngine,
    *,
    relative_path: Optional[str] = None,
    cancel: Optional[CancellationToken] = None,
) -> FileReport:
    """
    scan -> extract_facts -> evaluate for one file. Files not yet started
    when the run is cancelled are skipped; a file interrupted between rules
    is reported as incomplete and its partial findings dropped.
    """
    if cancel is not None and cancel.cancelled:
        return FileReport(path=path)
    started = time.perf_counter()
    try:
        with open(path, "rb") as handle:
            content = handle.read()
    except OSError as exc:
        raise ConfigurationError(f"cannot read {path}: {exc.strerror or exc}") from exc

    source = SourceFile.from_bytes(path, content, relative_path)
    try:
        findings = check_source(source, engine, cancel)
    except RunCancelled:
        return FileReport(path=path)
    return FileReport(path=path, findings=findings, completed=True, elapsed=time.perf_counter() - started)


def run_check(
    settings: Settings,
    *,
    registry: Optional[RuleRegistry] = None,
    cancel: Optional[CancellationToken] = None,
) -> RunResult:
    """
    Check every discovered file on a worker pool. Per-file pipelines share
    nothing mutable; reports are merged in input order once workers finish.
    """
    registry = registry if registry is not None else build_default_registry(settings)
    engine = RuleEngine(registry, settings.rules)
    files = discover_files(settings.paths, settings.extensions, settings.exclude)
    cancel = cancel if cancel is not None else CancellationToken()

    reports: Dict[int, FileReport] = {}
    futures: Dict[concurrent.futures.Future, int] = {}
    workers = settings.jobs or os.cpu_count() or 1
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ccheck")
    try:
        for index, path in enumerate(files):
            future = pool.submit(
                check_file,
                path,
                engine,
                relative_path=relative_to_root(path, settings.root),
                cancel=cancel,
            )
            futures[future] = index
        for future in concurrent.futures.as_completed(futures):
            report = future.result()
            reports[futures[future]] = report
            if settings.verbose and report.completed:
                sys.stderr.write(
                    f"[ccheck] {report.path}: {len(report.findings)} finding(s) "
                    f"in {report.elapsed * 1000:.1f} ms\n"
                )
    except KeyboardInterrupt:
        cancel.cancel()
        sys.stderr.write("[ccheck] Interrupted; waiting for in-flight files to stop.\n")
    except ConfigurationError:
        cancel.cancel()
        raise
    finally:
        pool.shutdown(wait=True, cancel_futures=True)

    if cancel.cancelled:
        for future, index in futures.items():
            if index in reports or not future.done() or future.cancelled():
                continue
            if future.exception() is None:
                reports[index] = future.result()

    ordered = [reports[index] for index in sorted(reports)]
    completed = [report for report in ordered if report.completed]
    return RunResult(
        findings=sort_findings(finding for report in completed for finding in report.findings),
        files=files,
        files_checked=len(completed),
        cancelled=cancel.cancelled,
    )


# ============================================================
# ======================== REPORTING =========================
# ============================================================

def format_record(finding: Finding) -> str:
    return f"{finding.file}:{finding.line}:{finding.column}: {finding.severity} {finding.rule_id} {finding.message}"


def format_text(finding: Finding) -> str:
    return f"{finding.file}:{finding.line}:{finding.column}: {finding.severity}: {finding.message} [{finding.rule_id}]"


def finding_to_json_obj(finding: Finding) -> Dict[str, Any]:
    """
    Convert a Finding into a JSON-friendly dict with a fixed key order.
    """
    return {
        "rule_id": finding.rule_id,
        "severity": finding.severity,
        "message": finding.message,
        "location": {
            "file": finding.file,
            "line": finding.line,
            "column": finding.column,
        },
        "tool": "ccheck",
        "version": __version__,
    }


def summarize(findings: Iterable[Finding]) -> Dict[str, int]:
    counts = {severity: 0 for severity in SEVERITIES}
    for finding in findings:
        counts[finding.severity] = counts.get(finding.severity, 0) + 1
    return counts


def summary_line(findings: Sequence[Finding], files_checked: Optional[int] = None) -> str:
    counts = summarize(findings)
    text = (
        f"{len(findings)} finding(s): {counts['error']} error, "
        f"{counts['warning']} warning, {counts['info']} info"
    )
    if files_checked is not None:
        text += f" in {files_checked} file(s)"
    return text


def render(findings: Iterable[Finding], fmt: str = "text") -> str:
    """
    Render findings in one of the output formats. Output is sorted and
    de-duplicated, so identical input always renders identically.
    """
    ordered = sort_findings(findings)
    if fmt == "record":
        return "".join(format_record(finding) + "\n" for finding in ordered)
    if fmt == "json":
        return json.dumps([finding_to_json_obj(finding) for finding in ordered], indent=2) + "\n"
    if fmt == "text":
        lines = [format_text(finding) for finding in ordered]
        lines.append(summary_line(ordered))
        return "\n".join(lines) + "\n"
    raise ValueError(f"unknown output format '{fmt}'")


def exit_code_for(findings: Iterable[Finding], floor: str = "error", cancelled: bool = False) -> int:
    if cancelled:
        return EXIT_CANCELLED
    threshold = SEVERITY_RANK[floor]
    if any(SEVERITY_RANK.get(finding.severity, 0) >= threshold for finding in findings):
        return EXIT_FINDINGS
    return EXIT_OK


def report(findings: Iterable[Finding], fmt: str = "text", floor: str = "error",
           cancelled: bool = False) -> Tuple[str, int]:
    ordered = sort_findings(findings)
    return render(ordered, fmt), exit_code_for(ordered, floor, cancelled)


def emit_report(text: str, out: Optional[str] = None) -> None:
    if out:
        with open(out, "w", encoding="utf-8") as handle:
            handle.write(text)
    else:
        sys.stdout.write(text)


# ============================================================
# ============================ CLI ===========================
# ============================================================

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ccheck",
        description="ccheck: conformance checking for C coding standards",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    check_p = subparsers.add_parser(
        "check",
        help="Check C sources and headers against the enabled rules.",
    )
    check_p.add_argument(
        "paths",
        nargs="*",
        metavar="PATH",
        help="Files or directories to check (directories are recursed).",
    )
    check_p.add_argument(
        "--rules",
        metavar="IDS",
        help="Comma-separated rule or finding ids to enable (default: all).",
    )
    check_p.add_argument(
        "--format",
        choices=OUTPUT_FORMATS,
        default=None,
        help="Output format (default: text).",
    )
    check_p.add_argument(
        "--max-severity",
        dest="max_severity",
        choices=SEVERITIES,
        default=None,
        help="Lowest severity that makes the run fail (default: error).",
    )
    check_p.add_argument(
        "--config",
        metavar="FILE",
        help=f"YAML configuration file (default: ./{DEFAULT_CONFIG_NAME} when present).",
    )
    check_p.add_argument(
        "--root",
        metavar="DIR",
        help="Project root that header guard names are derived from (default: .).",
    )
    check_p.add_argument(
        "--jobs",
        "-j",
        metavar="N",
        help="Number of worker threads (default: CPU count).",
    )
    check_p.add_argument(
        "--out",
        metavar="FILE",
        help="Write the report to this file instead of stdout.",
    )
    check_p.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log per-file progress to stderr.",
    )

    subparsers.add_parser(
        "rules",
        help="List the rules and finding ids this build knows about.",
    )
    return parser


def _list_rules(registry: RuleRegistry) -> str:
    lines = []
    for rule in registry.rules():
        lines.append(f"{rule.id}: {rule.description}")
        extra = [fid for fid in rule.finding_ids if fid != rule.id]
        if extra:
            lines.append(f"    findings: {', '.join(extra)}")
    return "\n".join(lines) + "\n"


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point for ccheck.
    Intended usage:
      ccheck check src/ include/ --format=record --max-severity=warning
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "rules":
        sys.stdout.write(_list_rules(build_default_registry()))
        return EXIT_OK

    if args.command == "check":
        cancel = CancellationToken()
        try:
            settings = resolve_settings(args, os.environ)
            result = run_check(settings, registry=build_default_registry(settings), cancel=cancel)
            text = render(result.findings, settings.format)
        except ConfigurationError as exc:
            sys.stderr.write(f"[ccheck] error: {exc}\n")
            return EXIT_USAGE
        except KeyboardInterrupt:
            sys.stderr.write("[ccheck] Cancelled.\n")
            return EXIT_CANCELLED

        try:
            emit_report(text, settings.out)
        except OSError as exc:
            sys.stderr.write(f"[ccheck] error: could not write report to {settings.out}: {exc}\n")
            return EXIT_USAGE
        sys.stderr.write(f"[ccheck] {summary_line(result.findings, result.files_checked)}\n")

        if result.cancelled:
            sys.stderr.write(
                f"[ccheck] Run cancelled after {result.files_checked} of {len(result.files)} file(s); "
                "report is partial.\n"
            )
        return exit_code_for(result.findings, settings.max_severity, result.cancelled)

    # unreachable if parser is correct
    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
