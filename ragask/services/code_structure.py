"""
Lightweight structural analysis of source files.

Python files are analysed with the ``ast`` module. Brace-delimited languages
(Rust, Go, C-family, Java, JavaScript/TypeScript) get a small lexer that
tracks bracket depth while skipping strings and comments. Both feed the code
chunker (where can a file be split?) and the outline extractor (which symbols
does it define?).
"""
import ast
import os
import re
from typing import List, Optional

from ragask.errors import ChunkError

LANGUAGES = {
    "rs": "rust",
    "py": "python",
    "go": "go",
    "c": "c",
    "h": "c",
    "cc": "cpp",
    "cpp": "cpp",
    "hpp": "cpp",
    "cs": "csharp",
    "java": "java",
    "kt": "kotlin",
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "swift": "swift",
}

# Boundary strengths between lines, strongest last
LINE = 1
NESTED_ITEM = 2
TOP_LEVEL_ITEM = 3

_OPENERS = "{(["
_CLOSERS = "})]"
_CHAR_LITERAL = re.compile(r"'(?:\\.[^'\n]*|[^\\'\n])'")
_SINGLE_QUOTED_STRINGS = {"javascript", "typescript"}
_NESTED_COMMENTS = {"rust", "swift"}
_RUST_RAW_STRING = re.compile(r'b?r(#*)"')
_IDENT_CHAR = re.compile(r"\w")

_ITEM_PATTERNS = {
    "rust": re.compile(
        r"^\s*(?:#\[.*\]\s*)?(?:pub(?:\([^)]*\))?\s+)?(?:default\s+)?(?:const\s+)?(?:async\s+)?"
        r"(?:unsafe\s+)?(?:extern\s+\"[^\"]*\"\s+)?"
        r"(fn|struct|enum|union|trait|impl|mod|type|macro_rules!)\b"
    ),
    "go": re.compile(r"^\s*(func|type)\b"),
    "javascript": re.compile(
        r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?(function\*?|class)\b"
    ),
    "typescript": re.compile(
        r"^\s*(?:export\s+)?(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
        r"(function\*?|class|interface|enum|type|namespace)\b"
    ),
}
_GENERIC_ITEM = re.compile(
    r"^\s*(?:(?:public|private|protected|internal|static|final|abstract|override|"
    r"virtual|inline|extern|sealed|open)\s+)*"
    r"(class|struct|interface|enum|func|fun|record|namespace|protocol|extension)\b"
)


def language_for(path: str) -> Optional[str]:
    """Language name for a file path, or None when unsupported."""
    ext = os.path.splitext(path)[1].lstrip(".").lower()
    return LANGUAGES.get(ext)


def line_depths(source: str, language: Optional[str] = None) -> List[int]:
    """
    Bracket depth at the start of every line of a brace-delimited source file.

    Rust raw strings (``r#"..."#``) and nested block comments are understood.

    Raises:
        ChunkError: If brackets are unbalanced or a comment/string never ends
    """
    quotes = "\"`'" if language in _SINGLE_QUOTED_STRINGS else "\"`"
    nested_comments = language in _NESTED_COMMENTS
    depths: List[int] = []
    depth = 0
    i = 0
    n = len(source)
    comment_depth = 0
    in_string: Optional[str] = None
    # Closing delimiter of the raw string being read, e.g. '"##'
    raw_end: Optional[str] = None
    at_line_start = True

    while i < n:
        if at_line_start:
            depths.append(depth)
            at_line_start = False

        ch = source[i]
        nxt = source[i + 1] if i + 1 < n else ""

        if ch == "\n":
            at_line_start = True
            i += 1
            continue

        if comment_depth:
            if ch == "*" and nxt == "/":
                comment_depth -= 1
                i += 2
            elif nested_comments and ch == "/" and nxt == "*":
                comment_depth += 1
                i += 2
            else:
                i += 1
            continue

        if raw_end is not None:
            if source.startswith(raw_end, i):
                i += len(raw_end)
                raw_end = None
            else:
                i += 1
            continue

        if in_string is not None:
            if ch == "\\":
                i += 1 if nxt == "\n" else 2
                continue
            if ch == in_string:
                in_string = None
            i += 1
            continue

        if ch == "/" and nxt == "/":
            end = source.find("\n", i)
            i = n if end == -1 else end
            continue
        if ch == "/" and nxt == "*":
            comment_depth = 1
            i += 2
            continue
        if language == "rust" and ch in "br" and (i == 0 or not _IDENT_CHAR.match(source[i - 1])):
            raw = _RUST_RAW_STRING.match(source, i)
            if raw:
                raw_end = '"' + raw.group(1)
                i = raw.end()
                continue
        if ch == "'" and ch not in quotes:
            literal = _CHAR_LITERAL.match(source, i)
            if literal:
                i = literal.end()
                continue
        if ch in quotes:
            in_string = ch
        elif ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
            if depth < 0:
                raise ChunkError(
                    "Unbalanced brackets",
                    details={"line": len(depths)},
                )
        i += 1

    if comment_depth:
        raise ChunkError("Unterminated block comment")
    if in_string is not None or raw_end is not None:
        raise ChunkError("Unterminated string literal")
    if depth != 0:
        raise ChunkError("Unbalanced brackets", details={"depth_at_end": depth})
    return depths


def _is_comment(line: str, language: Optional[str]) -> bool:
    stripped = line.strip()
    if language == "python":
        return stripped.startswith("#")
    if language == "rust" and stripped.startswith("#["):
        return True
    return stripped == "*" or stripped.startswith(("//", "/*", "* ", "*/", "@"))


def _raise_boundary(levels: List[int], lines: List[str], start: int, level: int, language: Optional[str]) -> None:
    """Place a boundary of ``level`` before line ``start``, moved above its comments."""
    while start > 0 and lines[start - 1].strip() and _is_comment(lines[start - 1], language):
        start -= 1
    if start > 0:
        levels[start - 1] = max(levels[start - 1], level)


def _python_levels(lines: List[str]) -> List[int]:
    source = "".join(lines)
    try:
        tree = ast.parse(source)
    except SyntaxError as e:
        raise ChunkError(f"Python source does not parse: {e.msg}", details={"line": e.lineno}) from e

    levels = [LINE] * len(lines)

    def first_line(node: ast.AST) -> int:
        decorators = getattr(node, "decorator_list", None) or []
        return min([node.lineno] + [d.lineno for d in decorators])

    for node in tree.body:
        _raise_boundary(levels, lines, first_line(node) - 1, TOP_LEVEL_ITEM, "python")

    for node in ast.walk(tree):
        body = getattr(node, "body", None)
        if node is tree or not isinstance(body, list):
            continue
        for child in body:
            if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                _raise_boundary(levels, lines, first_line(child) - 1, NESTED_ITEM, "python")
    return levels


def _brace_levels(lines: List[str], language: Optional[str]) -> List[int]:
    depths = line_depths("".join(lines), language)
    levels = [LINE] * len(lines)
    for index, line in enumerate(lines):
        if index == 0 or not line.strip() or index >= len(depths):
            continue
        # Only lines that open a new statement count as item starts
        follows_comment = bool(lines[index - 1].strip()) and _is_comment(lines[index - 1], language)
        if follows_comment:
            continue
        if depths[index] == 0 and not line[0].isspace() and line.strip()[0] not in _CLOSERS:
            _raise_boundary(levels, lines, index, TOP_LEVEL_ITEM, language)
        elif depths[index] == 1 and line.strip()[0] not in _CLOSERS:
            _raise_boundary(levels, lines, index, NESTED_ITEM, language)
    return levels


def boundary_levels(lines: List[str], language: Optional[str]) -> List[int]:
    """
    Boundary strength after each line.

    ``levels[i]`` rates splitting between ``lines[i]`` and ``lines[i + 1]``.

    Raises:
        ChunkError: If the source cannot be analysed for its language
    """
    if language == "python":
        return _python_levels(lines)
    if language is not None:
        return _brace_levels(lines, language)

    # Unknown language: blank lines are the only structure available
    return [NESTED_ITEM if not line.strip() else LINE for line in lines]


def _python_outline(source: str) -> List[str]:
    tree = ast.parse(source)
    entries: List[str] = []

    def visit(body, indent: int) -> None:
        for node in body:
            pad = "  " * indent
            if isinstance(node, ast.ClassDef):
                bases = ", ".join(ast.unparse(b) for b in node.bases)
                entries.append(f"{pad}class {node.name}({bases}):" if bases else f"{pad}class {node.name}:")
                visit(node.body, indent + 1)
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                prefix = "async def" if isinstance(node, ast.AsyncFunctionDef) else "def"
                returns = f" -> {ast.unparse(node.returns)}" if node.returns is not None else ""
                entries.append(f"{pad}{prefix} {node.name}({ast.unparse(node.args)}){returns}")
                visit(node.body, indent + 1)

    visit(tree.body, 0)
    return entries


def _brace_outline(source: str, language: str) -> List[str]:
    pattern = _ITEM_PATTERNS.get(language, _GENERIC_ITEM)
    lines = source.splitlines()
    depths = line_depths(source, language)
    entries: List[str] = []
    for index, line in enumerate(lines):
        if not pattern.match(line):
            continue
        signature = line.strip()
        # Keep the declaration, not the body
        for stop in ("{", " where "):
            cut = signature.find(stop)
            if cut > 0:
                signature = signature[:cut]
        signature = signature.rstrip(" ;")
        depth = depths[index] if index < len(depths) else 0
        entries.append("  " * depth + signature)
    return entries


def outline(source: str, language: str) -> List[str]:
    """
    Defined symbols of a source file, one per line, indented by nesting.

    Raises:
        SyntaxError, ChunkError: If the source cannot be analysed
    """
    if language == "python":
        return _python_outline(source)
    return _brace_outline(source, language)
