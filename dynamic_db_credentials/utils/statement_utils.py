"""
Statement template splitting and rendering.

A statement block is one caller-supplied string. It is either plain SQL with
sub-statements separated by ``;``, a JSON array of statements, or base64 of
either form. Each sub-statement may reference ``{{field}}`` placeholders that
render_statement() fills from a typed substitution set.

Rendering is the escaping boundary for substituted values:

- inside a single-quoted literal, ``'`` is doubled
- inside a double-quoted identifier, ``"`` is doubled
- outside quotes, the value must be a plain identifier

Comments (``-- ...`` to end of line, ``/* ... */``) are copied verbatim and never
change quote state; a placeholder inside a comment is rejected, as is a
template that leaves a quote or comment unterminated.
"""

import base64
import binascii
import json
import re
from typing import Iterator, List, Optional, Sequence, Set

from ..constants import STATEMENT_SEPARATOR
from ..exceptions import ConfigurationError, ErrorCode, validation_failed
from ..schemas.credential_schemas import Substitutions

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")
UNQUOTED_VALUE_PATTERN = re.compile(r"^[A-Za-z0-9_$#]+$")

_QUOTES = ("'", '"')


def _decode_block(block: str) -> str:
    try:
        decoded = base64.b64decode(block, validate=True)
    except (binascii.Error, ValueError):
        return block
    try:
        return decoded.decode("utf-8")
    except UnicodeDecodeError:
        return block


def _parse_json_list(block: str):
    try:
        parsed = json.loads(block)
    except ValueError:
        return None
    if isinstance(parsed, list) and all(isinstance(item, str) for item in parsed):
        return parsed
    return None


def split_statements(block: str, separator: str = STATEMENT_SEPARATOR) -> Iterator[str]:
    """
    Lazily yield the trimmed, non-empty statements of a statement block.

    Args:
        block: Plain SQL, a JSON array of statements, or base64 of either
        separator: Sub-statement separator for plain SQL

    Yields:
        Each statement with surrounding whitespace removed
    """
    block = block.strip()
    if not block:
        return

    raw = _decode_block(block)
    statements = _parse_json_list(raw)
    if statements is None:
        statements = raw.split(separator)

    for statement in statements:
        statement = statement.strip()
        if statement:
            yield statement


def template_fields(template: str) -> Set[str]:
    """Names of the placeholders a template declares."""
    return set(PLACEHOLDER_PATTERN.findall(template))


def escaped_forms(value: str) -> List[str]:
    """Every form value can take in a rendered statement, for redaction."""
    forms = [value]
    for quote in _QUOTES:
        escaped = value.replace(quote, quote + quote)
        if escaped not in forms:
            forms.append(escaped)
    return forms


def _template_error(message: str, template_position: int) -> ConfigurationError:
    return ConfigurationError(
        message, error_code=ErrorCode.INVALID_FORMAT, position=template_position
    )


def _comment_end(template: str, position: int) -> Optional[int]:
    """End offset of the comment starting at position, None if none starts there."""
    if template.startswith("--", position):
        end = template.find("\n", position)
        return len(template) if end == -1 else end
    if template.startswith("/*", position):
        end = template.find("*/", position + 2)
        if end == -1:
            raise _template_error("Statement has an unterminated comment", position)
        return end + 2
    return None


def _quote_value(field: str, value: str, quote) -> str:
    if quote is not None:
        return value.replace(quote, quote + quote)
    if not UNQUOTED_VALUE_PATTERN.match(value):
        raise validation_failed(
            field,
            "value is not a plain identifier; quote the placeholder in the statement",
        )
    return value


def render_statement(template: str, substitutions: Substitutions) -> str:
    """
    Replace every ``{{field}}`` in template with its escaped value.

    Args:
        template: One statement template
        substitutions: The typed field values of the current operation

    Returns:
        The rendered statement

    Raises:
        ConfigurationError: If the template uses a field the operation does not provide,
            puts a placeholder in a comment, or leaves a quote or comment open
        ValidationError: If an unquoted placeholder gets a value that is not an identifier
    """
    values = substitutions.as_mapping()
    unknown = template_fields(template) - set(values)
    if unknown:
        raise ConfigurationError(
            f"Statement references unknown field(s): {', '.join(sorted(unknown))}",
            error_code=ErrorCode.INVALID_FORMAT,
            unknown_fields=sorted(unknown),
            allowed_fields=sorted(values),
        )

    rendered: List[str] = []
    quote = None
    position = 0
    while position < len(template):
        if quote is None:
            comment_end = _comment_end(template, position)
            if comment_end is not None:
                comment = template[position:comment_end]
                if PLACEHOLDER_PATTERN.search(comment):
                    raise _template_error("Statement has a placeholder inside a comment", position)
                rendered.append(comment)
                position = comment_end
                continue

        match = PLACEHOLDER_PATTERN.match(template, position)
        if match:
            field = match.group(1)
            rendered.append(_quote_value(field, values[field], quote))
            position = match.end()
            continue

        char = template[position]
        if quote is None and char in _QUOTES:
            quote = char
        elif char == quote:
            # A doubled quote closes and reopens, which leaves us inside
            quote = None
        rendered.append(char)
        position += 1

    if quote is not None:
        raise _template_error(f"Statement has an unterminated {quote} quote", len(template))

    return "".join(rendered)


def render_statements(
    blocks: Sequence[str],
    substitutions: Substitutions,
    separator: str = STATEMENT_SEPARATOR,
) -> List[str]:
    """Split every block and render every statement, in order."""
    return [
        render_statement(statement, substitutions)
        for block in blocks
        for statement in split_statements(block, separator)
    ]
