"""Variable substitution for node configuration text.

Two token classes are recognized:

- ``{{contact.FIELD}}``: the contact's field, falling back to
  ``custom_fields[FIELD]`` when the direct field is missing or empty.
- ``{{NAME}}``: the execution variable ``NAME``.

Tokens that cannot be resolved, and ``{{...}}`` sequences that are not
tokens at all, are copied through literally. Substitution is a single
left-to-right scan: substituted text is never scanned again.
"""

import json
import re
from typing import Any, Dict, Optional

OPEN = "{{"
CLOSE = "}}"
CONTACT_PREFIX = "contact."

_NAME = re.compile(r"\w+")


def stringify(value: Any) -> str:
    """Render a variable value the way it should appear inside message text."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def resolve_contact_field(contact: Dict[str, Any], field: str) -> Any:
    """Contact field, then custom field; None when neither is set."""
    value = contact.get(field)
    if value is None or value == "":
        value = (contact.get("custom_fields") or {}).get(field)
    if value == "":
        return None
    return value


def _resolve_token(token: str, variables: Dict[str, Any], contact: Dict[str, Any]) -> Optional[str]:
    if token.startswith(CONTACT_PREFIX):
        field = token[len(CONTACT_PREFIX):]
        if not _NAME.fullmatch(field):
            return None
        value = resolve_contact_field(contact, field)
    else:
        value = variables.get(token)

    return None if value is None else stringify(value)


def render_template(template: Optional[str], variables: Dict[str, Any],
                    contact: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """Substitute contact and variable tokens in ``template``.

    Examples:
        >>> render_template("Hi {{contact.firstName}}, score {{score}}",
        ...                 {"score": 7}, {"firstName": "Ana"})
        'Hi Ana, score 7'
        >>> render_template("{{missing}}", {}, {})
        '{{missing}}'
    """
    if not template:
        return template

    contact = contact or {}
    parts = []
    pos = 0

    while True:
        start = template.find(OPEN, pos)
        if start == -1:
            break
        end = template.find(CLOSE, start + len(OPEN))
        if end == -1:
            break

        token = template[start + len(OPEN):end]
        if not (_NAME.fullmatch(token) or token.startswith(CONTACT_PREFIX)):
            # Not a token; emit one brace and rescan from the next character
            parts.append(template[pos:start + 1])
            pos = start + 1
            continue

        parts.append(template[pos:start])
        replacement = _resolve_token(token, variables, contact)
        parts.append(template[start:end + len(CLOSE)] if replacement is None else replacement)
        pos = end + len(CLOSE)

    parts.append(template[pos:])
    return "".join(parts)


def render_value(value: Any, variables: Dict[str, Any],
                 contact: Optional[Dict[str, Any]] = None) -> Any:
    """Apply render_template to every string inside a JSON-like structure."""
    if isinstance(value, str):
        return render_template(value, variables, contact)
    if isinstance(value, dict):
        return {key: render_value(item, variables, contact) for key, item in value.items()}
    if isinstance(value, list):
        return [render_value(item, variables, contact) for item in value]
    return value
