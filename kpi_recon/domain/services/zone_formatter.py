"""
Zone/Code Formatter - Canonical project full codes and zone labels.

Stored zones were written by several generations of forms and hold
"<full code> - <n>", bare "<n>", or "<project code>-<subpart>-<n>".
`format_zone` folds all of them into "<full code> - <n>"; it is
deterministic and never raises, so formatted values can be compared for
equality.
"""
from typing import Optional


def build_project_full_code(project_code: Optional[str], sub_code: Optional[str]) -> str:
    """
    Derive a project full code from its code and sub code.

    ("P100", "01") -> "P100-01"; a sub code that already starts with the
    project code is returned as-is; a leading dash is not doubled.
    """
    code = (project_code or "").strip()
    sub = (sub_code or "").strip()
    if not sub:
        return code
    if not code or sub.startswith(code):
        return sub
    if sub.startswith("-"):
        return f"{code}{sub}"
    return f"{code}-{sub}"


def project_code_of(project_full_code: str) -> str:
    """Leading project code of a full code ("P100-01" -> "P100")."""
    return (project_full_code or "").strip().split("-", 1)[0].strip()


def format_zone(
    project_full_code: Optional[str],
    raw_zone: Optional[str],
    project_code: Optional[str] = None,
) -> str:
    """
    Format a raw zone fragment as "<project full code> - <zone>".

    Args:
        project_full_code: Full code of the owning project
        raw_zone: Zone value as stored or typed
        project_code: Short project code; derived from the full code if omitted

    Returns:
        The canonical zone, the input unchanged if it already contains the
        full code, or "" for an empty fragment.
    """
    text = "" if raw_zone is None else str(raw_zone).strip()
    if not text:
        return ""

    full_code = (project_full_code or "").strip()
    if full_code and full_code in text:
        return text

    code = (project_code or "").strip() or project_code_of(full_code)
    for prefix in (full_code, code):
        if prefix and text.startswith(prefix):
            text = text[len(prefix):]
            break
    text = text.strip(" -")

    tokens = [token.strip() for token in text.split("-") if token.strip()]
    if not tokens:
        return ""
    base = tokens[-1]
    if not full_code:
        return base
    return f"{full_code} - {base}"
