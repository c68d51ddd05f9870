"""``$VAR`` / ``${VAR}`` expansion for values coming from the build environment."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping

logger = logging.getLogger(__name__)

_MACRO_PATTERN = re.compile(r"\$(?:\{([^}]+)\}|([A-Za-z0-9_]+))")


def expand_macros(text: str, variables: Mapping[str, str]) -> str:
    """Replace ``$NAME`` and ``${NAME}`` with values from ``variables``.

    Unknown names are left untouched. Anything that is not a string comes
    back unchanged, so a bad value never aborts an allocation.
    """
    if not isinstance(text, str) or "$" not in text:
        return text

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        value = variables.get(name)
        if value is None:
            logger.debug("macro %s has no value, keeping it", name)
            return match.group(0)
        return str(value)

    return _MACRO_PATTERN.sub(_replace, text)
