# store_audit/base_utils.py
import json
import logging
import re

logger = logging.getLogger("store_audit")

_ANSI = {"red": "31", "green": "32", "yellow": "33", "blue": "34", "cyan": "36"}
_CODE_FENCE = re.compile(r"```[a-zA-Z]*\n?")
_PLACEHOLDER = re.compile(r"\{(\w+)\}")


class BaseUtils():
    """Text helpers shared by the dispatcher and the action-plan drafter."""

    def log_highlight(self, text, color=None):
        code = _ANSI.get((color or "").lower())
        logger.info(f"\033[{code}m{text}\033[0m" if code else str(text))

    def strip_code_fences(self, text) -> str:
        """Models like to wrap plain answers in ```markdown fences; drop them."""
        return _CODE_FENCE.sub("", text or "")

    def as_text(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        try:
            return json.dumps(value, indent=2, ensure_ascii=False)
        except TypeError:
            return str(value).strip()

    def fill_placeholders(self, template, **values):
        """
        str.format that only touches the {name} keys it is given.
        Prompts carry literal braces, and an unknown key is left as is.
        """
        unknown = set()

        def _sub(match):
            key = match.group(1)
            if key in values:
                return str(values[key])
            unknown.add(key)
            return match.group(0)

        out = _PLACEHOLDER.sub(_sub, template)
        if unknown:
            logger.debug(f"fill_placeholders left untouched: {', '.join(sorted(unknown))}")
        return out
