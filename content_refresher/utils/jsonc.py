# content_refresher/utils/jsonc.py
import json
import os
import re
from pathlib import Path
from typing import Any, Union

# Strip // line comments and /* ... */ block comments
_LINE = re.compile(r"^\s*//.*$", re.MULTILINE)
_BLOCK = re.compile(r"/\*.*?\*/", re.DOTALL)
# remove a trailing comma just before } or ]
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_ENV_TOKEN = re.compile(r"\$\{([^}]+)\}")


def loads_jsonc(text: str) -> Any:
    text = _BLOCK.sub("", _LINE.sub("", text or ""))
    text = _TRAILING_COMMA.sub(r"\1", text)
    return json.loads(text)


def resolve_env_placeholders(obj: Any) -> Any:
    """
    After JSON parse, if a string equals "${VAR}" replace with env value
    (or keep original string if env missing).
    """
    if isinstance(obj, dict):
        return {k: resolve_env_placeholders(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [resolve_env_placeholders(v) for v in obj]
    if isinstance(obj, str):
        m = _ENV_TOKEN.fullmatch(obj.strip())
        if m:
            return os.getenv(m.group(1), obj)
    return obj


def load_jsonc(path: Union[str, Path]) -> Any:
    """
    Read JSON that may contain // or /* */ comments and trailing commas,
    then expand "${ENV}" string values.
    """
    text = Path(path).read_text(encoding="utf-8")
    return resolve_env_placeholders(loads_jsonc(text))
