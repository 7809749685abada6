"""Resolution of the API URL, key and TLS setting from arguments, environment and rc files."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .errors import CdsError

_RC_NAME = ".cdsapirc"


@dataclass
class ClientConfig:
    """Resolved client settings."""

    url: str
    key: str
    verify: bool = True


@dataclass
class _RcSettings:
    url: Optional[str] = None
    key: Optional[str] = None
    verify: Optional[bool] = None


def strip_quotes(s: str) -> str:
    """Trim ``s`` and remove one pair of surrounding single or double quotes."""
    s = s.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in "\"'":
        return s[1:-1]
    return s


def read_rc(path: Union[str, Path]) -> _RcSettings:
    """Read ``url``, ``key`` and ``verify`` from an rc file.

    A ``url:`` or ``key:`` line with no value takes its value from the next
    line, provided that line holds no colon.
    """
    text = Path(path).read_text(encoding="utf-8")
    settings = _RcSettings()
    pending: Optional[str] = None

    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        if pending is not None:
            if ":" not in line:
                setattr(settings, pending, strip_quotes(line))
                pending = None
                continue
            pending = None

        name, sep, value = line.partition(":")
        if not sep:
            continue
        name = name.strip()
        value = strip_quotes(value.strip())
        if name in ("url", "key"):
            if value:
                setattr(settings, name, value)
            else:
                pending = name
        elif name == "verify" and value:
            settings.verify = value != "0"

    return settings


def rc_candidates() -> List[Path]:
    """Paths searched for an rc file: ``CDSAPI_RC`` alone, else cwd then home."""
    explicit = os.environ.get("CDSAPI_RC")
    if explicit is not None:
        return [Path(explicit)]

    candidates: List[Path] = []
    try:
        candidates.append(Path.cwd() / _RC_NAME)
    except OSError:
        pass
    try:
        candidates.append(Path.home() / _RC_NAME)
    except (RuntimeError, KeyError):
        pass
    return candidates


def _missing(setting: str, env_name: str, candidates: List[Path]) -> CdsError:
    if candidates:
        paths = ", ".join(str(p) for p in candidates)
        return CdsError(
            f"Missing configuration: {setting} (set {env_name} or put `{setting}:` in one of: {paths})"
        )
    return CdsError(f"Missing configuration: {setting} (set {env_name} or create .cdsapirc)")


def load_config(
    url: Optional[str] = None,
    key: Optional[str] = None,
    verify: Optional[bool] = None,
) -> ClientConfig:
    """Resolve settings: explicit arguments, then environment, then the first rc file found."""
    if url is None:
        url = os.environ.get("CDSAPI_URL")
    if key is None:
        key = os.environ.get("CDSAPI_KEY")

    candidates = rc_candidates()
    file_verify: Optional[bool] = None

    if url is None or key is None or verify is None:
        for path in candidates:
            if not path.exists():
                continue
            try:
                settings = read_rc(path)
            except (OSError, UnicodeDecodeError) as exc:
                raise CdsError(f"failed to read configuration file {path}: {exc}") from exc
            if url is None:
                url = settings.url
            if key is None:
                key = settings.key
            file_verify = settings.verify
            break

    if url is None:
        raise _missing("url", "CDSAPI_URL", candidates)
    if key is None:
        raise _missing("key", "CDSAPI_KEY", candidates)

    if verify is None:
        verify = file_verify if file_verify is not None else True
    return ClientConfig(url=url, key=key, verify=verify)