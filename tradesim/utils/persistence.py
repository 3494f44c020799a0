"""
State persistence utilities.

Live runs need to remember their ledgers across invocations: capital,
open positions and the trade log.  This module provides simple
JSON-based load/save functions for that purpose.  Writes go through a
temporary file and an atomic rename so that a crash mid-write never
leaves a truncated state file behind.
"""

from __future__ import annotations

import json
import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional


def _default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serialisable")


def load_state(path: str) -> Optional[Dict[str, Any]]:
    """Load a JSON state file.

    Parameters
    ----------
    path : str
        Path to the JSON file.

    Returns
    -------
    dict or None
        The state dictionary, or `None` if the file does not exist or
        is empty.

    Raises
    ------
    OSError
        If the file exists but cannot be read.
    ValueError
        If the content is not a JSON object.
    """
    file_path = Path(path)
    if not file_path.exists():
        return None
    with file_path.open("r", encoding="utf-8") as fh:
        raw = fh.read()
    if not raw.strip():
        return None
    state = json.loads(raw)
    if not isinstance(state, dict):
        raise ValueError(f"State file {path} does not contain a JSON object")
    return state


def save_state(path: str, state: Dict[str, Any]) -> None:
    """Write a JSON state file to disk.

    Parameters
    ----------
    path : str
        Path to the output file.
    state : dict
        State dictionary.  Decimals and dates are written as strings.
    """
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=file_path.name + ".", suffix=".tmp", dir=str(file_path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(state, fh, ensure_ascii=False, indent=2, sort_keys=True, default=_default)
        os.replace(tmp_name, file_path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise
