# backend/ranker/core/utils.py
"""
Generic helpers used across the pipeline.

Includes:
- content hashing + canonical JSON (document dedup, webhook signatures)
- safe JSON extraction from noisy LLM output (first balanced object)
- experience / date helpers used when reconciling extraction payloads
- small string utils
"""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

# -------- Hashing + canonical JSON -------------------------------------------

def canonical_json(obj: Any) -> str:
    """Stable serialization: sorted keys, compact separators, UTF-8 kept."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def content_hash(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()

# -------- JSON + strings -----------------------------------------------------

def first_json_object(s: Optional[str]) -> Optional[str]:
    """
    Return the first balanced `{...}` substring of `s`, or None.
    Braces inside JSON strings (including escaped quotes) are ignored.
    """
    if not s:
        return None
    start = s.find("{")
    while start != -1:
        depth = 0
        in_str = False
        escaped = False
        for i in range(start, len(s)):
            ch = s[i]
            if in_str:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_str = False
                continue
            if ch == '"':
                in_str = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return s[start : i + 1]
        # unbalanced from this brace; try the next one
        start = s.find("{", start + 1)
    return None


def json_loose(s: Optional[str]) -> Any:
    """
    Parse a possibly noisy LLM response and return the first JSON object.
    Raises ValueError when nothing parseable is found.
    """
    text = (s or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```[\w-]*\s*", "", text)
        text = re.sub(r"\s*```$", "", text).strip()
    try:
        return json.loads(text)
    except ValueError:
        pass
    frag = first_json_object(text)
    if frag is None:
        raise ValueError("No JSON object found in response")
    return json.loads(frag)


def clip(s: Optional[str], n: int = 1200) -> str:
    if not s:
        return ""
    s = str(s)
    return s if len(s) <= n else s[:n]


def uniq_preserve(xs: Iterable[str]) -> List[str]:
    """Case-insensitive dedup that keeps the first spelling and the order."""
    seen: set[str] = set()
    out: List[str] = []
    for x in xs or []:
        k = str(x).strip()
        if not k or k.lower() in seen:
            continue
        seen.add(k.lower())
        out.append(k)
    return out

# -------- Experience + dates ------------------------------------------------

_YEARS_PAT = re.compile(r"(\d+)\s*\+?\s*(?:years|yrs|year|yr)", re.I)


def years_min_from(texts: Optional[Iterable[str]]) -> Optional[int]:
    """First "N years"/"N+ yrs" figure found in a list of requirement strings."""
    for t in texts or []:
        m = _YEARS_PAT.search(str(t))
        if m:
            return int(m.group(1))
    return None


def parse_years(value: Any) -> float:
    """'5+' -> 5, '12 years' -> 12, 7 -> 7, junk -> 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return max(0.0, float(value))
    m = re.search(r"\d+(?:\.\d+)?", str(value))
    return float(m.group(0)) if m else 0.0


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_date_soft(s: Optional[str]) -> Optional[datetime]:
    """Best-effort parse for resume dates; supports 'Present/Current'."""
    if not s:
        return None
    tl = str(s).strip().lower()
    if any(k in tl for k in ["present", "current", "now"]):
        return now_utc()
    from dateutil import parser as _dp
    try:
        dt = _dp.parse(tl, default=datetime(2000, 1, 1), fuzzy=True)
        if 1900 <= dt.year <= 2100:
            return datetime(dt.year, dt.month if dt.month else 1, 1)
    except (ValueError, OverflowError):
        pass
    m = re.search(r"(20\d{2}|19\d{2})", tl)
    if m:
        return datetime(int(m.group(1)), 1, 1)
    return None


def estimate_years(date_range: Optional[str]) -> float:
    """'2019 - present' -> whole years between the two ends (0 when unknown)."""
    if not date_range:
        return 0.0
    parts = re.split(r"\s+-\s+|\s*[–—]\s*|\s+to\s+", str(date_range).strip(), maxsplit=1)
    start = parse_date_soft(parts[0])
    end = parse_date_soft(parts[1]) if len(parts) > 1 else None
    if not start:
        return 0.0
    end = end or start
    months = max(0, (end.year - start.year) * 12 + (end.month - start.month))
    return float(months // 12)


__all__ = [
    "canonical_json", "content_hash",
    "first_json_object", "json_loose", "clip", "uniq_preserve",
    "years_min_from", "parse_years", "now_utc", "parse_date_soft", "estimate_years",
]
