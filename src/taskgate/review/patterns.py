"""Pattern tables used by the quality criteria.

New signals are added by extending these tuples.
"""

from __future__ import annotations

import re

OMISSION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\.\.\.(?!\s*\w)"),
    re.compile(r"//\s*残り省略"),
    re.compile(r"//\s*etc\.", re.I),
    re.compile(r"//\s*以下同様"),
    re.compile(r"/\*\s*省略\s*\*/"),
    re.compile(r"//\s*\.\.\."),
    re.compile(r"//\s*remaining", re.I),
    re.compile(r"//\s*and so on", re.I),
    re.compile(r"//\s*続く"),
    re.compile(r"//\s*以下略"),
)

EARLY_TERMINATION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"これで完了です"),
    re.compile(r"以上です"),
    re.compile(r"完了しました"),
    re.compile(r"This completes", re.I),
    re.compile(r"^Done\.$", re.M),
    re.compile(r"That's all", re.I),
    re.compile(r"作業は終了です"),
    re.compile(r"実装完了"),
)

TODO_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bTODO\b", re.I),
    re.compile(r"\bFIXME\b", re.I),
    re.compile(r"\bTBD\b", re.I),
    re.compile(r"\bHACK\b", re.I),
    re.compile(r"\bXXX\b"),
)

TRUNCATION_MARKERS: tuple[str, ...] = ("truncated", "cut off")

FENCED_CODE_BLOCK = re.compile(r"```[\s\S]*?```")

BRACKET_PAIRS: tuple[tuple[str, str, str], ...] = (
    ("braces", "{", "}"),
    ("brackets", "[", "]"),
    ("parentheses", "(", ")"),
)
