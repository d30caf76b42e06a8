"""Detect agent output that ends with a question for the user."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

QUESTION_THRESHOLD = 0.6


@dataclass(slots=True, frozen=True)
class QuestionPattern:
    pattern: re.Pattern[str]
    weight: float
    description: str


QUESTION_PATTERNS: tuple[QuestionPattern, ...] = (
    QuestionPattern(
        re.compile(r"どう(します|しましょう)か"),
        0.8,
        "JP: how shall we proceed",
    ),
    QuestionPattern(
        re.compile(r"どちら(にしますか|を選びますか)"),
        0.9,
        "JP: which one",
    ),
    QuestionPattern(
        re.compile(r"よろしい(です)?か"),
        0.8,
        "JP: is this acceptable",
    ),
    QuestionPattern(
        re.compile(r"確認(させて)?ください"),
        0.7,
        "JP: please confirm",
    ),
    QuestionPattern(
        re.compile(r"教えてください"),
        0.6,
        "JP: please tell me",
    ),
    QuestionPattern(
        re.compile(r"お知らせください"),
        0.7,
        "JP: please let me know",
    ),
    QuestionPattern(
        re.compile(r"選んでください"),
        0.9,
        "JP: please choose",
    ),
    QuestionPattern(
        re.compile(r"お選びください"),
        0.9,
        "JP: please choose (polite)",
    ),
    QuestionPattern(
        re.compile(r"いかがでしょうか"),
        0.7,
        "JP: how about",
    ),
    QuestionPattern(
        re.compile(r"ご希望"),
        0.6,
        "JP: your preference",
    ),
    QuestionPattern(
        re.compile(r"しますか[？?]?"),
        0.7,
        "JP: will you",
    ),
    QuestionPattern(
        re.compile(r"please (let me know|confirm|clarify)", re.I),
        0.7,
        "EN: please let me know",
    ),
    QuestionPattern(
        re.compile(r"could you (please )?(specify|clarify)", re.I),
        0.7,
        "EN: could you specify",
    ),
    QuestionPattern(re.compile(r"which (option|approach|method)", re.I), 0.6, "EN: which option"),
    QuestionPattern(re.compile(r"do you (want|prefer|need)", re.I), 0.7, "EN: do you want"),
    QuestionPattern(
        re.compile(r"should I (proceed|continue|use)", re.I),
        0.6,
        "EN: should I proceed",
    ),
    QuestionPattern(re.compile(r"would you like", re.I), 0.7, "EN: would you like"),
    QuestionPattern(
        re.compile(r"can you (tell|specify|provide)", re.I),
        0.6,
        "EN: can you tell",
    ),
    QuestionPattern(re.compile(r"what (do you|would you)", re.I), 0.7, "EN: what do you"),
    QuestionPattern(re.compile(r"how (do you|would you|should)", re.I), 0.6, "EN: how do you"),
)

OPTION_PATTERNS: tuple[QuestionPattern, ...] = (
    QuestionPattern(re.compile(r"[1-9]\)\s+\S"), 0.3, "Numbered option: 1)"),
    QuestionPattern(re.compile(r"[A-D]\)\s+\S"), 0.3, "Lettered option: A)"),
    QuestionPattern(re.compile(r"オプション\s*[1-9A-Z]", re.I), 0.4, "JP: option N"),
    QuestionPattern(
        re.compile(r"選択肢"),
        0.3,
        "JP: choices",
    ),
)

AWAITING_INDICATORS: tuple[QuestionPattern, ...] = (
    QuestionPattern(
        re.compile(r"選んでください"),
        0.5,
        "JP: please choose",
    ),
    QuestionPattern(
        re.compile(r"お選びください"),
        0.5,
        "JP: please choose (polite)",
    ),
    QuestionPattern(re.compile(r"please (select|choose)", re.I), 0.5, "EN: please select"),
    QuestionPattern(re.compile(r"which.*prefer", re.I), 0.4, "EN: which prefer"),
)

QUESTION_MARK_PATTERNS: tuple[QuestionPattern, ...] = (
    QuestionPattern(re.compile(r"\?\s*$", re.M), 0.4, "Ends with question mark"),
    QuestionPattern(re.compile(r"\?[ \t]*\n"), 0.3, "Question mark at line end"),
)

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")


@dataclass(slots=True)
class QuestionDetection:
    has_questions: bool
    confidence: float
    matched_patterns: list[str] = field(default_factory=list)


def detect_questions(output: str | None) -> QuestionDetection:
    """Score how likely the output is waiting on user input; code blocks are ignored."""

    if not output:
        return QuestionDetection(has_questions=False, confidence=0.0)

    text = _CODE_BLOCK.sub("", output)
    total = 0.0
    matched: list[str] = []
    for item in (*QUESTION_PATTERNS, *QUESTION_MARK_PATTERNS):
        if item.pattern.search(text):
            total += item.weight
            matched.append(item.description)

    option = next((item for item in OPTION_PATTERNS if item.pattern.search(text)), None)
    if option is not None:
        matched.append(option.description)
        for item in AWAITING_INDICATORS:
            if item.pattern.search(text):
                total += item.weight
                matched.append(f"{item.description} (with options)")

    confidence = min(total, 1.0)
    return QuestionDetection(
        has_questions=confidence >= QUESTION_THRESHOLD,
        confidence=confidence,
        matched_patterns=matched,
    )


def extract_question(output: str) -> str:
    """Last non-empty line outside code blocks, used as the stored clarification."""

    text = _CODE_BLOCK.sub("", output)
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    question_lines = [line for line in lines if line.endswith(("?", "？"))]
    if question_lines:
        return question_lines[-1]
    return lines[-1] if lines else ""
