"""Deterministic classification of skill output into loop signals.

Rules are plain tables so new phrasings or languages only add rows. The
classifier never raises and depends on nothing but the captured stdout
(plus the echoed command for the summary).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from skill_bridge.orchestrator.backend.base import ExecutionResult
from skill_bridge.orchestrator.models import ClassificationSignal, SignalKind

logger = logging.getLogger(__name__)

SUMMARY_EXCERPT_CHARS = 200
EXPLICIT_MARKER_WEIGHT = 0.6
LONG_PHASE_WEIGHT = 0.2
CONTINUATION_KEYWORD_WEIGHT = 0.2
LONG_PHASE_MIN_CHARS = 10

_FLAGS = re.IGNORECASE | re.MULTILINE


@dataclass(frozen=True, slots=True)
class PatternRule:
    """Named set of patterns that maps onto one signal kind."""

    name: str
    kind: SignalKind
    patterns: tuple[re.Pattern[str], ...]

    def first_match(self, text: str) -> str | None:
        for pattern in self.patterns:
            if pattern.search(text):
                return pattern.pattern
        return None


@dataclass(frozen=True, slots=True)
class PhaseMarker:
    """Labelled marker announcing the next phase; group 1 holds the phase text."""

    label: str
    pattern: re.Pattern[str]


COMPLETION_RULE = PatternRule(
    name="completion",
    kind=SignalKind.COMPLETED,
    patterns=(
        re.compile(r"完成|任务结束|没有下一阶段|没有下一步"),
        re.compile(r"\b(?:completed|done|finished|success(?:ful|fully)?)\b", _FLAGS),
        re.compile(r"\btask\s+(?:completed|done)\b", _FLAGS),
        re.compile(r"\bno\s+next\s+(?:phase|step)\b", _FLAGS),
    ),
)

ERROR_RULE = PatternRule(
    name="error",
    kind=SignalKind.ERRORED,
    patterns=(
        re.compile(r"错误|异常|失败"),
        re.compile(r"\b(?:errors?|failed|failures?)\b", _FLAGS),
        re.compile(r"\b(?:exceptions?|crash(?:ed)?)\b", _FLAGS),
    ),
)

INPUT_RULE = PatternRule(
    name="needs_input",
    kind=SignalKind.NEEDS_INPUT,
    patterns=(
        re.compile(r"请输入|等待"),
        re.compile(r"\b(?:please\s+input|enter\s+your|waiting|awaiting)\b", _FLAGS),
        re.compile(r"[?？]\s*\Z"),
    ),
)

SIGNAL_RULES: tuple[PatternRule, ...] = (COMPLETION_RULE, ERROR_RULE, INPUT_RULE)

NEXT_PHASE_MARKERS: tuple[PhaseMarker, ...] = (
    PhaseMarker("next_phase", re.compile(r"NEXT_PHASE\s*[:：]\s*([^\n]+)", _FLAGS)),
    PhaseMarker("next_goal", re.compile(r"NEXT_GOAL\s*[:：]\s*([^\n]+)", _FLAGS)),
    PhaseMarker(
        "next_step",
        re.compile(r"(?:下一阶段|下一步|next[\s_]*phase|next[\s_]*step)\s*[:：]\s*([^\n]+)", _FLAGS),
    ),
    PhaseMarker(
        "phase_goal",
        re.compile(r"(?:阶段目标|phase\s*goal|step\s*goal)\s*[:：]\s*([^\n]+)", _FLAGS),
    ),
    PhaseMarker("continue", re.compile(r"(?:继续|continue)\s*[:：]\s*([^\n]+)", _FLAGS)),
)

CONTINUATION_KEYWORDS = re.compile(r"继续|下一步|\bcontinue\b|\bnext\s+step\b", _FLAGS)


@dataclass(frozen=True, slots=True)
class PhaseExtraction:
    text: str
    marker: str | None

    @property
    def explicit(self) -> bool:
        return self.marker is not None


class OutputClassifier:
    """Turn captured stdout into a `ClassificationSignal`."""

    def __init__(
        self,
        *,
        rules: tuple[PatternRule, ...] = SIGNAL_RULES,
        markers: tuple[PhaseMarker, ...] = NEXT_PHASE_MARKERS,
        use_last_line_fallback: bool = True,
    ) -> None:
        self.rules = rules
        self.markers = markers
        self.use_last_line_fallback = use_last_line_fallback

    def matched_kinds(self, text: str) -> set[SignalKind]:
        """Kinds of every rule whose patterns match `text`."""

        stripped = text.strip()
        return {rule.kind for rule in self.rules if rule.first_match(stripped) is not None}

    def classify(self, result: ExecutionResult) -> ClassificationSignal:
        stdout = result.stdout or ""
        hits = self.matched_kinds(stdout)
        completed = SignalKind.COMPLETED in hits
        has_error = SignalKind.ERRORED in hits
        needs_input = SignalKind.NEEDS_INPUT in hits

        extraction = None if completed else self.extract_next_phase(stdout)
        if completed:
            kind = SignalKind.COMPLETED
            confidence = 1.0
        elif extraction is not None:
            kind = SignalKind.CONTINUE
            confidence = self.confidence(stdout, extraction)
        elif has_error:
            kind = SignalKind.ERRORED
            confidence = 1.0
        else:
            kind = SignalKind.NEEDS_INPUT
            confidence = 1.0 if needs_input else 0.0

        next_phase = extraction.text if extraction is not None else None
        signal = ClassificationSignal(
            kind=kind,
            next_phase=next_phase,
            confidence=confidence,
            summary=build_summary(
                result=result,
                kind=kind,
                has_error=has_error,
                needs_input=needs_input,
                next_phase=next_phase,
            ),
            has_error=has_error,
            needs_input=needs_input,
            explicit_marker=extraction is not None and extraction.explicit,
        )
        logger.info(
            "Classified output conversation=%s kind=%s next_phase=%r confidence=%.2f "
            "has_error=%s needs_input=%s",
            result.conversation_id,
            signal.kind.value,
            signal.next_phase,
            signal.confidence,
            signal.has_error,
            signal.needs_input,
        )
        return signal

    def extract_next_phase(self, stdout: str) -> PhaseExtraction | None:
        """Return the first labelled marker, else the last-line fallback."""

        for marker in self.markers:
            match = marker.pattern.search(stdout)
            if match is None:
                continue
            text = match.group(1).strip()
            if text:
                return PhaseExtraction(text=text, marker=marker.label)

        if not self.use_last_line_fallback:
            return None
        lines = [line.strip() for line in stdout.splitlines() if line.strip()]
        if not lines:
            return None
        last_line = lines[-1]
        if self.matched_kinds(last_line) & {SignalKind.COMPLETED, SignalKind.ERRORED}:
            return None
        return PhaseExtraction(text=last_line, marker=None)

    def confidence(self, stdout: str, extraction: PhaseExtraction) -> float:
        score = 0.0
        if extraction.explicit:
            score += EXPLICIT_MARKER_WEIGHT
        if len(extraction.text) > LONG_PHASE_MIN_CHARS:
            score += LONG_PHASE_WEIGHT
        if CONTINUATION_KEYWORDS.search(stdout):
            score += CONTINUATION_KEYWORD_WEIGHT
        return round(min(score, 1.0), 4)


_STATUS_LINES: dict[SignalKind, str] = {
    SignalKind.COMPLETED: "✅ Task completed",
    SignalKind.ERRORED: "❌ Execution reported an error",
    SignalKind.NEEDS_INPUT: "❓ Waiting for input",
    SignalKind.CONTINUE: "⏳ In progress",
}


def build_summary(
    *,
    result: ExecutionResult,
    kind: SignalKind,
    has_error: bool,
    needs_input: bool,
    next_phase: str | None,
) -> str:
    """Compose the human-readable status block for one classified run."""

    status_kind = SignalKind.ERRORED if has_error else kind
    if needs_input and status_kind is SignalKind.CONTINUE:
        status_kind = SignalKind.NEEDS_INPUT
    lines = [_STATUS_LINES[status_kind]]
    if result.command:
        lines.append(f"Command: {result.command}")
    if next_phase:
        lines.append(f"Next phase: {next_phase}")
    if result.stdout:
        excerpt = result.stdout.replace("\n", " ")[:SUMMARY_EXCERPT_CHARS]
        lines.append(f"Output: {excerpt}...")
    return "\n".join(lines).strip()


DEFAULT_CLASSIFIER = OutputClassifier()


def classify(result: ExecutionResult) -> ClassificationSignal:
    """Classify with the default rule tables."""

    return DEFAULT_CLASSIFIER.classify(result)
