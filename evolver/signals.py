"""Signal extraction.

Turns free-text context (logs, transcripts, memory snippets) plus recent
evolution history into a small ordered set of categorical tags. Detection
is a fixed set of heuristics, not general NLP: empty input simply yields no
tags.
"""

import logging
import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .types import HistoryAnalysis

logger = logging.getLogger(__name__)

OPPORTUNITY_SIGNALS = (
    "user_feature_request",
    "user_improvement_suggestion",
    "perf_bottleneck",
    "capability_gap",
    "stable_success_plateau",
    "external_opportunity",
    "recurring_error",
    "unsupported_input_type",
    "evolution_stagnation_detected",
    "repair_loop_detected",
    "force_innovation_after_repair_loop",
)

MISSING_RESOURCE_SIGNALS = (
    "memory_missing",
    "user_missing",
    "integration_key_missing",
    "session_logs_missing",
)

# Tags derived from history are never removed by history suppression
HISTORY_SIGNALS = frozenset(
    {
        "repair_loop_detected",
        "force_innovation_after_repair_loop",
        "evolution_stagnation_detected",
        "high_failure_rate",
        "signal_oscillation_detected",
    }
)

HISTORY_WINDOW = 10
FREQUENCY_WINDOW = 8
SUPPRESS_THRESHOLD = 3
RECURRING_THRESHOLD = 3
REPAIR_LOOP_THRESHOLD = 3
FORCE_INNOVATION_THRESHOLD = 5
STAGNATION_THRESHOLD = 3
HIGH_FAILURE_RATIO = 0.6
ERRSIG_MAX_LEN = 260

_ERROR_HIT = re.compile(
    r'\[error\]|error:|exception:|"iserror"\s*:\s*true|"status"\s*:\s*"error"|"status"\s*:\s*"failed"'
)
_ERROR_LINE = re.compile(
    r"\b(typeerror|referenceerror|syntaxerror|fatal\s+error)\b\s*:|error\s*:|exception\s*:|\[error",
    re.IGNORECASE,
)
_RECURRING_FRAGMENT = re.compile(r'(?:LLM error|"error"|"status":\s*"error")[^}]{0,200}', re.IGNORECASE)
_UNSUPPORTED_INPUT = re.compile(r"unsupported mime|unsupported.*type|invalid.*mime", re.IGNORECASE)
_FEATURE_REQUEST = re.compile(
    r"\b(add|implement|create|build|make|develop|write|design)\b[^.?!\n]{3,60}"
    r"\b(feature|function|module|capability|tool|support|endpoint|command|option|mode)\b",
    re.IGNORECASE,
)
_FEATURE_ASK = re.compile(
    r"\b(i want|i need|we need|please add|can you add|could you add|let'?s add)\b", re.IGNORECASE
)
_IMPROVEMENT = re.compile(
    r"\b(should be|could be better|improve|enhance|upgrade|refactor|clean up|simplify|streamline)\b",
    re.IGNORECASE,
)
_PERF = re.compile(
    r"\b(slow|timeout|timed?\s*out|latency|bottleneck|took too long|performance issue"
    r"|high cpu|high memory|oom|out of memory)\b",
    re.IGNORECASE,
)
_CAPABILITY_GAP = re.compile(
    r"\b(not supported|cannot|doesn'?t support|no way to|missing feature|unsupported"
    r"|not available|not implemented|no support for)\b",
    re.IGNORECASE,
)
# "100%" ends in a non-word character, so it cannot sit inside the \b group
_PLATEAU = re.compile(
    r"\b(all tests pass|stable|no errors|clean run|everything works|perfect)\b|\b100%",
    re.IGNORECASE,
)
_WHITESPACE = re.compile(r"\s+")


def signal_bucket(tag: str) -> str:
    """Collapse per-instance error signature tags into a shared bucket."""
    if tag.startswith("errsig:"):
        return "errsig"
    if tag.startswith("recurring_errsig"):
        return "recurring_errsig"
    return tag


def has_opportunity_signal(tags: Iterable[str]) -> bool:
    tag_set = set(tags)
    return any(opp in tag_set for opp in OPPORTUNITY_SIGNALS)


def _event_dict(event: Any) -> Dict[str, Any]:
    if isinstance(event, dict):
        return event
    to_dict = getattr(event, "to_dict", None)
    return to_dict() if callable(to_dict) else {}


def _is_empty_cycle(event: Dict[str, Any]) -> bool:
    meta = event.get("meta") or {}
    if meta.get("empty_cycle"):
        return True
    br = event.get("blast_radius")
    if br is None:
        return False
    return (br.get("files") or 0) == 0 and (br.get("lines") or 0) == 0


def _outcome_status(event: Dict[str, Any]) -> str:
    return str((event.get("outcome") or {}).get("status") or "")


def _trailing_run(items: Sequence[Dict[str, Any]], predicate) -> int:
    count = 0
    for item in reversed(items):
        if not predicate(item):
            break
        count += 1
    return count


class SignalExtractor:
    """Derive categorical tags from text and recent history."""

    def extract(
        self,
        context: str = "",
        history: Optional[Sequence[Any]] = None,
        *,
        session_transcript: str = "",
        today_log: str = "",
        memory_snippet: str = "",
        user_snippet: str = "",
    ) -> List[str]:
        """Return unique tags in detection order.

        Args:
            context: Primary free text.
            history: Recent EvolutionEvents (or their dicts), oldest first.
            session_transcript: Recent session transcript text.
            today_log: Today's log text.
            memory_snippet: Memory file excerpt.
            user_snippet: User profile excerpt.
        """
        parts = [context, session_transcript, today_log, memory_snippet, user_snippet]
        corpus = "\n".join(p for p in parts if p)
        lower = corpus.lower()
        tags: List[str] = []

        # Errors and missing resources
        error_hit = bool(_ERROR_HIT.search(lower))
        if error_hit:
            tags.append("log_error")

        errsig = self._error_signature(corpus)
        if errsig:
            tags.append("errsig:" + errsig)

        if "memory.md missing" in lower:
            tags.append("memory_missing")
        if "user.md missing" in lower:
            tags.append("user_missing")
        if "key missing" in lower:
            tags.append("integration_key_missing")
        if "no session logs found" in lower or "no jsonl files" in lower:
            tags.append("session_logs_missing")

        if "prompt" in lower and "evolutionevent" not in lower:
            tags.append("protocol_drift")

        tags.extend(self._recurring_errors(corpus))

        if _UNSUPPORTED_INPUT.search(lower):
            tags.append("unsupported_input_type")

        # Opportunities
        if _FEATURE_REQUEST.search(corpus) or _FEATURE_ASK.search(lower):
            tags.append("user_feature_request")
        if not error_hit and _IMPROVEMENT.search(lower):
            tags.append("user_improvement_suggestion")
        if _PERF.search(lower):
            tags.append("perf_bottleneck")
        if not any(t in tags for t in MISSING_RESOURCE_SIGNALS) and _CAPABILITY_GAP.search(lower):
            tags.append("capability_gap")
        if _PLATEAU.search(lower):
            tags.append("stable_success_plateau")

        if history:
            analysis = self.analyze_recent_history(history)
            if analysis.consecutive_repair_count >= REPAIR_LOOP_THRESHOLD:
                tags.append("repair_loop_detected")
            if analysis.consecutive_repair_count >= FORCE_INNOVATION_THRESHOLD:
                tags.append("force_innovation_after_repair_loop")
            if analysis.consecutive_empty_cycles >= STAGNATION_THRESHOLD:
                tags.append("evolution_stagnation_detected")
            if analysis.recent_failure_ratio > HIGH_FAILURE_RATIO:
                tags.append("high_failure_rate")
            if len(analysis.oscillating_signals) >= 2:
                tags.append("signal_oscillation_detected")

            if analysis.suppressed_signals:
                before = len(tags)
                tags = [
                    t
                    for t in tags
                    if t in HISTORY_SIGNALS
                    or signal_bucket(t) not in analysis.suppressed_signals
                ]
                if len(tags) != before:
                    logger.debug(f"Suppressed {before - len(tags)} stale signal(s)")

        return list(dict.fromkeys(tags))

    def _error_signature(self, corpus: str) -> Optional[str]:
        for raw in corpus.split("\n"):
            line = raw.strip()
            if line and _ERROR_LINE.search(line):
                return _WHITESPACE.sub(" ", line)[:ERRSIG_MAX_LEN]
        return None

    def _recurring_errors(self, corpus: str) -> List[str]:
        counts: Counter = Counter()
        for match in _RECURRING_FRAGMENT.finditer(corpus):
            counts[_WHITESPACE.sub(" ", match.group(0))[:100]] += 1
        recurring = [(key, n) for key, n in counts.most_common() if n >= RECURRING_THRESHOLD]
        if not recurring:
            return []
        top_key, top_count = recurring[0]
        return ["recurring_error", f"recurring_errsig({top_count}x):{top_key[:150]}"]

    def analyze_recent_history(self, events: Sequence[Any]) -> HistoryAnalysis:
        """Loop, stagnation and fixation diagnostics over the last few events."""
        if not events:
            return HistoryAnalysis()

        recent = [_event_dict(e) for e in list(events)[-HISTORY_WINDOW:]]
        tail = recent[-FREQUENCY_WINDOW:]

        signal_freq: Counter = Counter()
        gene_freq: Counter = Counter()
        failures = 0
        for event in tail:
            for tag in event.get("signals") or []:
                signal_freq[signal_bucket(str(tag))] += 1
            for gene_id in event.get("genes_used") or []:
                gene_freq[str(gene_id)] += 1
            if _outcome_status(event) == "failed":
                failures += 1

        # Positions of each bucket across the full window
        positions: Dict[str, List[int]] = {}
        for index, event in enumerate(recent):
            for bucket in {signal_bucket(str(t)) for t in event.get("signals") or []}:
                positions.setdefault(bucket, []).append(index)
        oscillating = [
            bucket
            for bucket, idx in positions.items()
            if len(idx) >= 2 and idx[-1] - idx[0] >= 2
        ]

        return HistoryAnalysis(
            suppressed_signals={s for s, n in signal_freq.items() if n >= SUPPRESS_THRESHOLD},
            recent_intents=[str(e.get("intent") or "unknown") for e in recent],
            consecutive_repair_count=_trailing_run(recent, lambda e: e.get("intent") == "repair"),
            consecutive_empty_cycles=_trailing_run(recent, _is_empty_cycle),
            consecutive_failure_count=_trailing_run(
                recent, lambda e: _outcome_status(e) == "failed"
            ),
            recent_failure_count=failures,
            recent_failure_ratio=failures / len(tail) if tail else 0.0,
            signal_freq=dict(signal_freq),
            gene_freq=dict(gene_freq),
            oscillating_signals=sorted(oscillating),
        )
