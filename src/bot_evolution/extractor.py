"""Line-oriented extraction of typed events from raw trial logs."""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from .events import Event, EventKind

_NAME = r"[\w.-]"

TIME_PREFIX = re.compile(
    r"^\s*\[(?:(?P<minutes>\d+):)?(?P<seconds>\d+(?:\.\d+)?)\]\s*",
)


@dataclass(frozen=True)
class ExtractionRule:
    """Pattern plus the named groups a match must fill to count."""

    kind: EventKind
    pattern: re.Pattern[str]
    required: tuple[str, ...] = ("entity",)
    # Used when the pattern has no entity group (e.g. game start).
    default_entity: str | None = None

    def build(self, text: str, timestamp: float, timed: bool) -> Event | None:
        match = self.pattern.search(text)
        if match is None:
            return None
        groups = match.groupdict()
        for name in self.required:
            if not groups.get(name):
                return None
        entity = groups.get("entity") or self.default_entity
        if not entity:
            return None
        amount: float | None = None
        raw_amount = groups.get("amount")
        if raw_amount:
            try:
                amount = float(raw_amount)
            except ValueError:
                return None
        return Event(
            kind=self.kind,
            entity=entity,
            timestamp=timestamp,
            timed=timed,
            amount=amount,
            target=groups.get("target") or None,
        )


def _rule(
    kind: EventKind,
    pattern: str,
    required: tuple[str, ...] = ("entity",),
    default_entity: str | None = None,
) -> ExtractionRule:
    return ExtractionRule(
        kind=kind,
        pattern=re.compile(pattern, re.IGNORECASE),
        required=required,
        default_entity=default_entity,
    )


# Priority order: the first rule that builds an event wins.
DEFAULT_RULES: tuple[ExtractionRule, ...] = (
    _rule("game_end", rf"\bgame over:?\s+(?P<entity>{_NAME}*)\s+(?:wins|won|victory)\b"),
    _rule("game_start", r"\bgame (?:started|start)\b", required=(), default_entity="game"),
    _rule(
        "structure_destroyed",
        rf"\bbuilding:\s*(?P<entity>{_NAME}*)\s*destroyed(?:\s+by\s+(?P<target>{_NAME}+))?",
    ),
    _rule(
        "assist",
        rf"(?P<entity>{_NAME}+)\s+assisted(?:\s+in\s+killing)?\s+(?P<target>{_NAME}*)",
        required=("entity", "target"),
    ),
    _rule(
        "kill",
        rf"(?P<entity>{_NAME}+)\s+killed\s+(?P<target>{_NAME}*)",
        required=("entity", "target"),
    ),
    _rule(
        "gold_gain",
        rf"(?P<entity>{_NAME}+)\s+(?:gained|earned|received)\s+(?P<amount>[\d.]*)\s*gold\b",
        required=("entity", "amount"),
    ),
    _rule(
        "experience_gain",
        rf"(?P<entity>{_NAME}+)\s+(?:gained|earned)\s+(?P<amount>[\d.]*)\s*(?:xp|experience)\b",
        required=("entity", "amount"),
    ),
    _rule("death", rf"(?P<entity>{_NAME}+)\s+died\b"),
)


def parse_time_prefix(line: str) -> tuple[float | None, str]:
    """Split an optional ``[mm:ss]``/``[seconds]`` stamp off ``line``."""
    match = TIME_PREFIX.match(line)
    if match is None:
        return None, line
    seconds = float(match.group("seconds"))
    minutes = match.group("minutes")
    if minutes:
        seconds += 60.0 * int(minutes)
    return seconds, line[match.end() :]


class EventExtractor:
    """Stateless classifier turning one log line into zero or one event."""

    def __init__(self, rules: Sequence[ExtractionRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def extract(self, line: str, sequence: int = 0) -> Event | None:
        """Classify ``line``; ``sequence`` stamps events whose line has no time."""
        if not line or not line.strip():
            return None
        seconds, body = parse_time_prefix(line.rstrip("\r\n"))
        timed = seconds is not None
        timestamp = seconds if seconds is not None else float(sequence)
        for rule in self.rules:
            event = rule.build(body, timestamp, timed)
            if event is not None:
                return event
        return None

    def iter_events(self, lines: Iterable[str]) -> Iterator[Event]:
        for sequence, line in enumerate(lines):
            event = self.extract(line, sequence)
            if event is not None:
                yield event

    def extract_lines(self, lines: Iterable[str]) -> list[Event]:
        return list(self.iter_events(lines))

    def extract_text(self, text: str) -> list[Event]:
        return self.extract_lines(text.splitlines())

    def extract_file(self, path: str | Path) -> list[Event]:
        with Path(path).open(encoding="utf-8", errors="replace") as handle:
            return self.extract_lines(handle)
