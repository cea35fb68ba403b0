from pathlib import Path

import pytest

from bot_evolution.events import Event
from bot_evolution.extractor import EventExtractor, parse_time_prefix


@pytest.fixture()
def extractor() -> EventExtractor:
    return EventExtractor()


def test_tower_line_becomes_structure_event(extractor):
    event = extractor.extract("Building: npc_Dota_3_tower destroyed")
    assert event is not None
    assert event.kind == "structure_destroyed"
    assert event.entity == "npc_Dota_3_tower"


def test_garbage_line_yields_nothing(extractor):
    assert extractor.extract("garbage unrelated text") is None
    assert extractor.extract("") is None
    assert extractor.extract("   \n") is None


def test_extraction_is_idempotent(extractor):
    line = "[42.5] radiant killed dire"
    assert extractor.extract(line) == extractor.extract(line)


@pytest.mark.parametrize(
    "line",
    [
        "radiant killed",
        "radiant killed ",
        "radiant gained gold",
        "radiant gained 1.2.3 gold",
        "Game over: wins",
    ],
)
def test_truncated_lines_are_not_events(extractor, line):
    assert extractor.extract(line) is None


def test_time_prefix_forms():
    assert parse_time_prefix("[12:30] x") == (750.0, "x")
    assert parse_time_prefix("[5.5] x") == (5.5, "x")
    assert parse_time_prefix("no stamp") == (None, "no stamp")


def test_timed_and_untimed_stamps(extractor):
    timed = extractor.extract("[01:00] dire died")
    assert timed == Event(kind="death", entity="dire", timestamp=60.0, timed=True)

    events = extractor.extract_lines(["radiant died", "Server tick 7", "dire died"])
    assert [(e.entity, e.timestamp, e.timed) for e in events] == [
        ("radiant", 0.0, False),
        ("dire", 2.0, False),
    ]


def test_rule_priority_and_fields(extractor):
    end = extractor.extract("Game over: radiant wins")
    assert end is not None and (end.kind, end.entity) == ("game_end", "radiant")

    assist = extractor.extract("radiant assisted in killing dire")
    assert assist is not None and (assist.kind, assist.target) == ("assist", "dire")

    kill = extractor.extract("radiant killed dire")
    assert kill is not None and (kill.kind, kill.entity, kill.target) == ("kill", "radiant", "dire")

    gold = extractor.extract("radiant gained 300 gold")
    assert gold is not None and (gold.kind, gold.amount) == ("gold_gain", 300.0)

    xp = extractor.extract("radiant gained 350 xp")
    assert xp is not None and (xp.kind, xp.amount) == ("experience_gain", 350.0)

    start = extractor.extract("[0.0] Game started")
    assert start is not None and (start.kind, start.entity) == ("game_start", "game")


def test_extract_file_replaces_bad_bytes(tmp_path: Path, extractor):
    log = tmp_path / "trial.log"
    log.write_bytes(b"[0] Game started\n\xff\xfe junk\n[60] radiant killed dire\n")
    events = extractor.extract_file(log)
    assert [e.kind for e in events] == ["game_start", "kill"]


def test_event_json_round_trip():
    event = Event(kind="gold_gain", entity="radiant", timestamp=3.0, timed=True, amount=25.0)
    payload = event.to_json()
    assert payload["type"] == "gold_gain"
    assert payload["entity_id"] == "radiant"
    assert Event.from_json(payload) == event
    with pytest.raises(ValueError):
        Event.from_json({"type": "teleport", "entity_id": "radiant"})
