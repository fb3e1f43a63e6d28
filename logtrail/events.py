"""Reference parser for Insurgency: Sandstorm server logs.

Lines look like::

    [2025.11.15-12.10.00:000][400]LogGameMode: ProcessServerTravel: Oilfield?Scenario=...

Unrecognised lines yield None. Lines with a recognised body but a malformed
timestamp raise ValueError so the dispatcher logs and skips them.
"""

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from logtrail.identity import parse_opened_at

TS = r"\[(\d{4}\.\d{2}\.\d{2}-\d{2}\.\d{2}\.\d{2}:\d{1,3})\]\[\s*\d+\]"

PATTERNS: list[tuple[str, re.Pattern, tuple[str, ...]]] = [
    ("player_kill", re.compile(TS + r"LogGameplayEvents: Display: (.+?) killed ([^\[]+)\[([^,\]]*), team (\d+)\] with (.+)$"),
     ("killers", "victim_name", "victim_steam_id", "victim_team", "weapon")),
    ("player_join", re.compile(TS + r"LogNet: Join succeeded: (.+)$"),
     ("player_name",)),
    ("player_disconnect", re.compile(TS + r"LogEOSAntiCheat: Display: ServerUnregisterClient: UserId \((\d+)\), Result: \(EOS_Success\)"),
     ("steam_id",)),
    ("round_start", re.compile(TS + r"LogGameplayEvents: Display: (?:Pre-)?round (\d+) started"),
     ("round",)),
    ("round_end", re.compile(TS + r"Log(?:GameMode|GameplayEvents): Display: Round (?:(\d+) )?O\s*ver: Team (\d+) won \(win reason: (.+)\)"),
     ("round", "winning_team", "win_reason")),
    ("game_over", re.compile(TS + r"LogGameplayEvents: Display: Game over"),
     ()),
    ("map_load", re.compile(TS + r"LogLoad: LoadMap: /Game/Maps/([^/]+)/[^?]+\?.*Scenario=([^?&]+)"),
     ("map", "scenario")),
    ("map_travel", re.compile(TS + r"LogGameMode: ProcessServerTravel: ([^?]+)\?Scenario=([^?&]+)"),
     ("map", "scenario")),
    ("chat_command", re.compile(TS + r"LogChat: Display: ([^(]+)\((\d+)\) Global Chat: (!.+)"),
     ("player_name", "steam_id", "command")),
]


@dataclass
class GameEvent:
    type: str
    server_id: str
    timestamp: datetime | None
    raw: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        return d


def parse_timestamp(ts: str) -> datetime:
    """Parse ``2025.10.04-15.23.38:790`` (server local time)."""
    date_part, _, ms_part = ts.rpartition(":")
    if not date_part:
        raise ValueError(f"invalid timestamp format: {ts}")
    dt = datetime.strptime(date_part, "%Y.%m.%d-%H.%M.%S")
    return dt + timedelta(milliseconds=int(ms_part))


def parse_line(line: str, server_id: str) -> GameEvent | None:
    line = line.strip()
    if not line:
        return None

    opened_at = parse_opened_at(line)
    if opened_at is not None:
        return GameEvent("log_open", server_id, opened_at, line)

    for event_type, pattern, fields in PATTERNS:
        m = pattern.search(line)
        if not m:
            continue
        timestamp = parse_timestamp(m.group(1))
        data = {name: (value.strip() if value else value)
                for name, value in zip(fields, m.groups()[1:])}
        return GameEvent(event_type, server_id, timestamp, line, data)
    return None
