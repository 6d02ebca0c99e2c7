#!/usr/bin/env python3
from __future__ import annotations

import importlib
import json
import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient


@dataclass
class Scenario:
  name: str
  turns: list[str]
  expected_table: str
  expected_text: str


def parse_sse_events(payload_text: str) -> list[dict[str, Any]]:
  events: list[dict[str, Any]] = []
  current: dict[str, Any] = {}
  for raw_line in payload_text.splitlines():
    line = raw_line.strip("\r")
    if line.startswith("event: "):
      current["event"] = line[7:]
    elif line.startswith("data: "):
      current["data"] = line[6:]
    elif line == "" and current:
      events.append(current)
      current = {}
  if current:
    events.append(current)
  return events


def event_payloads(events: list[dict[str, Any]], event_name: str) -> list[Any]:
  payloads: list[Any] = []
  for event in events:
    if event.get("event") != event_name:
      continue
    raw = event.get("data")
    try:
      payloads.append(json.loads(raw) if isinstance(raw, str) else raw)
    except json.JSONDecodeError:
      payloads.append(raw)
  return payloads


def run() -> int:
  repo_root = Path(__file__).resolve().parents[1]
  backend_dir = repo_root / "backend"
  if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

  # Point every region at a throwaway SQLite file unless real endpoints are configured.
  scratch_db = Path(tempfile.mkdtemp(prefix="meeka-smoke-")) / "meeka.sqlite"
  os.environ.setdefault("MEEKA_DB_PATH", str(scratch_db))
  for region in ("AU", "UK", "USA"):
    os.environ.setdefault(f"SUPABASE_{region}_URL", f"sqlite:///{scratch_db}")
    os.environ.setdefault(f"SUPABASE_{region}_ANON_KEY", "smoke-anon-key")
  os.environ.setdefault("MEEKA_DISABLE_IP_LOOKUP", "true")
  os.environ.setdefault("MEEKA_REFRESH_DELAY_SECONDS", "0")

  backend_module = importlib.import_module("main")
  backend_module = importlib.reload(backend_module)

  user_id = "smoke-user"
  session_key = f"smoke-session-{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}"
  headers = {"Authorization": f"Bearer {user_id}"}

  with backend_module.container.db.connection() as conn:
    conn.execute(
      "INSERT OR IGNORE INTO profiles (id, user_id, full_name, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
      ("smoke-patient", user_id, "Sam Smoke", "2024-01-01T00:00:00+00:00", "2024-01-01T00:00:00+00:00"),
    )

  scenarios = [
    Scenario(
      name="Symptom With Notes Skipped",
      turns=["I want to add a symptom", "Headache", "2024-01-01", "Mild", "no"],
      expected_table="symptoms",
      expected_text="Successfully added symptom: Headache",
    ),
    Scenario(
      name="Medication With Notes",
      turns=["Add a medication", "Ibuprofen", "today", "200mg", "Active", "Helps with the headache"],
      expected_table="medications",
      expected_text="Successfully added medication: Ibuprofen",
    ),
    Scenario(
      name="Mood Entry",
      turns=["track mood", "today", "4", "3", "2", "4", "nope"],
      expected_table="mood_entries",
      expected_text="Successfully added mood entry:",
    ),
  ]

  results: list[dict[str, Any]] = []

  with TestClient(backend_module.app) as client:
    for scenario in scenarios:
      scenario_result: dict[str, Any] = {"name": scenario.name, "expected_table": scenario.expected_table}
      events: list[dict[str, Any]] = []
      status_codes: list[int] = []
      for turn in scenario.turns:
        response = client.post(
          "/chat/stream",
          headers=headers,
          json={"message": turn, "session_key": session_key, "client_context": {"timezone": "America/New_York"}},
        )
        status_codes.append(response.status_code)
        if response.status_code != 200:
          break
        events = parse_sse_events(response.text)

      scenario_result["status_codes"] = status_codes
      if any(code != 200 for code in status_codes):
        scenario_result["pass"] = False
        scenario_result["error"] = f"/chat/stream returned {status_codes[-1]}"
        results.append(scenario_result)
        continue

      messages = [item.get("text", "") for item in event_payloads(events, "message") if isinstance(item, dict)]
      updates = [item for item in event_payloads(events, "data_updated") if isinstance(item, dict)]
      final_text = messages[-1] if messages else ""
      scenario_result["final_message"] = final_text
      scenario_result["event_types"] = sorted({event.get("event") for event in events})
      scenario_result["pass"] = final_text.startswith(scenario.expected_text) and any(
        update.get("table") == scenario.expected_table for update in updates
      )
      if not scenario_result["pass"]:
        scenario_result["error"] = "Record was not confirmed or no data_updated event was emitted."
      results.append(scenario_result)

    recent = client.get("/events/recent", headers=headers).json().get("events", [])

  passed = sum(1 for result in results if result.get("pass"))
  print(json.dumps({"passed": passed, "total": len(results), "results": results, "recent_events": recent[:5]}, indent=2))  # noqa: T201
  return 0 if passed == len(results) else 1


if __name__ == "__main__":
  raise SystemExit(run())
