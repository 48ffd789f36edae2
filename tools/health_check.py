#!/usr/bin/env python3
"""Health check for keeper simulation reports.

Exits 0 if the latest report shows the vault back within its leverage bounds
with no rejected keeper attempts, non-zero otherwise. Used by monitoring jobs
that run tools/run_simulation.py on a schedule.
"""

import sys
import json
from pathlib import Path
from typing import Any, Dict, List


def check_report(report: Dict[str, Any], lower_bound_bps: int, upper_bound_bps: int) -> List[str]:
    """Return the list of problems found in a simulation report."""
    problems = []
    summary = report.get("summary")
    if not isinstance(summary, dict):
        return ["report has no summary"]

    final = summary.get("final_leverage_bps", 0)
    if final and not (lower_bound_bps <= final <= upper_bound_bps):
        problems.append(f"final leverage {final} outside [{lower_bound_bps}, {upper_bound_bps}]")
    if summary.get("rejected", 0):
        problems.append(f"{summary['rejected']} keeper attempts were rejected")
    if summary.get("total_supply", 0) and not summary.get("total_assets", 0):
        problems.append("shares outstanding with no assets")
    return problems


def main():
    """Perform health check."""
    report_path = Path(sys.argv[1] if len(sys.argv) > 1 else "data/keeper_simulation.json")

    if not report_path.exists():
        print("UNHEALTHY: Simulation report not found")
        sys.exit(1)

    try:
        with open(report_path, "r") as f:
            report = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"UNHEALTHY: Failed to read report: {e}")
        sys.exit(1)

    problems = check_report(report, lower_bound_bps=20_000, upper_bound_bps=40_000)
    if problems:
        for problem in problems:
            print(f"UNHEALTHY: {problem}")
        sys.exit(1)

    print("HEALTHY: Vault within bounds, no rejected rebalances")
    sys.exit(0)


if __name__ == "__main__":
    main()
