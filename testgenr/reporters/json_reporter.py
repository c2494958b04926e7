"""JSON reporter for structured output.

Writes the outcome of every handled event, including the generated test
cases, so runs can be inspected or fed to other tools.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from testgenr.models import GenerationOutcome, GenerationResult
from testgenr.reporters.base import Reporter


class JsonReporter(Reporter):
    """JSON reporter for structured output.

    Args:
        output_path: Optional file path to write JSON output
    """

    def __init__(self, output_path: Optional[str] = None):
        self.output_path = output_path

    def on_generation_start(self, issue_key: str) -> None:
        """No-op for JSON reporter."""
        pass

    def on_generation_skipped(self, issue_key: Optional[str], reason: str) -> None:
        """No-op - skipped events are reported from the run results."""
        pass

    def on_generation_complete(self, result: GenerationResult) -> None:
        """No-op - the document is built from the run results."""
        pass

    def on_run_complete(self, results: list[GenerationResult]) -> dict:
        """Generate the JSON output and write it if a path was given.

        Returns:
            The generated JSON data as a dictionary
        """
        output = self._generate_output(results)
        if self.output_path:
            self._write_to_file(output)
        return output

    def _generate_output(self, results: list[GenerationResult]) -> dict:
        issues = []
        counts = {outcome.value: 0 for outcome in GenerationOutcome}

        for result in results:
            counts[result.outcome.value] += 1
            entry = {
                "issue_key": result.issue_key,
                "outcome": result.outcome.value,
                "status": result.status.value,
                "test_cases": [r.to_dict() for r in result.records],
                "duration_seconds": result.duration_seconds,
            }
            if result.reason:
                entry["reason"] = result.reason
            if result.error_message:
                entry["error"] = result.error_message
            issues.append(entry)

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "issues": issues,
            "summary": {
                "total_events": len(results),
                **counts,
            },
        }

    def _write_to_file(self, output: dict) -> None:
        path = Path(self.output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(output, f, indent=2)
