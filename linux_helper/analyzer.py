"""Analysis boundary: an external command turns a screenshot into suggestions.

The command is run as ``<analyzerCommand...> <screenshot path>`` and must
print one JSON object on stdout:

    {"summary": "...", "suggestions": [{"title": ..., "command": ..., "description": ...}]}
"""

import json
import logging
import subprocess

from linux_helper.errors import AnalysisError
from linux_helper.models import Analysis, CapturedFrame, Suggestion

logger = logging.getLogger(__name__)


def parse_analysis(output: str) -> Analysis:
    """Parse analyzer stdout. Raises AnalysisError if it is not the expected shape."""
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise AnalysisError(f"analyzer output is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise AnalysisError("analyzer output is not a JSON object")

    suggestions = data.get("suggestions") or []
    if not isinstance(suggestions, list):
        raise AnalysisError("'suggestions' is not a list")
    return Analysis(
        summary=str(data.get("summary", "")),
        suggestions=[Suggestion.from_dict(s) for s in suggestions if isinstance(s, dict)],
    )


class CommandAnalyzer:
    def __init__(self, command: list, timeout: float = 60.0):
        self.command = list(command)
        self.timeout = timeout

    def analyze(self, frame: CapturedFrame) -> Analysis:
        args = self.command + [frame.filepath]
        logger.info("Running analyzer on %s", frame.filename)
        try:
            result = subprocess.run(
                args, capture_output=True, text=True, timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise AnalysisError(f"analyzer not found: {self.command[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise AnalysisError(f"analyzer timed out after {self.timeout:.0f}s") from e
        except OSError as e:
            raise AnalysisError(f"analyzer failed to start: {e}") from e

        if result.returncode != 0:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise AnalysisError(f"analyzer failed: {detail}")

        analysis = parse_analysis(result.stdout)
        logger.info("Analyzer returned %d suggestions", len(analysis.suggestions))
        return analysis
