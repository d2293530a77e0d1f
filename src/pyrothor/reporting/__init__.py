"""Result sinks: local JSON report and fleet controller submission."""

from pyrothor.reporting.base import ResultSink
from pyrothor.reporting.controller import ControllerSubmitter
from pyrothor.reporting.json_sink import JSONResultSink, write_json

__all__ = [
    "ControllerSubmitter",
    "JSONResultSink",
    "ResultSink",
    "write_json",
]
