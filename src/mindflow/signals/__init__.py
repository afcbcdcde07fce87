"""Interaction signal capture: aggregation windows and page-context classification."""

from mindflow.signals.aggregator import SignalAggregator
from mindflow.signals.context import classify_url, parse_category

__all__ = ["SignalAggregator", "classify_url", "parse_category"]
