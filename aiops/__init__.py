"""
AIOps: Telemetry & Experimentation Engine for Language-Model Operations

Records every model invocation, scores output quality, raises threshold and
anomaly alerts, runs controlled A/B experiments across model configurations,
benchmarks models against a fixed suite, and serves an aggregated dashboard.
"""

__version__ = "0.1.0"
