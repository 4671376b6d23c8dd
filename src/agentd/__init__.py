"""
agentd - agent orchestration runtime.

Receives normalized events from channel adapters, keeps per-conversation
session state, drives the reasoning and tool-use loop against a pluggable
provider and gates sensitive tool calls behind human approval.
"""

__version__ = "0.1.0"
