"""
Configuration for Scrollwork.
"""

from .loader import AgentConfig, RiskThresholdConfig, load_agent_config

__all__ = ["AgentConfig", "RiskThresholdConfig", "load_agent_config"]
