"""Configuration constants.

Re-exports all config for convenient importing:
    from wikigen.constants import DEFAULT_HEARTBEAT_INTERVAL, SUMMARY_MAX_LENGTH
"""

from wikigen.constants.generation import *  # noqa: F403
from wikigen.constants.llm import *  # noqa: F403
