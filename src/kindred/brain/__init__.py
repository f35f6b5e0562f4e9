"""Kindred brain module.

Contains turn orchestration, prompt assembly, affect tracking and the
model client.
"""

from kindred.brain.affect import (
    AffectState,
    AffectTracker,
    KeywordClassifier,
    estimate_typing_ms,
)
from kindred.brain.llm_clients import ChatCompletionClient, LLMResponse, create_llm_client
from kindred.brain.orchestrator import (
    ConversationOrchestrator,
    ManualMemoryCommand,
    TurnResult,
    parse_manual_memory_command,
)
from kindred.brain.prompting import build_prompt, filter_relevant_ltm, sanitize_reply

__all__ = [
    # Affect
    "AffectState",
    "AffectTracker",
    "KeywordClassifier",
    "estimate_typing_ms",
    # LLM client
    "ChatCompletionClient",
    "LLMResponse",
    "create_llm_client",
    # Orchestrator
    "ConversationOrchestrator",
    "TurnResult",
    "ManualMemoryCommand",
    "parse_manual_memory_command",
    # Prompting
    "build_prompt",
    "filter_relevant_ltm",
    "sanitize_reply",
]
