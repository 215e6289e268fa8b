from studio_agent.learning.memory import CustomerMemoryStore, describe_context, detect_communication_style
from studio_agent.learning.patterns import LearningAnalyzer, PatternAnalysis, PotentialFaq
from studio_agent.learning.personalization import (
    Preferences,
    adapt_response,
    extract_preferences,
    match_emotional_tone,
)
from studio_agent.learning.recorder import ConversationRecorder, classify_outcome, was_successful

__all__ = [
    "CustomerMemoryStore", "describe_context", "detect_communication_style",
    "LearningAnalyzer", "PatternAnalysis", "PotentialFaq",
    "Preferences", "adapt_response", "extract_preferences", "match_emotional_tone",
    "ConversationRecorder", "classify_outcome", "was_successful",
]
