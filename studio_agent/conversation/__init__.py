from studio_agent.conversation.classifier import IntentClassifier
from studio_agent.conversation.draft_engine import (
    BookingDraftEngine,
    CompletionAction,
    CompletionResult,
    Extraction,
)
from studio_agent.conversation.escalation import EscalationManager
from studio_agent.conversation.guardrails import GuardrailPipeline, HandoffGuardrail
from studio_agent.conversation.quality_gate import (
    QualityContext,
    QualityScore,
    ResponseQualityGate,
    ValidationResult,
)
from studio_agent.conversation.state_machine import (
    BookingStepper,
    DraftTrigger,
    InvalidTransitionError,
)

__all__ = [
    "IntentClassifier",
    "BookingDraftEngine",
    "CompletionAction",
    "CompletionResult",
    "Extraction",
    "EscalationManager",
    "GuardrailPipeline",
    "HandoffGuardrail",
    "QualityContext",
    "QualityScore",
    "ResponseQualityGate",
    "ValidationResult",
    "BookingStepper",
    "DraftTrigger",
    "InvalidTransitionError",
]
