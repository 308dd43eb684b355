"""
Content Moderation Service
Rules-based screening of story prompts and generated text with severity scoring
"""
import re
import logging
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


MAX_CONTENT_LENGTH = 50000

# (pattern, reason, severity weight)
MODERATION_PATTERNS: List[Tuple[re.Pattern, str, int]] = [
    (re.compile(r"\b(explicit sex|sexual act|porn(ography)?|nsfw)\b", re.I), "explicit sexual content", 3),
    (re.compile(r"\b(gore|dismember(ed|ment)?|torture porn|graphic (violence|mutilation))\b", re.I), "graphic violence", 3),
    (re.compile(r"\b(racial slur|ethnic cleansing|genocide is good|inferior race)\b", re.I), "hate speech", 3),
    (re.compile(r"\b(buy drugs|sell drugs|money laundering|human trafficking|child exploitation)\b", re.I), "illegal activities", 2),
    (re.compile(r"\b(self[- ]harm|suicide (method|instructions)|how to kill (myself|yourself))\b", re.I), "self-harm content", 2),
]

INJECTION_PATTERNS: List[re.Pattern] = [
    re.compile(r"ignore (all |the )?(previous|prior|above) (instructions|prompts?)", re.I),
    re.compile(r"disregard (all |the )?(previous|prior|above)", re.I),
    re.compile(r"forget (everything|all|your instructions)", re.I),
    re.compile(r"you are now (a|an|in) ", re.I),
    re.compile(r"new instructions\s*:", re.I),
    re.compile(r"^\s*system\s*:", re.I | re.M),
    re.compile(r"<\s*/?\s*(system|instructions?)\s*>", re.I),
    re.compile(r"\[\s*(system|inst)\s*\]", re.I),
]

AI_PATTERNS: List[Tuple[re.Pattern, str, int]] = [
    (re.compile(r"ignore.{0,20}instructions", re.I), "instruction bypass attempt", 2),
    (re.compile(r"assistant.{0,20}refuse", re.I), "refusal bypass attempt", 2),
    (re.compile(r"roleplaying.{0,20}(evil|harmful)", re.I), "harmful roleplay", 2),
    # DAN stays case-sensitive so characters named Dan pass
    (re.compile(r"\b((?i:jailbreak|do anything now)|DAN)\b"), "jailbreak attempt", 3),
]

SUSPICIOUS_PATTERNS: List[re.Pattern] = [
    re.compile(r"\b(bomb|weapon|kill|murder|death)\b.*\b(how|make|create|build)\b", re.I),
    re.compile(r"\b(drug|narcotic)\b.*\b(synthesize|manufacture|cook)\b", re.I),
    re.compile(r"\b(hack|exploit|breach)\b.*\b(system|database|account)\b", re.I),
]


class ModerationResult:
    """Result of content moderation check"""

    def __init__(
        self,
        passed: bool,
        reasons: Optional[List[str]] = None,
        severity: str = "low",
        confidence: float = 0.0
    ):
        self.passed = passed
        self.reasons = reasons or []
        self.severity = severity
        self.confidence = confidence

    def to_dict(self) -> Dict:
        return {
            "passed": self.passed,
            "reasons": self.reasons,
            "severity": self.severity,
            "confidence": self.confidence,
        }


class ModerationService:
    """
    Content moderation service

    Each matched rule adds its weight to a severity score; any match fails the check.
    """

    def __init__(self, max_content_length: int = MAX_CONTENT_LENGTH):
        self.max_content_length = max_content_length

    def moderate(self, text: str) -> ModerationResult:
        """
        Moderate text before it is sent to or after it comes back from the model

        Args:
            text: Text to moderate

        Returns:
            ModerationResult
        """
        if not text or not text.strip():
            return ModerationResult(passed=True)

        reasons: List[str] = []
        score = 0
        total_checks = 0

        for pattern, reason, weight in MODERATION_PATTERNS:
            total_checks += 1
            if pattern.search(text):
                reasons.append(reason)
                score += weight

        if len(text) > self.max_content_length:
            reasons.append("content too long")
            score += 1
            total_checks += 1

        for pattern in INJECTION_PATTERNS:
            total_checks += 1
            if pattern.search(text):
                reasons.append("potential prompt injection")
                score += 2
                break

        for pattern, reason, weight in AI_PATTERNS:
            total_checks += 1
            if pattern.search(text):
                reasons.append(reason)
                score += weight

        confidence = min(1.0, score / max(total_checks, 1))

        severity = "low"
        if score >= 5:
            severity = "high"
        elif score >= 2:
            severity = "medium"

        for pattern in SUSPICIOUS_PATTERNS:
            if pattern.search(text):
                reasons.append("suspicious instructional content")
                severity = "high"
                break

        result = ModerationResult(
            passed=not reasons,
            reasons=reasons,
            severity=severity,
            confidence=confidence,
        )

        if not result.passed:
            logger.warning(
                f"Content moderation violation: reasons={reasons}, severity={severity}, "
                f"confidence={confidence:.2f}, length={len(text)}"
            )

        return result

    @staticmethod
    def detect_prompt_injection(text: str) -> bool:
        """True when the text looks like an attempt to override system instructions"""
        if not text:
            return False
        return any(pattern.search(text) for pattern in INJECTION_PATTERNS)

    @staticmethod
    def sanitize_input(text: str, max_length: int = MAX_CONTENT_LENGTH) -> str:
        """Strip markup and script handlers from user input and truncate"""
        if not text:
            return ""
        cleaned = re.sub(r"[<>]", "", text)
        cleaned = re.sub(r"javascript:", "", cleaned, flags=re.I)
        cleaned = re.sub(r"on\w+=", "", cleaned, flags=re.I)
        return cleaned.strip()[:max_length]


_moderation_service: Optional[ModerationService] = None


def get_moderation_service() -> ModerationService:
    """Get or create global moderation service instance"""
    global _moderation_service
    if _moderation_service is None:
        _moderation_service = ModerationService()
    return _moderation_service
