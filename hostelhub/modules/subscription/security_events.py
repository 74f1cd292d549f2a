"""
Subscription security events.

Events go to the ``hostelhub.security`` logger with the event attached as the
``security_event`` record attribute, so log shippers can index them without
parsing the message text.
"""
import enum
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("hostelhub.security")


class SecurityEventType(str, enum.Enum):
    ACTIVATION_WITHOUT_PAYMENT = "activation_without_payment"
    NULL_EXPIRES_AT_DETECTED = "null_expires_at_detected"
    UNAUTHORIZED_ACTIVATION_ATTEMPT = "unauthorized_activation_attempt"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


LOG_LEVELS = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}


@dataclass
class SecurityEvent:
    event_type: SecurityEventType
    severity: Severity
    subscription_id: Optional[str]
    user_id: Optional[str]
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        data["severity"] = self.severity.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


def log_security_event(event: SecurityEvent) -> SecurityEvent:
    logger.log(
        LOG_LEVELS[event.severity],
        "Subscription security event %s (severity=%s subscription=%s user=%s): %s",
        event.event_type.value,
        event.severity.value,
        event.subscription_id,
        event.user_id,
        event.details,
        extra={"security_event": event.as_dict()},
    )
    return event


def log_null_expires_at_detected(subscription_id: Optional[str], user_id: Optional[str]) -> SecurityEvent:
    return log_security_event(SecurityEvent(
        SecurityEventType.NULL_EXPIRES_AT_DETECTED,
        Severity.HIGH,
        subscription_id,
        user_id,
        {"message": "Active subscription has no expires_at; access denied"},
    ))


def log_activation_without_payment(subscription_id: str, user_id: Optional[str], reason: str) -> SecurityEvent:
    return log_security_event(SecurityEvent(
        SecurityEventType.ACTIVATION_WITHOUT_PAYMENT,
        Severity.CRITICAL,
        subscription_id,
        user_id,
        {"reason": reason},
    ))


def log_unauthorized_activation_attempt(
    subscription_id: Optional[str], user_id: Optional[str], reason: str
) -> SecurityEvent:
    return log_security_event(SecurityEvent(
        SecurityEventType.UNAUTHORIZED_ACTIVATION_ATTEMPT,
        Severity.HIGH,
        subscription_id,
        user_id,
        {"reason": reason},
    ))
