"""Shared types, enums, and constants used across the application."""

import enum


class LookupStatus(str, enum.Enum):
    """Lifecycle state of a phone-number lookup."""

    PENDING = "pending"
    CALLING = "calling"
    CACHED = "cached"
    FAILED = "failed"
    NOT_FOUND = "not_found"


TERMINAL_LOOKUP_STATUSES = frozenset(
    {LookupStatus.CACHED, LookupStatus.FAILED, LookupStatus.NOT_FOUND}
)


class CanonicalEvent(str, enum.Enum):
    """Provider-independent classification of a call event."""

    INITIATION = "initiation"
    IN_PROGRESS = "in_progress"
    POST_CALL = "post_call"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"


class EntityTag(str, enum.Enum):
    """Whether the callee is a private person or a business."""

    PARTICULIER = "Particulier"
    BEDRIJF = "Bedrijf"


class DataSource(str, enum.Enum):
    """Provenance of a resolved name or entity tag."""

    ELEVENLABS = "elevenlabs"
    FALLBACK = "fallback"


class CallOutcome(str, enum.Enum):
    """Outcome recorded on a phone profile."""

    CONFIRMED = "confirmed"
    VOICEMAIL = "voicemail"
    PENDING = "pending"


class ProgressStage(str, enum.Enum):
    """Client-facing progress stages, in display order."""

    SCHEDULED = "scheduled"
    ANALYZING = "analyzing"
    COMPLETED = "completed"


class StageState(str, enum.Enum):
    """Rendering state of a single progress stage."""

    COMPLETE = "complete"
    ACTIVE = "active"
    UPCOMING = "upcoming"
    ERROR = "error"


# Sentinel caller name used whenever no trustworthy identity was found
UNKNOWN_CALLER = "Onbekende beller"
