"""
Scheduling Module

Date/time resolution, booking pause, scheduling rules, slot-filling flow
and reply templates for the clinic assistant.

The orchestrator and the daily summary live in
medimate.core.scheduling.engine and medimate.core.scheduling.summary.
They depend on the infra adapters, which themselves import the error
types from here, so they are not re-exported.

Usage:
    from medimate.core.scheduling.engine import get_orchestrator

    result = await get_orchestrator().handle_message(
        sender_id="15551234567",
        message_text="Book me in for 2025-03-10 at 2pm",
    )
    print(result.response_text)
"""

# Errors
from medimate.core.scheduling.errors import (
    ErrorKind,
    ExternalServiceError,
    InvalidPauseWindow,
    RuleViolation,
)

# Data model
from medimate.core.scheduling.models import (
    ACTIVE_STATUSES,
    AppointmentCandidate,
    AppointmentFilter,
    AppointmentRecord,
    AppointmentStatus,
    CalendarEvent,
    CalendarEventArgs,
    ExistingAppointment,
)

# Date/time resolution
from medimate.core.scheduling.clock import Clock, clinic_now
from medimate.core.scheduling.datetime_resolver import (
    DateTimeResolver,
    ParseFailure,
    get_datetime_resolver,
)

# Booking pause and rules
from medimate.core.scheduling.pause import PauseWindow, PauseWindowStore, get_pause_store
from medimate.core.scheduling.rules import SchedulingRules

# Conversation Flow
from medimate.core.scheduling.flow import (
    ConversationFlow,
    FlowTurn,
    get_conversation_flow,
)

# Response Generator
from medimate.core.scheduling.response import (
    ResponseGenerator,
    get_response_generator,
)

__all__ = [
    # Errors
    "ErrorKind",
    "ExternalServiceError",
    "InvalidPauseWindow",
    "RuleViolation",
    # Data model
    "ACTIVE_STATUSES",
    "AppointmentCandidate",
    "AppointmentFilter",
    "AppointmentRecord",
    "AppointmentStatus",
    "CalendarEvent",
    "CalendarEventArgs",
    "ExistingAppointment",
    # Date/time
    "Clock",
    "clinic_now",
    "DateTimeResolver",
    "ParseFailure",
    "get_datetime_resolver",
    # Pause and rules
    "PauseWindow",
    "PauseWindowStore",
    "get_pause_store",
    "SchedulingRules",
    # Conversation Flow
    "ConversationFlow",
    "FlowTurn",
    "get_conversation_flow",
    # Response Generator
    "ResponseGenerator",
    "get_response_generator",
]
