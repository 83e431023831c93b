"""
Dialogue Orchestrator - Main entry point for inbound messages.

Coordinates recognition, the per-sender conversation context, date/time
resolution, scheduling rules and the appointment ledger, calendar and
messaging collaborators.

Each turn works on a copy of the sender's context under that sender's
lock. The copy is saved only when the turn did not fail on an external
service, so a failed commit leaves the previous context in place.
Commits also hold a lock on the requested slot from the final rule check
through the ledger write, so two senders cannot both take the same time.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import uuid4

from medimate.config import settings
from medimate.core.intelligence.intent.recognizer import IntentRecognizer, get_intent_recognizer
from medimate.core.intelligence.intent.types import Intent, SenderRole
from medimate.core.intelligence.session.manager import ContextStore, KeyedLocks, get_context_store
from medimate.core.intelligence.session.models import ConversationContext
from medimate.core.intelligence.session.state import FlowState
from medimate.core.intelligence.slots.types import (
    BookingEntities,
    CancelEntities,
    Entities,
    PauseEntities,
    RescheduleEntities,
    parse_entities,
)
from medimate.infra.google_calendar import GoogleCalendarService, get_calendar_service
from medimate.infra.sheets import SheetsAppointmentStore, get_appointment_store
from medimate.infra.whatsapp import WhatsAppClient, get_whatsapp_client
from .clock import Clock, clinic_now
from .datetime_resolver import DateTimeResolver, ParseFailure, get_datetime_resolver, parse_date
from .errors import ErrorKind, ExternalServiceError, InvalidPauseWindow, RuleViolation
from .flow import ConversationFlow, FlowTurn, get_conversation_flow
from .models import (
    ACTIVE_STATUSES,
    AppointmentCandidate,
    AppointmentFilter,
    AppointmentRecord,
    AppointmentStatus,
    CalendarEventArgs,
    ExistingAppointment,
)
from .pause import PauseWindow, PauseWindowStore, get_pause_store
from .response import ResponseGenerator, get_response_generator
from .rules import SchedulingRules

logger = logging.getLogger(__name__)

# Outcomes after which the pre-turn context is kept
ROLLBACK_KINDS = {ErrorKind.EXTERNAL_FAILURE}

# Events listed in the pause warning
PAUSE_WARNING_LIMIT = 2


@dataclass
class TurnResult:
    """Outcome of one inbound message."""

    response_text: str
    committed: bool = False
    error: Optional[ErrorKind] = None
    intent: Optional[Intent] = None
    state: FlowState = FlowState.IDLE

    @property
    def keeps_previous_context(self) -> bool:
        return self.error in ROLLBACK_KINDS

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result: dict[str, Any] = {
            "response_text": self.response_text,
            "committed": self.committed,
            "state": self.state.value,
        }
        if self.error:
            result["error"] = self.error.value
        if self.intent:
            result["intent"] = self.intent.value
        return result


@dataclass
class DeliveryReport:
    """A processed turn plus the outcome of sending its reply."""

    turn: TurnResult
    sent: bool
    send_error: Optional[str] = None


@dataclass
class _Turn:
    """Everything a handler needs about the current message."""

    sender_id: str
    role: SenderRole
    intent: Intent
    text: str
    context: ConversationContext
    entities: Entities
    aside: bool = False
    message_id: Optional[str] = None
    sender_name: Optional[str] = None

    @property
    def by_doctor(self) -> bool:
        return self.role == SenderRole.DOCTOR


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """
    Parse an inbound message timestamp.

    Accepts datetimes, Unix seconds (as number or digit string) and
    ISO-8601 strings.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_timestamp(int(text))
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _fragment(failure: ParseFailure) -> Optional[str]:
    return failure.date_fragment if failure.slot == "date" else failure.time_fragment


class DialogueOrchestrator:
    """
    Main orchestrator for the clinic assistant.

    Coordinates:
    - Intent recognition and entity validation
    - Per-sender conversation context
    - Date/time resolution and scheduling rules
    - Appointment ledger, calendar and messaging
    - Reply composition
    """

    def __init__(
        self,
        recognizer: Optional[IntentRecognizer] = None,
        context_store: Optional[ContextStore] = None,
        appointment_store: Optional[SheetsAppointmentStore] = None,
        calendar: Optional[GoogleCalendarService] = None,
        messenger: Optional[WhatsAppClient] = None,
        pause_store: Optional[PauseWindowStore] = None,
        responses: Optional[ResponseGenerator] = None,
        flow: Optional[ConversationFlow] = None,
        resolver: Optional[DateTimeResolver] = None,
        clock: Optional[Clock] = None,
        doctor_id: Optional[str] = None,
        max_parse_failures: Optional[int] = None,
        appointment_duration_minutes: Optional[int] = None,
    ):
        """Initialize orchestrator with optional dependencies.

        Args:
            recognizer: Intent recognizer
            context_store: Conversation context store
            appointment_store: Appointment ledger
            calendar: Calendar service
            messenger: Outbound messaging client
            pause_store: Booking pause holder
            responses: Reply templates
            flow: Slot-filling rules
            resolver: Date/time resolver
            clock: Returns the clinic's naive wall-clock time
            doctor_id: Sender id allowed to run doctor commands
            max_parse_failures: Consecutive failures before a flow restarts
            appointment_duration_minutes: Length of each appointment
        """
        self._recognizer = recognizer
        self._context_store = context_store
        self._appointment_store = appointment_store
        self._calendar = calendar
        self._messenger = messenger
        self.pause_store = pause_store or get_pause_store()
        self.responses = responses or get_response_generator()
        self.flow = flow or get_conversation_flow()
        self.resolver = resolver or get_datetime_resolver()
        self.now: Clock = clock or clinic_now
        self.doctor_id = doctor_id if doctor_id is not None else settings.doctor_phone_number
        self.max_parse_failures = max_parse_failures or settings.max_parse_failures
        self.duration_minutes = (
            appointment_duration_minutes or settings.appointment_duration_minutes
        )
        self.rules = SchedulingRules(
            pause_store=self.pause_store,
            now=lambda: self.now(),
            open_hour=settings.clinic_open_hour,
            close_hour=settings.clinic_close_hour,
            resolver=self.resolver,
        )
        # Held from the final rule check through the ledger write of a slot
        self._slot_locks = KeyedLocks()

        self._handlers: dict[Intent, Callable[[_Turn], Awaitable[TurnResult]]] = {
            Intent.BOOK_APPOINTMENT: self._handle_booking,
            Intent.RESCHEDULE_APPOINTMENT: self._handle_reschedule,
            Intent.CANCEL_APPOINTMENT: self._handle_cancel,
            Intent.PAUSE_BOOKINGS: self._handle_pause,
            Intent.RESUME_BOOKINGS: self._handle_resume,
            Intent.CANCEL_ALL_MEETINGS_TODAY: self._handle_cancel_all_today,
            Intent.GREETING: self._handle_small_talk,
            Intent.THANK_YOU: self._handle_small_talk,
            Intent.FAQ_OPENING_HOURS: self._handle_small_talk,
            Intent.OTHER: self._handle_other,
        }

    async def _get_recognizer(self) -> IntentRecognizer:
        """Get intent recognizer."""
        if self._recognizer is None:
            self._recognizer = await get_intent_recognizer()
        return self._recognizer

    def _get_context_store(self) -> ContextStore:
        """Get context store."""
        if self._context_store is None:
            self._context_store = get_context_store()
        return self._context_store

    def _get_appointment_store(self) -> SheetsAppointmentStore:
        """Get appointment store."""
        if self._appointment_store is None:
            self._appointment_store = get_appointment_store()
        return self._appointment_store

    def _get_calendar(self) -> GoogleCalendarService:
        """Get calendar service."""
        if self._calendar is None:
            self._calendar = get_calendar_service()
        return self._calendar

    def _get_messenger(self) -> WhatsAppClient:
        """Get messaging client."""
        if self._messenger is None:
            self._messenger = get_whatsapp_client()
        return self._messenger

    def role_for(self, sender_id: str) -> SenderRole:
        """The doctor is whoever sends from the configured doctor number."""
        if self.doctor_id and sender_id == self.doctor_id:
            return SenderRole.DOCTOR
        return SenderRole.PATIENT

    # === Entry points ===

    async def handle_message(
        self,
        sender_id: str,
        message_text: str,
        message_id: Optional[str] = None,
        timestamp: Union[str, int, float, datetime, None] = None,
        sender_name: Optional[str] = None,
    ) -> TurnResult:
        """Process one inbound message.

        Args:
            sender_id: Sender's WhatsApp id
            message_text: Message text
            message_id: Inbound message id (used as the appointment id)
            timestamp: When the message was sent
            sender_name: Sender's profile name

        Returns:
            TurnResult with the reply and whether anything was committed
        """
        role = self.role_for(sender_id)

        if timestamp is not None and parse_timestamp(timestamp) is None:
            logger.error(f"[{sender_id}] Invalid message timestamp: {timestamp!r}")
            return TurnResult(
                response_text=self.responses.invalid_timestamp(),
                error=ErrorKind.PARSE_FAILURE,
            )

        store = self._get_context_store()
        async with store.lock(sender_id):
            context = await store.get(sender_id)
            working = context.copy()

            try:
                result = await self._process(working, sender_id, role, message_text, message_id, sender_name)
            except ExternalServiceError as e:
                logger.error(f"[{sender_id}] External failure ({e.service}): {e}")
                return TurnResult(
                    response_text=self.responses.external_failure(),
                    error=ErrorKind.EXTERNAL_FAILURE,
                    state=context.state,
                )

            if result.keeps_previous_context:
                result.state = context.state
            else:
                await store.save(working)

        log = logger.warning if result.error and not result.error.is_user_facing else logger.info
        log(
            f"[{sender_id}] intent={result.intent.value if result.intent else None} "
            f"state={result.state.value} committed={result.committed} "
            f"error={result.error.value if result.error else None}"
        )
        return result

    async def handle_and_reply(
        self,
        sender_id: str,
        message_text: str,
        message_id: Optional[str] = None,
        timestamp: Union[str, int, float, datetime, None] = None,
        sender_name: Optional[str] = None,
    ) -> DeliveryReport:
        """
        Process a message and send the reply.

        A reply is always attempted, with a generic apology when processing
        fails unexpectedly. Delivery failures are reported separately.
        """
        try:
            result = await self.handle_message(
                sender_id,
                message_text,
                message_id=message_id,
                timestamp=timestamp,
                sender_name=sender_name,
            )
        except Exception as e:
            logger.exception(f"[{sender_id}] Unexpected error while processing message: {e}")
            result = TurnResult(
                response_text=self.responses.internal_error(),
                error=ErrorKind.EXTERNAL_FAILURE,
            )

        send = await self._get_messenger().send(sender_id, result.response_text)
        if not send.success:
            logger.error(f"[{sender_id}] Reply could not be delivered: {send.error}")

        return DeliveryReport(turn=result, sent=send.success, send_error=send.error)

    async def _process(
        self,
        context: ConversationContext,
        sender_id: str,
        role: SenderRole,
        text: str,
        message_id: Optional[str],
        sender_name: Optional[str],
    ) -> TurnResult:
        recognizer = await self._get_recognizer()
        recognition = await recognizer.recognize(
            text,
            role,
            contextual_date=context.contextual_date,
            today=self.now().date(),
        )
        if recognition.degraded:
            logger.warning(f"[{sender_id}] Recognition degraded to 'other'")

        entities = parse_entities(recognition.intent, recognition.entities)
        flow_turn: FlowTurn = self.flow.interpret(context, recognition.intent, entities, text)
        intent = flow_turn.intent

        if intent.is_doctor_only and role != SenderRole.DOCTOR:
            logger.warning(f"[{sender_id}] Unauthorized {intent.value} attempt")
            return TurnResult(
                response_text=self.responses.unauthorized(),
                error=ErrorKind.UNAUTHORIZED,
                intent=intent,
                state=context.state,
            )

        if self.flow.starts_new_flow(context, intent):
            logger.info(
                f"[{sender_id}] {intent.value} replaces open {context.last_intent.value} flow"
            )
            context.reset()

        turn = _Turn(
            sender_id=sender_id,
            role=role,
            intent=intent,
            text=text,
            context=context,
            entities=flow_turn.entities,
            aside=flow_turn.aside,
            message_id=message_id,
            sender_name=sender_name,
        )
        result = await self._handlers[intent](turn)
        result.intent = intent
        if recognition.degraded and result.error is None:
            result.error = ErrorKind.RECOGNIZER_FAILURE
        if not result.keeps_previous_context:
            result.state = context.state
        return result

    # === Shared steps ===

    async def _existing_on(self, day: date) -> list[ExistingAppointment]:
        records = await self._get_appointment_store().query(
            AppointmentFilter(date=day.isoformat(), statuses=ACTIVE_STATUSES)
        )
        return [r.to_existing() for r in records]

    def _validate_date(
        self,
        turn: _Turn,
        fragment: str,
        rescheduling: bool,
    ) -> Union[date, TurnResult]:
        """Parse and check a newly gathered date.

        Returns the date, or the reply to send when it is unusable.
        """
        parsed = self.resolver.resolve_date(fragment)
        if isinstance(parsed, ParseFailure):
            return self._parse_failure(turn, "date", fragment, rescheduling)

        if turn.context.failed_slot == "date":
            turn.context.clear_parse_failures()

        violation = self.rules.check_date(parsed)
        if violation:
            return self._reject(turn, violation, rescheduling)

        iso = parsed.isoformat()
        if rescheduling:
            turn.context.reschedule_new_date = iso
        else:
            turn.context.gathered_date = iso
        turn.context.contextual_date = iso
        return parsed

    def _parse_failure(
        self,
        turn: _Turn,
        slot: str,
        fragment: Optional[str],
        rescheduling: bool,
    ) -> TurnResult:
        context = turn.context
        count = context.record_parse_failure(slot)
        logger.warning(
            f"[{turn.sender_id}] Could not parse {slot} {fragment!r} (failure {count})"
        )

        if count >= self.max_parse_failures:
            logger.info(f"[{turn.sender_id}] Too many parse failures, restarting flow")
            context.reset()
            return TurnResult(
                response_text=self.responses.flow_restarted(),
                error=ErrorKind.PARSE_FAILURE,
            )

        if rescheduling:
            if slot == "date":
                context.reschedule_new_date = None
            else:
                context.reschedule_new_time = None
            context.transition_to(FlowState.RESCHEDULING_AWAITING_NEW_DATETIME)
        else:
            if slot == "date":
                context.gathered_date = None
                context.transition_to(FlowState.BOOKING_AWAITING_DATE)
            else:
                context.gathered_time = None
                context.transition_to(FlowState.BOOKING_AWAITING_TIME)

        return TurnResult(
            response_text=self.responses.parse_failed(slot, fragment),
            error=ErrorKind.PARSE_FAILURE,
        )

    def _reject(
        self,
        turn: _Turn,
        violation: RuleViolation,
        rescheduling: bool,
        needs_target: bool = False,
    ) -> TurnResult:
        """Clear the slots the violation invalidates and ask again."""
        context = turn.context
        clear_date = violation.kind in (ErrorKind.PAST_TIME, ErrorKind.BOOKING_PAUSED)
        clear_time = violation.kind in (
            ErrorKind.PAST_TIME,
            ErrorKind.OUTSIDE_HOURS,
            ErrorKind.SLOT_CONFLICT,
        )

        if rescheduling:
            if clear_date:
                context.reschedule_new_date = None
            if clear_time:
                context.reschedule_new_time = None
            next_state = self.flow.next_reschedule_state(context, needs_target)
        else:
            if clear_date:
                context.gathered_date = None
            if clear_time:
                context.gathered_time = None
            next_state = self.flow.next_booking_state(context)

        if next_state:
            context.transition_to(next_state)

        logger.warning(f"[{turn.sender_id}] Rejected ({violation.kind.value}): {violation.message}")
        return TurnResult(response_text=violation.message, error=violation.kind)

    async def _check_candidate(
        self,
        turn: _Turn,
        candidate: AppointmentCandidate,
        rescheduling: bool,
        exclude_row: Optional[int] = None,
        needs_target: bool = False,
    ) -> Optional[TurnResult]:
        """Run every scheduling rule against the current ledger.

        Returns:
            The rejection reply, or None when the candidate may be committed
        """
        violation = self.rules.validate(
            candidate,
            await self._existing_on(candidate.date),
            exclude_row=exclude_row,
        )
        if violation:
            return self._reject(turn, violation, rescheduling, needs_target=needs_target)
        return None

    def _ask(self, turn: _Turn, state: FlowState) -> TurnResult:
        turn.context.transition_to(state)
        gathered = parse_date(turn.context.gathered_date)
        return TurnResult(response_text=self.responses.prompt_for(state, gathered))

    def _complete(self, context: ConversationContext) -> None:
        context.transition_to(FlowState.TERMINAL)
        context.reset()

    def _note(self, existing: str, addition: str) -> str:
        return f"{existing} | {addition}" if existing else addition

    # === Booking ===

    async def _handle_booking(self, turn: _Turn) -> TurnResult:
        context = turn.context
        entities = turn.entities if isinstance(turn.entities, BookingEntities) else BookingEntities()
        self.flow.merge_booking(context, entities)

        if context.gathered_date:
            checked = self._validate_date(turn, context.gathered_date, rescheduling=False)
            if isinstance(checked, TurnResult):
                return checked

        next_state = self.flow.next_booking_state(context)
        if next_state in (FlowState.BOOKING_AWAITING_DATE, FlowState.BOOKING_AWAITING_TIME):
            return self._ask(turn, next_state)

        start = self.resolver.resolve(context.gathered_date, context.gathered_time)
        if isinstance(start, ParseFailure):
            return self._parse_failure(turn, start.slot, _fragment(start), rescheduling=False)
        if context.failed_slot == "time":
            context.clear_parse_failures()

        candidate = AppointmentCandidate(
            start=start,
            reason=context.gathered_reason or "",
            duration_minutes=self.duration_minutes,
        )
        if next_state == FlowState.BOOKING_AWAITING_REASON:
            rejected = await self._check_candidate(turn, candidate, rescheduling=False)
            return rejected or self._ask(turn, next_state)

        async with self._slot_locks.lock(candidate.slot_key):
            rejected = await self._check_candidate(turn, candidate, rescheduling=False)
            if rejected:
                return rejected
            return await self._commit_booking(turn, candidate)

    async def _commit_booking(self, turn: _Turn, candidate: AppointmentCandidate) -> TurnResult:
        """Create the calendar event, then the ledger record."""
        calendar = self._get_calendar()
        store = self._get_appointment_store()
        name = turn.sender_name or "Patient"
        appointment_id = turn.message_id or str(uuid4())

        event_id = await calendar.create_event(
            CalendarEventArgs(
                summary=f"Appt: {candidate.reason} - {name}",
                description=(
                    f"Patient: {name} ({turn.sender_id})\n"
                    f"Reason: {candidate.reason}\n"
                    f"Booked via WhatsApp. Message ID: {appointment_id}"
                ),
                start=candidate.start,
                end=candidate.end,
            )
        )

        record = AppointmentRecord(
            id=appointment_id,
            patient_name=name,
            phone_number=turn.sender_id,
            appointment_date=candidate.date_str,
            appointment_time=candidate.time_str,
            reason=candidate.reason,
            status=AppointmentStatus.BOOKED.value,
            calendar_event_id=event_id,
            notes=f'Booked via WhatsApp. Original message: "{turn.text}"',
        )
        try:
            await store.append(record)
        except ExternalServiceError as e:
            try:
                await calendar.delete_event(event_id)
                compensation = "calendar event removed"
            except ExternalServiceError as delete_error:
                compensation = f"calendar event NOT removed ({delete_error})"
            logger.error(
                f"[{turn.sender_id}] Reconciliation gap: ledger append failed for appointment "
                f"{appointment_id} at {candidate.start:%Y-%m-%d %H:%M} "
                f"(calendar event {event_id}); {compensation}: {e}"
            )
            raise

        logger.info(
            f"[{turn.sender_id}] Appointment {appointment_id} booked for "
            f"{candidate.start:%Y-%m-%d %H:%M}"
        )
        self._complete(turn.context)
        return TurnResult(
            response_text=self.responses.booking_confirmed(candidate.start, candidate.reason),
            committed=True,
        )

    # === Rescheduling ===

    async def _find_active(
        self,
        turn: _Turn,
        patient_name: Optional[str] = None,
        on: Optional[str] = None,
    ) -> Optional[AppointmentRecord]:
        if patient_name:
            criteria = AppointmentFilter(statuses=ACTIVE_STATUSES, patient_name=patient_name, date=on)
        else:
            criteria = AppointmentFilter(statuses=ACTIVE_STATUSES, phone_number=turn.sender_id, date=on)
        return await self._get_appointment_store().find_latest(criteria)

    async def _handle_reschedule(self, turn: _Turn) -> TurnResult:
        context = turn.context
        entities = (
            turn.entities if isinstance(turn.entities, RescheduleEntities) else RescheduleEntities()
        )
        if not turn.by_doctor:
            entities.patient_name = None
        self.flow.merge_reschedule(context, entities)

        needs_target = turn.by_doctor
        if needs_target and not context.reschedule_patient_name:
            return self._ask(turn, FlowState.RESCHEDULING_AWAITING_TARGET)

        target = await self._find_active(turn, patient_name=context.reschedule_patient_name)
        if target is None:
            patient_name = context.reschedule_patient_name
            context.reset()
            return TurnResult(
                response_text=self.responses.not_found("reschedule", patient_name),
                error=ErrorKind.NOT_FOUND,
            )

        if context.reschedule_new_date:
            checked = self._validate_date(turn, context.reschedule_new_date, rescheduling=True)
            if isinstance(checked, TurnResult):
                return checked

        if self.flow.next_reschedule_state(context, needs_target) is not None:
            return self._ask(turn, FlowState.RESCHEDULING_AWAITING_NEW_DATETIME)

        start = self.resolver.resolve(context.reschedule_new_date, context.reschedule_new_time)
        if isinstance(start, ParseFailure):
            return self._parse_failure(turn, start.slot, _fragment(start), rescheduling=True)
        if context.failed_slot == "time":
            context.clear_parse_failures()

        candidate = AppointmentCandidate(
            start=start,
            reason=target.reason,
            duration_minutes=self.duration_minutes,
        )
        async with self._slot_locks.lock(candidate.slot_key):
            rejected = await self._check_candidate(
                turn,
                candidate,
                rescheduling=True,
                exclude_row=target.row_ref,
                needs_target=needs_target,
            )
            if rejected:
                return rejected
            return await self._commit_reschedule(turn, target, candidate)

    async def _commit_reschedule(
        self,
        turn: _Turn,
        target: AppointmentRecord,
        candidate: AppointmentCandidate,
    ) -> TurnResult:
        """Move the calendar event, then update the ledger record."""
        if target.row_ref is None:
            raise ExternalServiceError("sheets", f"appointment {target.id} has no row reference")

        calendar = self._get_calendar()
        store = self._get_appointment_store()
        event_id = target.calendar_event_id

        if event_id:
            await calendar.update_event(
                event_id,
                CalendarEventArgs(
                    summary=f"(RESCHEDULED) Appt: {target.reason} - {target.patient_name}",
                    start=candidate.start,
                    end=candidate.end,
                ),
            )
        else:
            logger.warning(
                f"[{turn.sender_id}] Appointment {target.id} has no calendar event; "
                "updating the ledger only"
            )

        actor = "doctor" if turn.by_doctor else "patient"
        note = (
            f"Rescheduled by {actor} on {self.now():%Y-%m-%d %H:%M} from "
            f"{target.appointment_date} {target.appointment_time}"
        )
        try:
            await store.update(
                target.row_ref,
                {
                    "appointment_date": candidate.date_str,
                    "appointment_time": candidate.time_str,
                    "status": AppointmentStatus.RESCHEDULED.value,
                    "notes": self._note(target.notes, note),
                },
            )
        except ExternalServiceError as e:
            compensation = "no calendar event to restore"
            old_start = self.resolver.resolve(target.appointment_date, target.appointment_time)
            if event_id and isinstance(old_start, datetime):
                try:
                    await calendar.update_event(
                        event_id,
                        CalendarEventArgs(
                            summary=f"Appt: {target.reason} - {target.patient_name}",
                            start=old_start,
                            end=old_start + timedelta(minutes=self.duration_minutes),
                        ),
                    )
                    compensation = "calendar event restored"
                except ExternalServiceError as restore_error:
                    compensation = f"calendar event NOT restored ({restore_error})"
            logger.error(
                f"[{turn.sender_id}] Reconciliation gap: ledger update failed for appointment "
                f"{target.id} (row {target.row_ref}, calendar event {event_id}) moving to "
                f"{candidate.start:%Y-%m-%d %H:%M}; {compensation}: {e}"
            )
            raise

        logger.info(
            f"[{turn.sender_id}] Appointment {target.id} rescheduled to "
            f"{candidate.start:%Y-%m-%d %H:%M}"
        )
        self._complete(turn.context)
        return TurnResult(
            response_text=self.responses.rescheduled(
                candidate.start,
                target.patient_name if turn.by_doctor else None,
            ),
            committed=True,
        )

    # === Cancellation ===

    async def _handle_cancel(self, turn: _Turn) -> TurnResult:
        entities = turn.entities if isinstance(turn.entities, CancelEntities) else CancelEntities()

        patient_name = None
        if turn.by_doctor:
            patient_name = entities.patient_name
            if not patient_name:
                return TurnResult(response_text=self.responses.patient_name_required())

        on: Optional[str] = None
        if entities.date:
            if entities.date.strip().lower() == "today":
                on = self.now().date().isoformat()
            else:
                parsed = parse_date(entities.date)
                if parsed is None:
                    return TurnResult(
                        response_text=self.responses.parse_failed("date", entities.date),
                        error=ErrorKind.PARSE_FAILURE,
                    )
                on = parsed.isoformat()

        target = await self._find_active(turn, patient_name=patient_name, on=on)
        if target is None:
            return TurnResult(
                response_text=self.responses.not_found("cancel", patient_name, on),
                error=ErrorKind.NOT_FOUND,
            )

        await self._cancel_record(turn, target)
        return TurnResult(
            response_text=self.responses.cancelled(target, by_doctor=turn.by_doctor),
            committed=True,
        )

    async def _cancel_record(self, turn: _Turn, record: AppointmentRecord) -> bool:
        """
        Mark a record cancelled, then delete its calendar event.

        Returns:
            True when both steps succeeded

        Raises:
            ExternalServiceError: The ledger update failed (nothing changed)
        """
        if record.row_ref is None:
            raise ExternalServiceError("sheets", f"appointment {record.id} has no row reference")

        actor = "doctor" if turn.by_doctor else "patient"
        await self._get_appointment_store().update(
            record.row_ref,
            {
                "status": AppointmentStatus.CANCELLED.value,
                "notes": self._note(
                    record.notes, f"Cancelled by {actor} on {self.now():%Y-%m-%d %H:%M}"
                ),
            },
        )

        if not record.calendar_event_id:
            logger.warning(
                f"[{turn.sender_id}] Appointment {record.id} has no calendar event to delete"
            )
            return True

        try:
            await self._get_calendar().delete_event(record.calendar_event_id)
        except ExternalServiceError as e:
            logger.error(
                f"[{turn.sender_id}] Reconciliation gap: appointment {record.id} "
                f"(row {record.row_ref}) is cancelled but calendar event "
                f"{record.calendar_event_id} remains: {e}"
            )
            return False

        logger.info(f"[{turn.sender_id}] Appointment {record.id} cancelled")
        return True

    async def _handle_cancel_all_today(self, turn: _Turn) -> TurnResult:
        today = self.now().date().isoformat()
        records = await self._get_appointment_store().query(
            AppointmentFilter(date=today, statuses=ACTIVE_STATUSES)
        )
        if not records:
            return TurnResult(response_text=self.responses.nothing_to_cancel_today())

        names = []
        for record in records:
            try:
                if await self._cancel_record(turn, record):
                    names.append(record.patient_name)
            except ExternalServiceError as e:
                logger.error(
                    f"[{turn.sender_id}] Could not cancel appointment {record.id} "
                    f"(row {record.row_ref}): {e}"
                )

        if not names:
            return TurnResult(
                response_text=self.responses.cancel_today_failed(),
                error=ErrorKind.EXTERNAL_FAILURE,
            )

        logger.info(f"[{turn.sender_id}] Cancelled {len(names)} of {len(records)} appointment(s) today")
        return TurnResult(
            response_text=self.responses.cancelled_today(len(names), names),
            committed=True,
        )

    # === Pause / resume ===

    async def _handle_pause(self, turn: _Turn) -> TurnResult:
        entities = turn.entities if isinstance(turn.entities, PauseEntities) else PauseEntities()

        bounds: dict[str, Optional[date]] = {}
        for key in ("start_date", "end_date"):
            fragment = getattr(entities, key)
            bounds[key] = None
            if fragment:
                bounds[key] = parse_date(fragment)
                if bounds[key] is None:
                    return TurnResult(
                        response_text=self.responses.parse_failed("date", fragment),
                        error=ErrorKind.PARSE_FAILURE,
                    )

        start, end = bounds["start_date"], bounds["end_date"]
        try:
            window = self.pause_store.build_window(start, end)
        except InvalidPauseWindow as e:
            logger.warning(f"[{turn.sender_id}] {e}")
            return TurnResult(
                response_text=self.responses.pause_invalid(start, end),
                error=ErrorKind.PARSE_FAILURE,
            )

        warning = await self._pause_warning(turn, window)
        self.pause_store.activate(window)
        text = self.responses.pause_set(window.describe()) + warning
        return TurnResult(response_text=text, committed=True)

    async def _pause_warning(self, turn: _Turn, window: PauseWindow) -> str:
        """Mention existing events inside the new window. Never blocks the pause."""
        today = self.now().date()
        first = window.start_date or today
        if window.end_date:
            last = window.end_date
        elif window.start_date:
            last = window.start_date
        else:
            last = today + timedelta(days=settings.pause_lookahead_days)

        try:
            events = await self._get_calendar().list_events(
                datetime.combine(first, time.min),
                datetime.combine(last + timedelta(days=1), time.min),
            )
        except ExternalServiceError as e:
            logger.warning(f"[{turn.sender_id}] Could not check events in pause window: {e}")
            return ""

        if not events:
            return ""

        listed = [
            f"{event.summary} at {event.start:%Y-%m-%d %H:%M}" if event.start else event.summary
            for event in events[:PAUSE_WARNING_LIMIT]
        ]
        return self.responses.pause_conflicts(len(events), listed)

    async def _handle_resume(self, turn: _Turn) -> TurnResult:
        self.pause_store.clear_pause()
        return TurnResult(response_text=self.responses.resumed(), committed=True)

    # === Small talk ===

    def _with_resume_hint(self, turn: _Turn, text: str) -> str:
        context = turn.context
        if not context.is_open:
            return text
        prompt = self.responses.prompt_for(context.state, parse_date(context.gathered_date))
        return text + self.responses.resume_hint(prompt)

    async def _handle_small_talk(self, turn: _Turn) -> TurnResult:
        replies = {
            Intent.GREETING: self.responses.greeting,
            Intent.THANK_YOU: self.responses.thank_you,
            Intent.FAQ_OPENING_HOURS: self.responses.opening_hours,
        }
        reply = replies.get(turn.intent, self.responses.greeting)
        return TurnResult(response_text=self._with_resume_hint(turn, reply()))

    async def _handle_other(self, turn: _Turn) -> TurnResult:
        try:
            text = await self.responses.converse(turn.text, turn.role)
        except ExternalServiceError as e:
            logger.error(f"[{turn.sender_id}] Conversational reply failed: {e}")
            return TurnResult(
                response_text=self.responses.converse_failed(),
                error=ErrorKind.EXTERNAL_FAILURE,
            )
        return TurnResult(response_text=self._with_resume_hint(turn, text))


# Singleton
_orchestrator: Optional[DialogueOrchestrator] = None


def get_orchestrator() -> DialogueOrchestrator:
    """Get singleton DialogueOrchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DialogueOrchestrator()
    return _orchestrator
