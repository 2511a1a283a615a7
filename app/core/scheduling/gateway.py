"""
HTTP client for the OpenDental practice-management API.

OpenDental is the system of record for patients, providers, operatories
and appointments. It has no trustworthy "free slots" endpoint, so the
core derives availability from appointment queries:

- GET  /appointments                     - Appointments by date range / patient
- POST /appointments                     - Create appointment
- PUT  /appointments/{AptNum}            - Update appointment
- PUT  /appointments/{AptNum}/Break      - Break (cancel / no-show)
- PUT  /appointments/{AptNum}/Confirm    - Set confirmation status
- GET  /appointments/Planned             - Treatment-plan linked appointments
- POST /appointments/SchedulePlanned     - Schedule a planned appointment
- GET  /appointments/ASAP                - ASAP list
- GET  /providers, GET /operatories      - Catalogs
- GET  /schedules                        - Provider working blocks
- GET  /patients/Simple, POST /patients  - Patient lookup / creation
- GET  /recalls                          - Recall due dates

Unlike a best-effort client, every failure here raises
GatewayUnavailable: an empty appointment list means "everything is
free", so a failed call must never be mistaken for one.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Optional

import httpx

from app.config import Settings, get_settings
from app.core.scheduling.dates import as_calendar_date, format_date, format_datetime
from app.core.scheduling.errors import GatewayUnavailable, PatientNotFound, ValidationError
from app.core.scheduling.models import (
    Appointment,
    AppointmentPatch,
    BookingRequest,
    OfficeHours,
    Operatory,
    Patient,
    PenaltyMarker,
    Priority,
    Provider,
    ProviderSchedule,
    Recall,
    pattern_for_duration,
)

logger = logging.getLogger(__name__)


def clean_phone(phone: str) -> str:
    """Strip a phone number down to its digits."""
    return re.sub(r"\D", "", phone or "")


def normalize_name(name: str) -> str:
    """Title-case a name for lookup ("sAM" -> "Sam")."""
    name = (name or "").strip()
    return name[:1].upper() + name[1:].lower() if name else ""


class OpenDentalGateway:
    """
    Async client for the OpenDental REST API.

    One client per process is fine; it holds no per-session state.
    Requests are not retried. A timeout counts as a gateway failure.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_header: Optional[str] = None,
        timeout: Optional[float] = None,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize client.

        Args:
            base_url: API base URL (defaults to settings)
            auth_header: Authorization header value (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
            settings: Settings override (for testing)
            client: Pre-built httpx client (for testing)
        """
        self._settings = settings or get_settings()
        self.base_url = base_url or self._settings.opendental_api_base_url
        self.auth_header = auth_header or self._settings.opendental_auth_header
        self.timeout = timeout or self._settings.opendental_timeout_seconds
        self.default_length = self._settings.default_appointment_length
        self._client: Optional[httpx.AsyncClient] = client

    async def __aenter__(self) -> "OpenDentalGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Authorization": self.auth_header,
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        """Send one request and return the decoded body.

        Raises:
            GatewayUnavailable: transport error, timeout, non-2xx or error body
        """
        client = await self._get_client()

        try:
            response = await client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            logger.error(f"{operation} timed out after {self.timeout}s")
            raise GatewayUnavailable(operation, "timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"{operation} failed: {e}")
            raise GatewayUnavailable(operation, str(e)) from e

        if response.status_code not in (200, 201, 204):
            message = ""
            try:
                message = str(response.json())
            except ValueError:
                message = response.text[:200]
            logger.error(f"{operation} returned HTTP {response.status_code}: {message}")
            raise GatewayUnavailable(operation, message, status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return None

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayUnavailable(operation, "invalid JSON body") from e

        if isinstance(data, dict) and data.get("error") is True:
            raise GatewayUnavailable(operation, str(data.get("message", "error response")))

        return data

    @staticmethod
    def _as_list(data: Any) -> list:
        """Normalize list-ish responses."""
        if data is None:
            return []
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return data.get("items", data.get("data", [data]))
        return []

    # === Appointments ===

    async def list_appointments(
        self,
        date_start: date,
        date_end: date,
        patient_id: Optional[int] = None,
    ) -> list[Appointment]:
        """List appointments whose date falls in [date_start, date_end].

        Args:
            date_start: First calendar date (inclusive)
            date_end: Last calendar date (inclusive)
            patient_id: Restrict to one patient

        Returns:
            Appointments of every status
        """
        params: dict = {
            "dateStart": format_date(as_calendar_date(date_start)),
            "dateEnd": format_date(as_calendar_date(date_end)),
        }
        if patient_id is not None:
            params["PatNum"] = patient_id

        data = await self._request("GetAppointments", "GET", "/appointments", params=params)
        appointments = [
            Appointment.from_api(item, self.default_length) for item in self._as_list(data)
        ]
        logger.debug(
            f"GetAppointments {params['dateStart']}..{params['dateEnd']} "
            f"patient={patient_id}: {len(appointments)} found"
        )
        return appointments

    async def create_appointment(self, request: BookingRequest) -> Appointment:
        """Create an appointment. ClinicNum is never sent."""
        body: dict = {
            "PatNum": request.patient_id,
            "AptDateTime": format_datetime(request.start),
            "ProvNum": request.provider_id,
            "Op": request.operatory_id,
            "Pattern": pattern_for_duration(request.duration_minutes),
        }
        if request.note:
            body["Note"] = request.note
        if request.is_hygiene:
            body["IsHygiene"] = "true"

        data = await self._request("CreateAppointment", "POST", "/appointments", json=body)
        logger.info(
            f"Created appointment for patient {request.patient_id} at {body['AptDateTime']} "
            f"(provider {request.provider_id}, op {request.operatory_id})"
        )
        return Appointment.from_api(data or body, self.default_length)

    async def update_appointment(self, appointment_id: int, patch: AppointmentPatch) -> Appointment:
        """Apply a patch to an existing appointment in a single call."""
        if patch.is_empty():
            raise ValidationError(
                field="appointment_change",
                question="What would you like to change about the appointment?",
            )

        body = patch.to_api()
        data = await self._request(
            "UpdateAppointment", "PUT", f"/appointments/{appointment_id}", json=body
        )
        logger.info(f"Updated appointment {appointment_id}: {sorted(body)}")
        if not data:
            data = await self._request(
                "GetAppointment", "GET", f"/appointments/{appointment_id}"
            )
        return Appointment.from_api(data, self.default_length)

    async def break_appointment(
        self,
        appointment_id: int,
        penalty: Optional[PenaltyMarker],
        return_to_unscheduled_list: bool,
    ) -> None:
        """Break an appointment, optionally recording a penalty marker."""
        body: dict = {"sendToUnscheduledList": "true" if return_to_unscheduled_list else "false"}
        if penalty is not None:
            body["breakType"] = penalty.value

        await self._request(
            "BreakAppointment", "PUT", f"/appointments/{appointment_id}/Break", json=body
        )
        logger.info(
            f"Broke appointment {appointment_id} "
            f"(penalty={penalty.value if penalty else None}, "
            f"unscheduled_list={return_to_unscheduled_list})"
        )

    async def confirm_appointment(
        self,
        appointment_id: int,
        confirm_val: str = "Appointment Confirmed",
    ) -> None:
        """Set an appointment's confirmation status."""
        await self._request(
            "ConfirmAppointment",
            "PUT",
            f"/appointments/{appointment_id}/Confirm",
            json={"confirmVal": confirm_val},
        )

    async def list_planned_appointments(self, patient_id: int) -> list[Appointment]:
        """Treatment-plan linked appointments awaiting scheduling."""
        data = await self._request(
            "GetPlannedAppts", "GET", "/appointments/Planned", params={"PatNum": patient_id}
        )
        planned = []
        for item in self._as_list(data):
            # Planned records have no time on the schedule yet
            item = dict(item)
            item.setdefault("AptDateTime", "0001-01-01 00:00:00")
            item.setdefault("AptStatus", "Planned")
            planned.append(Appointment.from_api(item, self.default_length))
        return planned

    async def schedule_planned_appointment(
        self,
        planned_appointment_id: int,
        request: BookingRequest,
    ) -> Appointment:
        """Schedule a planned appointment, keeping its treatment-plan link."""
        body = {
            "AptNum": planned_appointment_id,
            "AptDateTime": format_datetime(request.start),
            "ProvNum": request.provider_id,
            "Op": request.operatory_id,
        }
        data = await self._request(
            "SchedulePlanned", "POST", "/appointments/SchedulePlanned", json=body
        )
        logger.info(f"Scheduled planned appointment {planned_appointment_id} at {body['AptDateTime']}")
        merged = {"PatNum": request.patient_id, **body, "AptStatus": "Scheduled"}
        return Appointment.from_api(data or merged, self.default_length)

    async def list_asap_appointments(
        self,
        date_start: date,
        date_end: date,
    ) -> list[Appointment]:
        """Appointments flagged ASAP within a date range."""
        params = {
            "DateStart": format_date(as_calendar_date(date_start)),
            "DateEnd": format_date(as_calendar_date(date_end)),
        }
        data = await self._request("GetASAP", "GET", "/appointments/ASAP", params=params)
        appointments = []
        for item in self._as_list(data):
            item = dict(item)
            item.setdefault("Priority", "ASAP")
            appointments.append(Appointment.from_api(item, self.default_length))
        return appointments

    # === Catalogs ===

    async def list_providers(self) -> list[Provider]:
        """List providers (dentists and hygienists)."""
        data = await self._request("GetProviders", "GET", "/providers")
        return [Provider.from_api(item) for item in self._as_list(data)]

    async def list_operatories(self) -> list[Operatory]:
        """List operatories (treatment rooms)."""
        data = await self._request("GetOperatories", "GET", "/operatories")
        return [Operatory.from_api(item) for item in self._as_list(data)]

    async def get_office_hours(self) -> OfficeHours:
        """Office hours. The API has no endpoint for these; they are configured."""
        return OfficeHours(days=dict(self._settings.office_hours))

    async def list_schedules(
        self,
        date_start: date,
        date_end: date,
        provider_id: Optional[int] = None,
    ) -> list[ProviderSchedule]:
        """Provider working blocks whose date falls in [date_start, date_end].

        Blockouts and practice/employee notes are dropped; only
        provider schedules bound who can be booked when.
        """
        params: dict = {
            "dateStart": format_date(as_calendar_date(date_start)),
            "dateEnd": format_date(as_calendar_date(date_end)),
            "SchedType": "Provider",
        }
        if provider_id is not None:
            params["ProvNum"] = provider_id
        data = await self._request("GetSchedules", "GET", "/schedules", params=params)
        schedules = []
        for item in self._as_list(data):
            if str(item.get("SchedType", "Provider")) != "Provider" or not item.get("ProvNum"):
                continue
            try:
                schedules.append(ProviderSchedule.from_api(item))
            except ValueError:
                logger.warning(f"Skipping malformed schedule {item.get('ScheduleNum')}")
        return schedules

    # === Patients ===

    async def find_patients(
        self,
        last_name: Optional[str] = None,
        first_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> list[Patient]:
        """Find patients by name and/or phone. Names match case-insensitively."""
        params: dict = {}
        if last_name:
            params["LName"] = normalize_name(last_name)
        if first_name:
            params["FName"] = normalize_name(first_name)
        if phone:
            params["Phone"] = clean_phone(phone)

        if not params:
            # Never list every patient
            raise ValidationError(
                field="patient_name",
                question="May I have your name or phone number?",
            )

        data = await self._request("GetMultiplePatients", "GET", "/patients/Simple", params=params)
        patients = [Patient.from_api(item) for item in self._as_list(data)]

        def matches(patient: Patient) -> bool:
            if last_name and patient.last_name.lower() != last_name.strip().lower():
                return False
            if first_name and not patient.first_name.lower().startswith(first_name.strip().lower()):
                return False
            return True

        return [p for p in patients if matches(p)]

    async def create_patient(
        self,
        first_name: str,
        last_name: str,
        birthdate: date,
        phone: str,
    ) -> Patient:
        """Create a new patient record."""
        body = {
            "FName": normalize_name(first_name),
            "LName": normalize_name(last_name),
            "Birthdate": format_date(birthdate),
            "WirelessPhone": clean_phone(phone),
        }
        data = await self._request("CreatePatient", "POST", "/patients", json=body)
        logger.info("Created new patient record")
        return Patient.from_api(data or body)

    async def find_or_create_patient(
        self,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        birthdate: Optional[date] = None,
        allow_create: bool = True,
    ) -> Patient:
        """Resolve a caller to a patient, creating one if allowed.

        Name lookup is tried first, then phone. Creating a patient needs
        first name, last name, birthdate and phone; the first missing one
        is raised as a ValidationError so the caller is asked for exactly
        that field.

        Raises:
            ValidationError: nothing to search by, or a creation field is missing
            PatientNotFound: no match and creation not allowed
        """
        if not (last_name or first_name or phone):
            raise ValidationError(
                field="patient_name",
                question="May I have your name or phone number?",
            )

        if last_name or first_name:
            matches = await self.find_patients(last_name=last_name, first_name=first_name)
            if phone and len(matches) > 1:
                digits = clean_phone(phone)
                narrowed = [p for p in matches if p.phone and clean_phone(p.phone) == digits]
                matches = narrowed or matches
            if matches:
                return matches[0]

        if phone:
            matches = await self.find_patients(phone=phone)
            if matches:
                return matches[0]

        searched = " ".join(filter(None, [first_name, last_name, phone]))
        if not allow_create:
            raise PatientNotFound(searched)

        required = [
            ("first_name", first_name, "May I have your first name?"),
            ("last_name", last_name, "And your last name, please?"),
            ("birthdate", birthdate, "I'll need your date of birth to create your profile. What is it?"),
            ("phone", phone, "What's the best phone number to reach you?"),
        ]
        for field_name, value, question in required:
            if not value:
                raise ValidationError(field=field_name, question=question)

        if len(clean_phone(phone)) != 10:
            raise ValidationError(
                field="phone",
                question="Could you please provide your full 10-digit phone number including area code?",
            )

        return await self.create_patient(first_name, last_name, birthdate, phone)

    # === Recalls ===

    async def get_recalls(self, patient_id: int) -> list[Recall]:
        """Recall records for a patient."""
        data = await self._request("GetRecalls", "GET", "/recalls", params={"PatNum": patient_id})
        return [Recall.from_api(item) for item in self._as_list(data)]


# Singleton
_gateway: Optional[OpenDentalGateway] = None


def get_gateway() -> OpenDentalGateway:
    """Get singleton OpenDentalGateway."""
    global _gateway
    if _gateway is None:
        _gateway = OpenDentalGateway()
    return _gateway
