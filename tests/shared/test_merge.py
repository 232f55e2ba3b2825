"""Tests for the medical data merge engine."""

from src.shared.intake_models import SBAR, MedicalData, VitalsData
from src.shared.merge import extract_update, merge_medical_data, merge_vitals_data
from src.shared.types import AgentRole, BookingStatus, TemperatureUnit, TriageDecision


def _record() -> MedicalData:
    return MedicalData(
        chief_complaint="Headache",
        hpi="Three days of throbbing frontal headache, worse in the morning.",
        medications=["ibuprofen"],
        records_check_completed=True,
        booking_status=BookingStatus.COLLECTING,
    )


class TestMergeMedicalData:
    """Field-level replace-or-keep merge."""

    def test_booking_status_update_keeps_complaint(self) -> None:
        """Updating booking status preserves the chief complaint."""
        existing = MedicalData(chief_complaint="Headache", booking_status=BookingStatus.COLLECTING)
        merged = merge_medical_data(existing, {"bookingStatus": "ready"})
        assert merged.chief_complaint == "Headache"
        assert merged.booking_status == BookingStatus.READY

    def test_empty_update_is_identity(self) -> None:
        """Merging an empty object returns an equal record."""
        existing = _record()
        assert merge_medical_data(existing, {}) == existing

    def test_existing_record_not_mutated(self) -> None:
        """The input record is left untouched."""
        existing = _record()
        merge_medical_data(existing, {"chiefComplaint": "Back pain"})
        assert existing.chief_complaint == "Headache"

    def test_absent_fields_unchanged(self) -> None:
        """Fields missing from the update keep their values."""
        merged = merge_medical_data(_record(), {"allergies": ["penicillin"]})
        assert merged.medications == ["ibuprofen"]
        assert merged.hpi == _record().hpi
        assert merged.allergies == ["penicillin"]

    def test_empty_list_replaces(self) -> None:
        """An explicit empty list is a real answer and replaces."""
        merged = merge_medical_data(_record(), {"medications": []})
        assert merged.medications == []

    def test_false_replaces(self) -> None:
        """An explicit False replaces a True flag."""
        merged = merge_medical_data(_record(), {"recordsCheckCompleted": False})
        assert merged.records_check_completed is False

    def test_empty_string_replaces(self) -> None:
        """An explicit empty string replaces."""
        merged = merge_medical_data(_record(), {"chiefComplaint": ""})
        assert merged.chief_complaint == ""

    def test_null_is_ignored(self) -> None:
        """An explicit null never erases collected data."""
        merged = merge_medical_data(_record(), {"chiefComplaint": None, "medications": None})
        assert merged.chief_complaint == "Headache"
        assert merged.medications == ["ibuprofen"]

    def test_lists_replaced_not_appended(self) -> None:
        """Lists are replaced wholesale."""
        merged = merge_medical_data(_record(), {"medications": ["paracetamol"]})
        assert merged.medications == ["paracetamol"]

    def test_snake_case_keys_accepted(self) -> None:
        """snake_case keys work as well as camelCase."""
        merged = merge_medical_data(_record(), {"family_history": "Migraine in mother"})
        assert merged.family_history == "Migraine in mother"

    def test_sbar_replaced_when_complete(self) -> None:
        """A complete SBAR object is adopted."""
        sbar = {
            "situation": "Headache",
            "background": "No history",
            "assessment": "Tension type",
            "recommendation": "GP review",
        }
        merged = merge_medical_data(_record(), {"clinicalHandover": sbar})
        assert merged.clinical_handover == SBAR(**sbar)

    def test_vitals_replaced_atomically(self) -> None:
        """A well-formed vitalsData object replaces the vitals document."""
        merged = merge_medical_data(
            _record(),
            {"vitalsData": {"patientAge": 40, "temperature": {"value": 100.4, "unit": "fahrenheit"}}},
        )
        assert merged.vitals_data.patient_age == 40
        assert merged.vitals_data.temperature.unit == TemperatureUnit.FAHRENHEIT


class TestMalformedUpdates:
    """Wrong shapes are ignored without raising."""

    def test_non_mapping_update_ignored(self) -> None:
        """A list or string update leaves the record unchanged."""
        existing = _record()
        assert merge_medical_data(existing, ["chiefComplaint"]) == existing
        assert merge_medical_data(existing, "garbage") == existing
        assert merge_medical_data(existing, None) == existing

    def test_wrong_type_ignored(self) -> None:
        """A number where text is expected is ignored."""
        merged = merge_medical_data(_record(), {"chiefComplaint": 42})
        assert merged.chief_complaint == "Headache"

    def test_list_with_non_strings_ignored(self) -> None:
        """A list containing non-strings is ignored."""
        merged = merge_medical_data(_record(), {"medications": ["aspirin", 3]})
        assert merged.medications == ["ibuprofen"]

    def test_string_flag_ignored(self) -> None:
        """A string "false" is not a boolean."""
        merged = merge_medical_data(_record(), {"recordsCheckCompleted": "false"})
        assert merged.records_check_completed is True

    def test_unknown_agent_ignored(self) -> None:
        """A persona outside the roster is ignored."""
        merged = merge_medical_data(_record(), {"currentAgent": "Receptionist"})
        assert merged.current_agent == AgentRole.TRIAGE

    def test_unknown_booking_status_ignored(self) -> None:
        """A booking status outside the enum is ignored."""
        merged = merge_medical_data(_record(), {"bookingStatus": "maybe"})
        assert merged.booking_status == BookingStatus.COLLECTING

    def test_partial_sbar_ignored(self) -> None:
        """An SBAR missing required parts is ignored."""
        merged = merge_medical_data(_record(), {"clinicalHandover": {"situation": "x"}})
        assert merged.clinical_handover is None

    def test_malformed_vitals_ignored(self) -> None:
        """A vitals document with a bad reading keeps the old vitals."""
        existing = _record()
        merged = merge_medical_data(existing, {"vitalsData": {"temperature": "hot"}})
        assert merged.vitals_data == existing.vitals_data

    def test_unknown_keys_ignored(self) -> None:
        """Keys outside the record schema are dropped."""
        assert extract_update({"favouriteColour": "blue"}) == {}

    def test_valid_fields_kept_next_to_invalid(self) -> None:
        """One bad field does not discard the good ones."""
        changes = extract_update({"hpi": 7, "allergies": ["latex"]})
        assert changes == {"allergies": ["latex"]}


class TestMergeVitalsData:
    """Reading-level merge for recorded vitals."""

    def test_sub_field_absent_keeps_existing(self) -> None:
        """Updating only systolic keeps the stored diastolic."""
        existing = VitalsData.model_validate(
            {"bloodPressure": {"systolic": 120, "diastolic": 80}}
        )
        merged = merge_vitals_data(existing, {"bloodPressure": {"systolic": 130}}, "2026-01-01T00:00:00")
        assert merged.blood_pressure.systolic == 130
        assert merged.blood_pressure.diastolic == 80

    def test_collected_at_stamped_for_supplied_reading(self) -> None:
        """Only the readings that changed get a timestamp."""
        merged = merge_vitals_data(
            VitalsData(), {"temperature": {"value": 37.0}}, "2026-01-01T00:00:00"
        )
        assert merged.temperature.collected_at == "2026-01-01T00:00:00"
        assert merged.weight.collected_at is None

    def test_triage_fields_not_writable(self) -> None:
        """Triage output cannot be set through the update."""
        merged = merge_vitals_data(
            VitalsData(), {"triageDecision": "normal", "currentStatus": "fine"}, "t"
        )
        assert merged.triage_decision == TriageDecision.PENDING
        assert merged.current_status == "fine"

    def test_non_numeric_reading_ignored(self) -> None:
        """A text reading value is ignored."""
        merged = merge_vitals_data(VitalsData(), {"weight": {"value": "seventy"}}, "t")
        assert merged.weight.value is None
        assert merged.weight.collected_at is None

    def test_bool_is_not_a_number(self) -> None:
        """True is not accepted as an age."""
        merged = merge_vitals_data(VitalsData(), {"patientAge": True}, "t")
        assert merged.patient_age is None

    def test_oversized_integer_kept_as_infinity(self) -> None:
        """An integer beyond float range becomes infinity instead of raising."""
        merged = merge_vitals_data(VitalsData(), {"patientAge": 10**400}, "t")
        assert merged.patient_age == float("inf")

    def test_oversized_negative_integer(self) -> None:
        """A huge negative reading becomes negative infinity."""
        merged = merge_vitals_data(VitalsData(), {"weight": {"value": -(10**400)}}, "t")
        assert merged.weight.value == float("-inf")
