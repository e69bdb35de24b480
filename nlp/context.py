from dataclasses import dataclass
from datetime import date
from typing import Optional


def age_in_years(birth_date: Optional[date], on: Optional[date] = None) -> Optional[int]:
    if not birth_date:
        return None
    on = on or date.today()
    years = on.year - birth_date.year
    if (on.month, on.day) < (birth_date.month, birth_date.day):
        years -= 1
    return max(years, 0)


@dataclass
class PatientContext:
    """Registered patient data passed to the prompts for disambiguation only."""

    name: Optional[str] = None
    age_years: Optional[int] = None
    weight_kg: Optional[float] = None
    height_cm: Optional[float] = None
    head_circumference_cm: Optional[float] = None
    blood_type: Optional[str] = None
    allergies: Optional[str] = None
    medical_history: Optional[str] = None
    current_medications: Optional[str] = None

    @classmethod
    def from_patient(cls, patient) -> 'PatientContext':
        if patient is None:
            return cls()
        return cls(
            name=patient.full_name,
            age_years=age_in_years(patient.birth_date),
            weight_kg=patient.weight_kg,
            height_cm=patient.height_cm,
            head_circumference_cm=patient.head_circumference_cm,
            blood_type=patient.blood_type or None,
            allergies=patient.allergies or None,
            medical_history=patient.medical_history or None,
            current_medications=patient.current_medications or None,
        )


@dataclass
class PreviousConsultation:
    """Short record of an earlier visit, used for continuity in extraction prompts."""

    consultation_date: Optional[date]
    consultation_type: Optional[str] = None
    chief_complaint: Optional[str] = None
    diagnosis: Optional[str] = None
    conduct: Optional[str] = None
    plan: Optional[str] = None
