# openai_service.py
# OpenAI API integration for PD medication adjustment suggestions

import json
import logging
import time
from typing import List, Optional

from openai import OpenAI

from pdcare.core.config import OPENAI_MODEL
from pdcare.core.models import MedicationSuggestion, PatientRecord

logger = logging.getLogger(__name__)


class MedicationAdvisorError(Exception):
    """Raised when the model could not be reached after all retries"""
    pass


def _none_if_missing(value) -> str:
    return "N/A" if value is None or value == "" else str(value)


class MedicationAdvisor:
    """Suggest medication adjustments for a PD patient using the OpenAI chat API"""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client=None):
        """Initialize the OpenAI client (an existing client may be passed in)"""
        self.client = client or OpenAI(api_key=api_key)
        self.model = model or OPENAI_MODEL
        self.temperature = 0.2  # Low temperature for clinical consistency

    def suggest_adjustments(self, record: PatientRecord) -> List[MedicationSuggestion]:
        """
        Analyze the full patient record and propose medication changes

        Returns:
            List of MedicationSuggestion; empty when the model output can't be parsed

        Raises:
            MedicationAdvisorError: when every API attempt failed
        """
        prompt = self._build_prompt(record)
        response_text = self._call_openai_with_retry(prompt)
        suggestions = self._parse_suggestions(response_text)
        logger.info("Received %d medication suggestions for %s", len(suggestions), record.patient_id)
        return suggestions

    def _build_prompt(self, record: PatientRecord) -> str:
        """Build the clinical prompt from every collection in the record"""
        patient = record.patient
        n = _none_if_missing

        vitals = "\n".join(
            f"  - {v.measured_at}: BP {n(v.systolic_bp)}/{n(v.diastolic_bp)} mmHg, HR {n(v.heart_rate)}, "
            f"Temp {n(v.temperature_c)}°C, Weight {n(v.weight_kg)} kg, RR {n(v.respiratory_rate)}, "
            f"Fluid status: {n(v.fluid_status_notes)}"
            for v in record.vitals
        ) or "  - None recorded"

        labs = "\n".join(
            f"  - {lab.resulted_at}: {lab.test_name} {lab.value} {lab.units} "
            f"(ref {n(lab.reference_low)}-{n(lab.reference_high)})"
            for lab in record.lab_results
        ) or "  - None recorded"

        exchanges = "\n".join(
            f"  - {e.exchange_at}: {e.dialysate_type}, fill {e.fill_volume_ml} mL, dwell {e.dwell_time_hours} h, "
            f"drain {e.drain_volume_ml} mL, UF {n(e.ultrafiltration_ml)} mL, "
            f"Cloudy fluid: {'Yes' if e.is_effluent_cloudy else 'No'}, Complications: {n(e.complications)}"
            for e in record.pd_events
        ) or "  - None recorded"

        episodes = "\n".join(
            f"  - Diagnosis: {ep.diagnosis_date}, Organism: {ep.organism}, "
            f"Outcome: {ep.outcome}, Treatment: {n(ep.treatment_regimen)}"
            for ep in record.peritonitis_episodes
        ) or "  - No history of peritonitis."

        medications = "\n".join(
            f"  - {m.name}, {m.dosage}, {m.frequency}, started {m.start_date}, "
            f"ended {n(m.end_date)}, prescribed by {n(m.prescribing_doctor)}"
            for m in record.medications
        ) or "  - None"

        urine = "\n".join(
            f"  - {u.log_date}: {u.volume_ml} mL" for u in record.urine_output_logs
        ) or "  - None recorded"

        adequacy = "\n".join(
            f"  - {a.test_date}: Total Kt/V {n(a.total_ktv)}, Peritoneal Kt/V {n(a.peritoneal_ktv)}"
            for a in record.adequacy_tests
        ) or "  - None recorded"

        outcomes = "\n".join(
            f"  - {s.survey_date}: {s.survey_tool} score {s.score}, {n(s.summary)}"
            for s in record.pro_surveys
        ) or "  - None recorded"

        prompt = f"""You are an experienced clinician specializing in peritoneal dialysis.
Analyze the patient data below and suggest potential medication adjustments to optimize
the treatment plan. Give the clinical reasoning for each suggestion.

PATIENT:
- Patient ID: {patient.patient_id}
- Nephro ID: {n(patient.nephro_id)}
- PD Exchange Type: {patient.pd_exchange_type}
- Underlying Kidney Disease: {n(patient.underlying_kidney_disease)}

VITALS:
{vitals}

LAB RESULTS:
{labs}

PD EXCHANGES:
{exchanges}

PERITONITIS HISTORY:
{episodes}

CURRENT MEDICATIONS:
{medications}

URINE OUTPUT (RECENT):
{urine}

PD ADEQUACY (Kt/V):
{adequacy}

PATIENT REPORTED OUTCOMES:
{outcomes}

Respond with ONLY a JSON array. Each element must have exactly these keys:
"medication_name", "suggested_change", "reasoning".
Return an empty array if no change is warranted."""

        return prompt

    def _call_openai_with_retry(self, prompt: str, max_retries: int = 2) -> str:
        """Call OpenAI API with automatic retry on failure"""

        for attempt in range(max_retries + 1):
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {
                            "role": "system",
                            "content": "You are a nephrologist reviewing peritoneal dialysis patients. Suggestions are reviewed by the treating physician before any change is made."
                        },
                        {
                            "role": "user",
                            "content": prompt
                        }
                    ],
                    temperature=self.temperature,
                    max_tokens=2000
                )

                return response.choices[0].message.content

            except Exception as e:
                if attempt < max_retries:
                    # Exponential backoff
                    wait_time = (2 ** attempt) * 2  # 2s, 4s
                    logger.warning(
                        "API call failed (attempt %d/%d), retrying in %ds...", attempt + 1, max_retries + 1, wait_time
                    )
                    time.sleep(wait_time)
                else:
                    raise MedicationAdvisorError(
                        f"OpenAI API call failed after {max_retries + 1} attempts: {str(e)}"
                    ) from e

    def _parse_suggestions(self, response_text: str) -> List[MedicationSuggestion]:
        """Parse a JSON array of suggestions (handles markdown code blocks)"""
        try:
            if "```json" in response_text:
                json_start = response_text.find("```json") + 7
                json_end = response_text.find("```", json_start)
                json_text = response_text[json_start:json_end].strip()
            elif "```" in response_text:
                json_start = response_text.find("```") + 3
                json_end = response_text.find("```", json_start)
                json_text = response_text[json_start:json_end].strip()
            else:
                json_text = response_text.strip()

            data = json.loads(json_text)
        except (TypeError, ValueError) as e:
            logger.error("Error parsing medication suggestions: %s", e)
            logger.debug("Response text: %s", (response_text or "")[:500])
            return []

        if isinstance(data, dict):
            data = data.get("suggestions", [])
        if not isinstance(data, list):
            logger.error("Unexpected suggestion payload type: %s", type(data).__name__)
            return []

        suggestions = []
        for item in data:
            if not isinstance(item, dict) or not item.get("medication_name"):
                continue
            suggestions.append(MedicationSuggestion(
                medication_name=str(item["medication_name"]),
                suggested_change=str(item.get("suggested_change", "")),
                reasoning=str(item.get("reasoning", "")),
            ))
        return suggestions
