"""Fixed assistant phrasing: greetings, per-field questions and the AI preamble."""

from __future__ import annotations

import json
from typing import Any

from .regions import Region

GREETING = (
    "Hi! I'm Meeka, your health assistant. What would you like to do today? I can help you:\n\n"
    "• Add new symptoms or medications\n"
    "• Track your mood\n"
    "• Write notes about your health\n"
    "• Answer questions about your health patterns\n"
    "• Suggest questions for your next doctor visit\n\n"
    "What can I help you with?"
)

GREETING_EXAMPLES = ["Add a symptom", "Add a medication", "Add a mood entry"]

PROCESSING_MESSAGE = "Processing your request..."

FALLBACK_APOLOGY = "Sorry, I couldn't come up with an answer just now. Please try again in a moment."

NO_PATIENT_MESSAGE = "No patient selected. Please select a patient first."

PATIENT_SELECTION_MESSAGE = "Which patient is this for? Pick one so I know where to save it."

DUPLICATE_MOOD_MESSAGE = "A mood entry already exists for this date. Please edit the existing entry instead."

START_MESSAGES = {
    "symptoms": "I'll help you add a symptom.",
    "medications": "I'll help you add a medication.",
    "mood_entries": "I'll help you add a mood entry.",
    "diary_entries": "I'll help you add a diary entry.",
}

FIELD_PROMPTS: dict[str, dict[str, str]] = {
    "symptoms": {
        "description": "What's the description of the symptom?",
        "start_date": "When did the symptom start? (say 'today' or 'skip' to use today's date)",
        "severity": "How severe is it? (Mild, Moderate, or Severe)",
        "end_date": "When did the symptom end? (optional)",
    },
    "medications": {
        "medication_name": "What's the name of the medication?",
        "start_date": "When did you start taking it? (say 'today' or 'skip' to use today's date)",
        "dosage": "What's the dosage?",
        "status": "Is it Active or Inactive?",
        "end_date": "When did you stop taking it? (optional)",
        "prescribed_by": "Who prescribed it? (optional)",
    },
    "mood_entries": {
        "date": "What date is this mood entry for? (say 'today' or 'skip' to use today's date)",
        "body": "Rate your physical well-being from 1-5 (1=poor, 5=excellent)",
        "mind": "Rate your mental well-being from 1-5 (1=poor, 5=excellent)",
        "sleep": "Rate your sleep quality from 1-5 (1=poor, 5=excellent)",
        "mood": "Rate your overall mood from 1-5 (1=poor, 5=excellent)",
    },
    "diary_entries": {
        "entry_type": "What type of entry? (Symptom, Appointment, Diagnosis, Note, Treatment, Other, or AI)",
        "title": "What's the title of this entry?",
        "date": "What date is this for? (say 'today' or 'skip' to use today's date)",
        "severity": "What's the severity level? (optional)",
        "attendees": "Who was present? (optional, separate names with commas)",
    },
}

NOTES_PROMPTS = {
    "symptoms": (
        "Is there anything else you'd like to add about this symptom? "
        "(e.g., triggers, patterns, related symptoms, or any other details)"
    ),
    "medications": (
        "Is there anything else you'd like to add about this medication? "
        "(e.g., side effects, effectiveness, or any other details)"
    ),
    "mood_entries": (
        "Is there anything else you'd like to add about your mood today? "
        "(e.g., what influenced your mood, activities, or any other details)"
    ),
    "diary_entries": (
        "Is there anything else you'd like to add to this entry? "
        "(e.g., additional context, follow-up actions, or any other details)"
    ),
}

REGION_LANGUAGE = {
    Region.AU: "Please use Australian English and Australian medical terminology where appropriate.",
    Region.UK: "Please use British English and UK medical terminology where appropriate.",
    Region.USA: "Please use American English and US medical terminology where appropriate.",
}

SYSTEM_PREAMBLE = """\
You are Meeka, a warm and helpful AI health assistant. You help users manage their \
health records and provide guidance.

Key Guidelines:
- Be warm, clear, and non-clinical in tone
- Keep responses concise and conversational
- Focus on helping users add health data or query their records
- Never provide medical advice, diagnoses, or treatment recommendations; suggest \
talking to a clinician instead
- Help analyze patterns in their health data when they ask questions

Your capabilities:
- Add symptoms, medications, mood entries and diary entries (the user can say \
"Add a symptom", "Add a medication", "Add a mood entry" or "Add a note")
- Answer questions about their health history and patterns
- Suggest questions for their next medical visit

Always maintain a friendly, supportive tone while being professional about health matters."""


def field_prompt(table: str, field_name: str) -> str:
    return FIELD_PROMPTS.get(table, {}).get(field_name) or f"What's the {field_name.replace('_', ' ')}?"


def notes_prompt(table: str) -> str:
    return NOTES_PROMPTS.get(table, "Is there anything else you'd like to add?")


def start_prompt(table: str, first_field: str) -> str:
    opener = START_MESSAGES.get(table, "I'll help you add that.")
    return f"{opener} {field_prompt(table, first_field)}"


def build_system_preamble(region: Region | None, digest: dict[str, Any]) -> str:
    language = REGION_LANGUAGE.get(region or Region.USA, REGION_LANGUAGE[Region.USA])
    patient_name = (digest.get("patient") or {}).get("full_name") or ""
    first_name = patient_name.split(" ")[0] if patient_name else "you"
    if patient_name:
        scope = (
            f"The user has selected {patient_name}. When they add data, assume it is for this "
            f"patient and use their first name when confirming, e.g. \"I'll add that symptom for {first_name}.\""
        )
    else:
        scope = "No patient is selected yet. Ask the user to pick one before adding data."
    return (
        f"{language} {SYSTEM_PREAMBLE}\n\n"
        "Current patient context JSON:\n"
        f"{json.dumps(digest, ensure_ascii=True, default=str)}\n\n"
        f"{scope}"
    )
