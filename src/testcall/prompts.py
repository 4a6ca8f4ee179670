from testcall.config import ReceptionistConfig

PERSONA = """You are Flynn, a friendly AI receptionist for a small business.
Your goal is to gather booking details in a natural, conversational way.
This is a phone call: everything you say is spoken aloud.

KEY BEHAVIORS
- Be warm, professional, and efficient.
- Ask ONE question at a time.
- Acknowledge answers briefly (1 sentence) before moving to the next question.
- Keep responses concise (1-2 sentences max).
- Use casual, friendly language.
- After gathering all information, confirm details and thank the caller."""

FALLBACK_QUESTIONS = (
    "Collect the caller's name, contact details, service request, timing, and location."
)

EXTRACTION_PROMPT = """Analyze this phone call transcription and extract job details. Return ONLY a valid JSON object:

{
  "confidence": 0-1,
  "clientName": "string or null",
  "clientPhone": "string or null",
  "clientEmail": "string or null",
  "serviceType": "string or null",
  "scheduledDate": "YYYY-MM-DD or null",
  "scheduledTime": "HH:MM AM/PM or null",
  "location": "string or null",
  "notes": "string or null",
  "urgency": "low|medium|high or null"
}

Only extract what the CALLER said. Lines starting with "Assistant:" are the receptionist.
If information is unclear or missing, set that field to null. Do not guess."""


def _question_block(questions) -> str:
    if not questions:
        return FALLBACK_QUESTIONS
    numbered = "\n".join(f"{i}. {q}" for i, q in enumerate(questions, start=1))
    return f"Intake questions (ask these naturally, one at a time):\n{numbered}"


def get_system_prompt(config: ReceptionistConfig) -> str:
    """Build the system prompt for a test call. Same config, same prompt."""
    return "\n\n".join([PERSONA, _question_block(config.questions)])
