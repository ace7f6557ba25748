"""Prompt construction for email analysis.

Builds exactly two messages: a system prompt carrying the persona, the
user's identity context, any corrective instructions, and the literal
ten-section extraction schema; and a user prompt carrying the email itself
(plus scraped link context when available).

Usage:
    from mailsense.analysis.prompts import PromptBuilder

    builder = PromptBuilder()
    user_context = builder.build_user_context(profile)
    system_prompt, user_prompt = builder.build(message, user_context)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mailsense.db.store import Message, UserProfile

NO_PROFILE_CONTEXT = (
    "No specific user persona configured. Extract based on general context."
)

PERSONA = (
    "You are MailSense, a premium personal assistant. Analyze the email and "
    "provide a DEEPLY STRUCTURED JSON response following the extraction schema."
)

ANALYSIS_SCHEMA = """Return a JSON object with these exact keys:
1. "summary": { "text": "string", "classification": { "type": ["string"], "importance": "high/medium/low", "confidence": 0-100, "reason": "string" }, "entities": { "people": ["string"], "organizations": ["string"], "identifiers": { "key": "value" } } }
2. "obligations_analysis": { "obligations": [ { "action": "string", "trigger": "string", "mandatory": boolean, "priority": "high/medium/low", "confidence": 0-100, "consequence": "string" } ] }
3. "deadlines_analysis": { "deadlines": [ { "description": "string", "date": "ISO8601 string or null", "type": "absolute/relative", "relativeTrigger": "string", "critical": boolean, "confidence": 0-100 } ] }
4. "documents_analysis": { "documents": [ { "name": "string", "type": "string", "requiredAction": "string", "importance": "high/medium/low", "confidence": 0-100 } ], "links": [ { "description": "string", "url": "string", "requiredAction": "string", "confidence": 0-100 } ] }
5. "financial_records_analysis": { "coverage": { "amount": "string", "currency": "string", "conditions": ["string"], "exclusions": ["string"] }, "risk": { "level": "string", "explanation": "string" } }
6. "life_domain_analysis": { "domain": "string", "subcategory": "string", "storageRecommendation": { "category": "string", "subfolder": "string", "retention": "string", "indexFields": ["string"] } }
7. "importance_analysis": { "level": "string", "urgency": "string", "factors": ["string"] }
8. "general_analysis": { "missingItems": ["string"], "assumptions": ["string"], "followUpNeeded": boolean, "confidence": 0-100 }
9. "contacts_analysis": { "contacts": [ { "name": "string", "email": "string", "phone": "string", "organization": "string", "title": "string", "notes": "string" } ] }
10. "events_analysis": { "events": [ { "title": "string", "description": "string", "startTime": "ISO8601 string", "endTime": "ISO8601 string", "location": "string", "isAllDay": boolean } ] }

CRITICAL RULES:
- If there is no information for a section, return the structure with empty arrays or nulls.
- Do NOT wrap the response in markdown code blocks.
- Do NOT list the current user (defined in USER IDENTITY) as a contact or person.
- Ensure all numbers (confidence, etc.) are integers 0-100.
- Use YYYY-MM-DD for dates whenever possible."""


class PromptBuilder:
    """Assembles system and user prompts for one analysis."""

    def build_user_context(self, profile: UserProfile | None) -> str:
        """Render the USER IDENTITY block, or a placeholder with no profile."""
        if profile is None:
            return NO_PROFILE_CONTEXT

        return (
            "\nUSER IDENTITY & CONTEXT:\n"
            f"Name: {profile.full_name or ''}\n"
            f"Biography: {profile.bio or ''}\n"
            f"Career/Work: {profile.career_context or ''}\n"
            f"Life/Household: {profile.household_context or ''}\n"
            f"Exclusion Rules: {profile.exclusion_instructions or ''}\n"
            f"Directives: {profile.ai_directives or ''}"
        )

    def build_system_prompt(self, user_context: str, instructions: str | None = None) -> str:
        parts = [f"{PERSONA}\n\nPERSONAL CONTEXT FOR TAILORED ANALYSIS:\n{user_context}"]
        if instructions and instructions.strip():
            parts.append(
                "\n\nCRITICAL: THE USER HAS PROVIDED SPECIFIC INSTRUCTIONS/CORRECTIONS "
                f"FOR THIS ANALYSIS. PRIORITIZE THESE:\n{instructions.strip()}"
            )
        parts.append(f"\n\n{ANALYSIS_SCHEMA}")
        return "".join(parts)

    def build_user_prompt(self, message: Message, link_context: str = "") -> str:
        received = message.received_at.isoformat() if message.received_at else "Unknown"
        body = message.body_plain or message.body_html or "No body content"
        return (
            f"Email Subject: {message.subject or 'No Subject'}\n"
            f"From: {message.from_name or message.from_address or 'Unknown'}\n"
            f"Received: {received}\n\n"
            f"Body:\n{body}"
            f"{link_context}"
        )

    def build(
        self,
        message: Message,
        user_context: str,
        instructions: str | None = None,
        link_context: str = "",
    ) -> tuple[str, str]:
        """Return (system_prompt, user_prompt)."""
        return (
            self.build_system_prompt(user_context, instructions),
            self.build_user_prompt(message, link_context),
        )
