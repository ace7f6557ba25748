"""Deterministic canned responses used in demo mode.

The payload follows the full ten-section analysis schema so the parser,
extractors, and auto-task pipeline run exactly as they would on a real
provider response.
"""

from __future__ import annotations

import json
from typing import Any

# Synthetic token estimate: roughly four characters per token
TOKENS_PER_CHAR = 0.25


def estimate_tokens(text: str | None) -> int:
    return int(len(text or "") * TOKENS_PER_CHAR)


def build_demo_analysis(subject: str | None = None, sender: str | None = None) -> str:
    """Canned analysis JSON mentioning the message's subject and sender."""
    subject = subject or "Unknown Subject"
    sender = sender or "Sender Name"

    payload: dict[str, Any] = {
        "summary": {
            "text": (
                f"This is a demonstration summary. The email from {sender} regarding "
                f"'{subject}' has been analyzed. This placeholder text simulates an AI "
                "summary of key action items."
            ),
            "classification": {
                "type": ["business", "compliance"],
                "importance": "high",
                "confidence": 92,
                "reason": "Simulated high-importance classification based on generic patterns.",
            },
            "entities": {
                "people": ["Jane Doe", "John Smith"],
                "organizations": ["Acme Corp", "Global Services Ltd"],
                "identifiers": {"referenceNumber": "REF-12345-X", "invoiceId": "INV-2024-001"},
            },
        },
        "obligations_analysis": {
            "obligations": [
                {
                    "action": "Review the attached compliance document",
                    "trigger": "Upon receipt",
                    "mandatory": True,
                    "priority": "high",
                    "confidence": 95,
                    "consequence": "Potential compliance violation if ignored",
                },
                {
                    "action": "Submit feedback via the portal",
                    "trigger": "Within 5 business days",
                    "mandatory": False,
                    "priority": "medium",
                    "confidence": 88,
                    "consequence": "Feedback may not be included in the next cycle",
                },
            ]
        },
        "deadlines_analysis": {
            "deadlines": [
                {
                    "description": "Feedback Submission Deadline",
                    "date": None,
                    "type": "relative",
                    "relativeTrigger": "5 business days from receipt",
                    "critical": False,
                    "confidence": 90,
                },
                {
                    "description": "Quarterly Review Meeting",
                    "date": "2025-12-15",
                    "type": "absolute",
                    "relativeTrigger": None,
                    "critical": True,
                    "confidence": 98,
                },
            ]
        },
        "documents_analysis": {
            "documents": [
                {
                    "name": "Q4_Compliance_Report.pdf",
                    "type": "report",
                    "requiredAction": "Review and Sign",
                    "importance": "high",
                    "confidence": 92,
                }
            ],
            "links": [
                {
                    "description": "Compliance portal",
                    "url": "https://portal.example.com/compliance",
                    "requiredAction": "Submit feedback",
                    "confidence": 85,
                }
            ],
        },
        "financial_records_analysis": {
            "coverage": {
                "amount": "1,500.00",
                "currency": "USD",
                "conditions": ["Standard Terms apply"],
                "exclusions": [],
            },
            "risk": {"level": "low", "explanation": "Standard invoice for services rendered"},
        },
        "life_domain_analysis": {
            "domain": "Professional",
            "subcategory": "Administration",
            "storageRecommendation": {
                "category": "Work",
                "subfolder": "Compliance/2025",
                "retention": "5 years",
                "indexFields": ["referenceNumber", "fullText"],
            },
        },
        "importance_analysis": {
            "level": "High",
            "urgency": "Medium",
            "factors": ["Compliance requirement", "Manager request", "Quarterly deadline"],
        },
        "general_analysis": {
            "missingItems": [],
            "assumptions": ["User has access to the corporate portal"],
            "followUpNeeded": True,
            "confidence": 90,
        },
        "contacts_analysis": {
            "contacts": [
                {
                    "name": "Jane Doe",
                    "email": "jane.doe@acme.example",
                    "phone": None,
                    "organization": "Acme Corp",
                    "title": "Compliance Manager",
                    "notes": "Requested the quarterly compliance review",
                }
            ]
        },
        "events_analysis": {
            "events": [
                {
                    "title": "Quarterly Review Meeting",
                    "description": "Review of the Q4 compliance report",
                    "startTime": "2025-12-15T10:00:00Z",
                    "endTime": "2025-12-15T11:00:00Z",
                    "location": "Conference Room B",
                    "isAllDay": False,
                }
            ]
        },
    }
    return json.dumps(payload, indent=2)


def build_demo_draft(subject: str | None, sender_name: str | None) -> str:
    """Canned reply draft used by the assistant in demo mode."""
    first_name = (sender_name or "").split(" ")[0] or "there"
    return (
        "[DEMO DRAFT]\n"
        f"Hi {first_name},\n\n"
        f"Thanks for your email regarding '{subject}'. I have received it and will "
        "get back to you shortly.\n\n"
        "Best regards,\n[User Name]"
    )
