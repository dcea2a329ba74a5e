"""
VetDesk backend.

Discharge automation for veterinary clinics: case ingestion, AI discharge
summaries, scheduled follow-up emails and Vapi voice calls.
"""

__version__ = "1.0.0"
