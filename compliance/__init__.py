"""
Compliance attestation layer for the prescription delivery marketplace.

Doctors file signed eligibility attestations, patients redeem approval codes,
and the pharmacy integration retrieves sealed handoff envelopes. Every role
authenticates with a detached wallet signature over a canonical message.
"""

__version__ = "1.0.0"
