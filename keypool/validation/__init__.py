"""Validation package."""

from keypool.validation.admission import AdmissionResult, AdmissionValidator

__all__ = ["AdmissionResult", "AdmissionValidator"]
