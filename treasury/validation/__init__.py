"""Validation package."""

from treasury.validation.validator import PaymentVerificationValidator

__all__ = ["PaymentVerificationValidator"]
