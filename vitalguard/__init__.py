"""Threshold evaluation, alert lifecycle and risk scoring for patient vitals.

This package contains the clinical decision logic and domain models,
isolated from storage and transport so it is easy to test and reason about.
"""
