"""Core HR module — the Employee record leave balances hang off."""

from backend.core_hr.models import Employee

__all__ = ["Employee"]
