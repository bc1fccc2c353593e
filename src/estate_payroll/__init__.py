"""Plantation payroll deduction and calculation engine."""

__version__ = "0.1.0"
