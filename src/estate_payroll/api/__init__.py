"""HTTP API for the estate payroll engine."""
