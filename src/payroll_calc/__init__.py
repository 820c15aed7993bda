"""Payroll calculation library: gross to net with statutory deductions and garnishments."""

__version__ = "1.0.0"
