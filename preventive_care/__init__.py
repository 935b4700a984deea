"""
Preventive Care Guideline Engine

Recommends preventive-care screenings by age and gender, computes when a
screening is next due, and reconciles appointments with screening records.
"""

__version__ = "1.0.0"
