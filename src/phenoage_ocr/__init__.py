"""
PhenoAge Lab-Report OCR
=======================

Reads blood test reports (PDFs and photos) and calculates biological age.

Main components:
- Upload validation and format conversion
- PDF splitting and concurrent page OCR
- Pattern-based biomarker extraction with confidence scoring
- Unit normalization to canonical units
- PhenoAge (Levine 2018) calculator
"""

__version__ = "1.0.0"
__author__ = "PhenoAge OCR Team"
