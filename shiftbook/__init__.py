"""
Shiftbook
=========
Extracts shifts ("diensten") from shift-book PDFs and resolves which
generation of the shift book is authoritative for a date.

Architecture:
    - Token Extractor: Decodes page streams into positioned text tokens
    - Column Classifier: Maps token positions to duty-table columns
    - State Machine: Assembles rows into jobs and reads header metadata
    - Job Classifier: Types the raw column strings of a row
    - Collection Store: Dated JSON collections of indexed shifts
    - Timetable Resolver: Finds the active generation for a shift and date

Version: 1.0.0
"""

__version__ = "1.0.0"
