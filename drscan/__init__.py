"""
Diabetic retinopathy screening helpers: upload intake, Gemini classification,
result lifecycle, persisted history and PDF reports.
"""
