"""
Services for the curtailment mining backend.
"""
