"""
Third-party API integrations.
"""
