"""
Test suite for the ASIN Correlation Engine.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_correlation_job_service.py -v
"""
