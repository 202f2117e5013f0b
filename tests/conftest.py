"""
Pytest fixtures for the MARC21 codec tests.
"""

import pytest

import main
import marc21


@pytest.fixture
def sample_fields():
    """Field lists for the two sample records."""
    return main.sample_records()


@pytest.fixture
def sample_stream(sample_fields):
    """Both sample records encoded back to back."""
    return b''.join(marc21.build_record(fields) for fields in sample_fields)
