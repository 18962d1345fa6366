"""Shared pytest configuration for the forgegate test-suite."""

import os
import sys

from hypothesis import settings

# Make ``import forgegate`` work from a plain checkout without installing it.
ROOT_DIR = os.path.abspath(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Building pydantic models is slow on the first call; a per-example deadline
# would make the property tests flaky.
settings.register_profile("forgegate", max_examples=100, deadline=None)
settings.load_profile("forgegate")
