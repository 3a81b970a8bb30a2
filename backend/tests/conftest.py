# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Fixtures for the Credflow workflow engine

Provides a scheduler wired to an in-memory repository and scripted HTTP
collaborators.
"""

import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from credflow.storage import InMemoryExecutionRepository

from tests.helpers import FakeAPI, make_config, make_scheduler, make_services


@pytest.fixture
def config():
    """Engine config with short timeouts"""
    return make_config()


@pytest.fixture
def api():
    """Scripted HTTP endpoint answering 200 on every path"""
    return FakeAPI()


@pytest.fixture
def repository():
    """Fresh in-memory repository per test"""
    return InMemoryExecutionRepository()


@pytest.fixture
def services(config, api):
    return make_services(config, api)


@pytest.fixture
def scheduler(config, repository, services):
    """
    Scheduler wired to the repository and services fixtures.

    Tests that need a different config build their own with make_scheduler.
    """
    return make_scheduler(config=config, repository=repository, services=services)
