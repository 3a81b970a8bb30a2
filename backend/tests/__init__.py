# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Suite for the Credflow workflow engine

Structure:
- engine/: Scheduler, joins, conditions, sandbox and node handler tests
- unit/: Storage, integrations and service tests
- api/: HTTP and WebSocket endpoint tests
"""
