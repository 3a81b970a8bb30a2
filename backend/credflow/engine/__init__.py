# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Credflow Workflow Engine

Graph-based workflow execution: definition validation, condition
evaluation, readiness and joins, node handlers, pause/resume and retry.

Import from the submodules (credflow.engine.scheduler,
credflow.engine.models, ...); this package keeps no eager imports so the
storage and integration layers can depend on the models without pulling
in the scheduler.
"""
