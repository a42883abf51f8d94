# Copyright Red Hat
#
# fssnap/__init__.py - File system snapshot package initialisation
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Fssnap top-level package.
"""
from ._fssnap import *  # noqa: F401, F403
from ._fssnap import __all__  # noqa: F401

__version__ = "0.1.0"
