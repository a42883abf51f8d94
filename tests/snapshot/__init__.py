# Copyright Red Hat
#
# tests/snapshot/__init__.py - File system snapshot engine tests
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
