# Copyright Red Hat
#
# fssnap/__main__.py - File system snapshot command entry point
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Entry point for ``python -m fssnap`` and the ``fssnap`` console script.
"""
import sys

from fssnap.command import main


def _main():
    sys.exit(main(sys.argv))


if __name__ == "__main__":
    _main()
