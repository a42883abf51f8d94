# Copyright Red Hat
#
# tests/__init__.py - File system snapshot test package
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
import logging
import os
import time

log = logging.getLogger()
log.setLevel(logging.DEBUG)
formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
file_handler = logging.FileHandler("test.log")
file_handler.setFormatter(formatter)
console_handler = logging.StreamHandler()
console_handler.setFormatter(formatter)
log.addHandler(file_handler)
log.addHandler(console_handler)

os.environ["TZ"] = "UTC"
time.tzset()


class MockArgs(object):
    debug = None
    verbose = 0
    version = False
    json = False
    pretty = False
    quiet = True
    config = "/nonexistent/fssnap.conf"
    check_size = None
    check_modification_time = None
    check_md5 = None
    check_permissions = None
    support_hidden = None
    check_properties_content = None
    check_xml_content = None
    check_ini_content = None
    check_text_content = None
    use_magic_file_type = None
    hash_workers = None
