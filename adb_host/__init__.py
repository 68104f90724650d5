# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""ADB host protocol client for talking to a running ADB server.

"""


__version__ = '0.1.0'
