from __future__ import annotations

from .b64 import b64d, b64e
from .checks import assert_private, constant_time_compare, publish_private_file, write_private_file

__all__ = [
    "assert_private",
    "b64d",
    "b64e",
    "constant_time_compare",
    "publish_private_file",
    "write_private_file",
]
