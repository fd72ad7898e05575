from reprobuild.common import config
from reprobuild.common import dto
from reprobuild.common import exceptions
from reprobuild.common import utils

__all__ = [
    "config",
    "dto",
    "exceptions",
    "utils",
]
