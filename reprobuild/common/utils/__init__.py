from reprobuild.common.utils.retry import (
    RetryConfig,
    async_with_retry,
)
from reprobuild.common.utils.hash_utils import (
    compute_hash,
    hash_file,
    list_tree,
    compute_structure_hash,
)
from reprobuild.common.utils.file_utils import (
    ensure_directory,
    cleanup_directory,
    copy_tree,
    make_executable,
    is_safe_relative_path,
)
from reprobuild.common.utils.time_utils import (
    utc_now,
    format_duration,
    Timer,
)

__all__ = [
    "RetryConfig",
    "async_with_retry",
    "compute_hash",
    "hash_file",
    "list_tree",
    "compute_structure_hash",
    "ensure_directory",
    "cleanup_directory",
    "copy_tree",
    "make_executable",
    "is_safe_relative_path",
    "utc_now",
    "format_duration",
    "Timer",
]
