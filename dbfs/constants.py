"""Module defining various global constants."""

# dbfs version
VERSION = "1.0.0"

# Special exit code for when dbfs itself fails.
DBFS_ERROR_CODE = 254

# Name of the FUSE file system
FILESYSTEM_NAME = "dbfs"

# Reserved directory under every server that exposes the user's custom queries.
# It must match exactly one path segment.
CUSTOM_QUERY_FOLDER_NAME = "customQueries"

# Suffix that selects JSON output for a metadata view file.
JSON_SUFFIX = ".json"

# Default location of the dump directory that backs the mount.
DEFAULT_DUMP_PATH = "/tmp/sqlserver"

# Permissions of directories and placeholder files created by dbfs itself.
DEFAULT_DIR_PERMISSIONS = 0o755
DEFAULT_FILE_PERMISSIONS = 0o644
