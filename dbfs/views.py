"""Module with the catalog of metadata views that every server exposes as files."""

from typing import Dict, List

import semver

from dbfs.constants import JSON_SUFFIX

# FOR JSON was introduced in SQL Server 2016.
JSON_MIN_MAJOR = 13

# Dynamic management views in [master].[sys] and the first major version of SQL
# Server that has them (9 = 2005, 10 = 2008, 11 = 2012, 12 = 2014, 13 = 2016,
# 14 = 2017, 15 = 2019, 16 = 2022).
METADATA_VIEWS: Dict[str, int] = {
    "dm_db_file_space_usage": 9,
    "dm_db_index_usage_stats": 9,
    "dm_db_log_space_usage": 11,
    "dm_db_missing_index_details": 9,
    "dm_db_missing_index_group_stats": 9,
    "dm_db_missing_index_groups": 9,
    "dm_db_session_space_usage": 9,
    "dm_db_task_space_usage": 9,
    "dm_db_xtp_table_memory_stats": 12,
    "dm_exec_cached_plans": 9,
    "dm_exec_connections": 9,
    "dm_exec_function_stats": 13,
    "dm_exec_procedure_stats": 10,
    "dm_exec_query_memory_grants": 9,
    "dm_exec_query_profiles": 12,
    "dm_exec_query_stats": 9,
    "dm_exec_requests": 9,
    "dm_exec_session_wait_stats": 13,
    "dm_exec_sessions": 9,
    "dm_exec_trigger_stats": 10,
    "dm_io_pending_io_requests": 9,
    "dm_os_buffer_descriptors": 9,
    "dm_os_enumerate_fixed_drives": 14,
    "dm_os_host_info": 14,
    "dm_os_loaded_modules": 9,
    "dm_os_memory_clerks": 9,
    "dm_os_performance_counters": 9,
    "dm_os_ring_buffers": 9,
    "dm_os_schedulers": 9,
    "dm_os_sys_info": 9,
    "dm_os_sys_memory": 10,
    "dm_os_tasks": 9,
    "dm_os_threads": 9,
    "dm_os_wait_stats": 9,
    "dm_os_waiting_tasks": 9,
    "dm_os_workers": 9,
    "dm_server_services": 10,
    "dm_tran_active_transactions": 9,
    "dm_tran_database_transactions": 9,
    "dm_tran_locks": 9,
    "dm_tran_session_transactions": 9,
}


def parse_version(version: str) -> semver.VersionInfo:
    """
    Parse a SQL Server version string.

    Versions may be given as just the major version ("16") or as a full build number
    ("15.0.2000.5"). Missing components are zero and anything past the third component
    is ignored.
    """
    parts = version.strip().split(".")
    numbers = [str(int(part)) for part in (parts + ["0", "0"])[:3]]

    return semver.VersionInfo.parse(".".join(numbers))


def supports_json(version: semver.VersionInfo) -> bool:
    """Check if a server of the given version can return results as JSON."""
    return version.major >= JSON_MIN_MAJOR


def view_file_names(version: semver.VersionInfo) -> List[str]:
    """Return the names of the metadata files that exist for a server version."""
    names = []

    for view, min_major in sorted(METADATA_VIEWS.items()):
        if version.major < min_major:
            continue

        names.append(view)

        if supports_json(version):
            names.append(view + JSON_SUFFIX)

    return names
