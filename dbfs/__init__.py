"""Expose live SQL Server metadata views as a FUSE file system."""
