"""Business logic layer for drive app.

This package contains all business logic for the folder hierarchy:
- Folder creation, rename and recursive deletion
- Tree assembly and breadcrumb paths
- Upload staging and commit of files
- The access façade used by callers

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).
"""
