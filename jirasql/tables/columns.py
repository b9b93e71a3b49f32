from __future__ import annotations

# Shared by every table's `title` column.
COLUMN_DESCRIPTION_TITLE = "Title of the resource."
