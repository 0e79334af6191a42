"""Shared constants for kindle-notes.

For environment-based configuration use the env module:
    from common.env import env
    provider = env.metadata_provider()
"""

# Export format
ENTRY_SEPARATOR = "=========="

# Import session lifecycle
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})

# Import source flows recorded on canonical link audits
SOURCE_FLOW_IMPORT = "import"
SOURCE_FLOW_MANUAL = "manual-entry"

# Deduplication: word-overlap similarity above which two location-less
# entries are too close to call and go to manual review
SIMILARITY_THRESHOLD = 0.8
