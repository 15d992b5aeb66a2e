"""Purchase and retrieval orchestration."""
