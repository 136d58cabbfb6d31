"""TaskHub collaborative task-management backend."""
